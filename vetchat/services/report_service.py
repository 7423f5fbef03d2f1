"""
Report storage: direct uploads into the report folder, report records and their analysis.
A report row is only written once its analysis stream has started (the client calls
save_report after the analyze response opens); the analysis text is written once, at the end.
"""
import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from pathlib import Path

from sqlalchemy.orm import Session

from vetchat.config import get_settings
from vetchat.errors import NotFound, Unauthorized, ValidationFailure
from vetchat.models.report import Report, StoredFile
from vetchat.repositories import chat_repository
from vetchat.utils.clock import utcnow
from vetchat.utils.files import CHUNK_SIZE, PDF_MIME_TYPE, normalize_content_type

logger = logging.getLogger(__name__)


def report_upload_dir() -> Path:
    settings = get_settings()
    if settings.report_upload_dir:
        return Path(settings.report_upload_dir)
    return Path(__file__).resolve().parent.parent.parent / "uploads" / "reports"


class PayloadTooLarge(ValidationFailure):
    status_code = 413


class ReportService:
    def __init__(self):
        self._max_bytes = get_settings().report_max_bytes

    async def _run(self, fn):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, fn)

    async def save_upload(
        self,
        db: Session,
        user_id: str,
        content_type: str | None,
        chunks: AsyncIterator[bytes],
    ) -> StoredFile:
        """Write the body to disk chunk by chunk; reject it once it passes report_max_bytes."""
        report_upload_dir().mkdir(parents=True, exist_ok=True)
        file_id = str(uuid.uuid4())
        content_type = normalize_content_type(content_type)
        ext = ".pdf" if content_type == PDF_MIME_TYPE else ".bin"
        path = report_upload_dir() / f"{file_id}{ext}"
        size = 0
        try:
            with path.open("wb", buffering=CHUNK_SIZE) as f:
                async for chunk in chunks:
                    size += len(chunk)
                    if size > self._max_bytes:
                        raise PayloadTooLarge.for_field("file", "File too large")
                    f.write(chunk)
        except Exception:
            path.unlink(missing_ok=True)
            raise

        stored = StoredFile(
            id=file_id,
            user_id=user_id,
            content_type=content_type or "application/octet-stream",
            size_bytes=size,
            path=path.name,
        )

        def _do():
            db.add(stored)
            db.commit()
            db.refresh(stored)
            return stored

        result = await self._run(_do)
        logger.info("Upload stored: file=%s user=%s bytes=%d", file_id, user_id, size)
        return result

    async def save_report(
        self,
        db: Session,
        user_id: str,
        *,
        file_id: str,
        file_name: str,
        mime_type: str,
        size_bytes: int,
        chat_id: str | None = None,
    ) -> str:
        # Placeholder / malformed chat ids are dropped rather than rejected
        if chat_id is not None and not chat_repository.is_valid_id(chat_id):
            chat_id = None

        def _do() -> Report:
            stored = db.get(StoredFile, file_id) if chat_repository.is_valid_id(file_id) else None
            if stored is None:
                raise NotFound("File not found")
            if stored.user_id != user_id:
                raise Unauthorized("Unauthorized")
            if chat_id is not None:
                chat = chat_repository.get_chat(db, chat_id)
                if chat is None or chat.is_deleted:
                    raise NotFound("Chat not found")
                if chat.user_id != user_id:
                    raise Unauthorized("Unauthorized")
            report = Report(
                user_id=user_id,
                chat_id=chat_id,
                file_id=file_id,
                file_name=file_name,
                mime_type=mime_type,
                size_bytes=size_bytes,
            )
            db.add(report)
            db.commit()
            db.refresh(report)
            return report

        report = await self._run(_do)
        logger.info("Report saved: report=%s user=%s", report.id, user_id)
        return report.id

    async def save_analysis(self, db: Session, user_id: str, report_id: str, analysis: str) -> None:
        """Set the analysis text. It can be written only once."""
        def _do():
            report = db.get(Report, report_id) if chat_repository.is_valid_id(report_id) else None
            if report is None:
                raise NotFound("Report not found")
            if report.user_id != user_id:
                raise Unauthorized("Unauthorized")
            if report.analysis is not None:
                raise ValidationFailure.for_field("analysis", "Analysis already saved")
            report.analysis = analysis
            report.analyzed_at = utcnow()
            db.commit()

        await self._run(_do)

    async def get_report(self, db: Session, user_id: str, report_id: str) -> Report | None:
        """Owner-only read; foreign and missing reports both come back as None."""
        def _do():
            report = db.get(Report, report_id) if chat_repository.is_valid_id(report_id) else None
            if report is None or report.user_id != user_id:
                return None
            return report

        return await self._run(_do)
