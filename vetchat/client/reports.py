"""
Client side of the report flow: validate, upload, stream the analysis, save the record.
"""
import logging
from collections.abc import Callable
from dataclasses import dataclass

from vetchat.client.api import ChatApiClient
from vetchat.utils.files import MAX_REPORT_BYTES, validate_report_file

logger = logging.getLogger(__name__)


@dataclass
class ReportFile:
    name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class ReportUploader:
    def __init__(self, api: ChatApiClient, chat_id: str | None = None, max_bytes: int = MAX_REPORT_BYTES):
        self._api = api
        self.chat_id = chat_id
        self.max_bytes = max_bytes
        self.analysis = ""
        self.is_uploading = False
        self.is_analyzing = False

    def validate(self, file: ReportFile) -> None:
        validate_report_file(file.content_type, file.size, self.max_bytes)

    async def upload(self, file: ReportFile, on_fragment: Callable[[str], None] | None = None) -> str:
        """Validate, transfer the bytes, then analyze. Returns the full analysis text."""
        self.validate(file)
        self.is_uploading = True
        try:
            upload_url = await self._api.generate_upload_url()
            storage_id = await self._api.upload_bytes(upload_url, file.data, file.content_type)
        finally:
            self.is_uploading = False
        logger.info("Report uploaded: storage_id=%s bytes=%d", storage_id, file.size)
        return await self.analyze(file, storage_id, on_fragment)

    async def analyze(
        self,
        file: ReportFile,
        storage_id: str | None = None,
        on_fragment: Callable[[str], None] | None = None,
    ) -> str:
        """
        Stream the analysis. The report row is written only once the stream is open, and
        the analysis text once, after the last fragment. Raises Overloaded on 429.
        """
        self.validate(file)
        self.is_analyzing = True
        self.analysis = ""
        report_id = None
        try:
            async with self._api.analysis_stream(file.name, file.data, file.content_type) as fragments:
                if storage_id:
                    report_id = await self._api.save_report(
                        chat_id=self.chat_id,
                        file_id=storage_id,
                        file_name=file.name,
                        mime_type=file.content_type,
                        size_bytes=file.size,
                    )
                async for fragment in fragments:
                    if not fragment:
                        continue
                    self.analysis += fragment
                    if on_fragment is not None:
                        on_fragment(fragment)
            if report_id is not None:
                await self._api.save_analysis(report_id, self.analysis)
            return self.analysis
        finally:
            self.is_analyzing = False
