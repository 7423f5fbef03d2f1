"""
Report upload and analysis:
- POST /api/storage/upload-url          short-lived direct-upload URL
- POST /api/storage/upload?token=...    raw body upload, returns storage_id
- POST /api/reports                     save report record (after analysis started)
- GET  /api/reports/{id}                read own report
- PUT  /api/reports/{id}/analysis       save final analysis text (once)
- POST /api/report/analyze              multipart PDF in, streamed analysis out (429 when busy)
"""
import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile
from sqlalchemy.orm import Session

from vetchat.auth import create_upload_token, decode_upload_token, get_current_user_id
from vetchat.config import get_settings
from vetchat.database import get_db
from vetchat.errors import NotFound, Overloaded, Unauthenticated
from vetchat.schemas.report import (
    ReportAnalysisRequest,
    ReportCreateRequest,
    ReportOut,
    UploadResponse,
    UploadUrlResponse,
)
from vetchat.services import ai_service
from vetchat.services.ai_stream_service import open_fragment_stream, stream_text_response
from vetchat.services.analysis_gate import AnalysisGate, get_analysis_gate
from vetchat.services.report_service import ReportService
from vetchat.utils.files import normalize_content_type, validate_report_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["reports"])


def _get_report_service_dep() -> ReportService:
    return ReportService()


# ---------- Storage ----------


@router.post("/storage/upload-url", response_model=UploadUrlResponse)
def generate_upload_url(user_id: str = Depends(get_current_user_id)):
    """Relative URL the client POSTs the raw file bytes to; valid for a few minutes."""
    return UploadUrlResponse(upload_url=f"/api/storage/upload?token={create_upload_token(user_id)}")


@router.post("/storage/upload", response_model=UploadResponse)
async def upload_file(
    request: Request,
    token: str,
    db: Session = Depends(get_db),
    report_service: ReportService = Depends(_get_report_service_dep),
):
    """Direct upload: the token from upload-url stands in for the bearer header."""
    user_id = decode_upload_token(token)
    if not user_id:
        raise Unauthenticated("Invalid or expired upload token")
    stored = await report_service.save_upload(
        db, user_id, request.headers.get("content-type"), request.stream()
    )
    return UploadResponse(storage_id=stored.id)


# ---------- Reports ----------


@router.post("/reports")
async def save_report(
    body: ReportCreateRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    report_service: ReportService = Depends(_get_report_service_dep),
):
    report_id = await report_service.save_report(
        db,
        user_id,
        chat_id=body.chat_id,
        file_id=body.file_id,
        file_name=body.file_name,
        mime_type=body.mime_type,
        size_bytes=body.size_bytes,
    )
    return {"id": report_id}


@router.get("/reports/{report_id}", response_model=ReportOut)
async def get_report(
    report_id: str,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    report_service: ReportService = Depends(_get_report_service_dep),
):
    report = await report_service.get_report(db, user_id, report_id)
    if report is None:
        raise NotFound("Report not found")
    return ReportOut.model_validate(report)


@router.put("/reports/{report_id}/analysis")
async def save_analysis(
    report_id: str,
    body: ReportAnalysisRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    report_service: ReportService = Depends(_get_report_service_dep),
):
    await report_service.save_analysis(db, user_id, report_id, body.analysis)
    return {"success": True}


# ---------- Analysis ----------


@router.post("/report/analyze")
async def analyze_report(
    report_file: UploadFile = File(..., alias="report-file"),
    user_id: str = Depends(get_current_user_id),
    gate: AnalysisGate = Depends(get_analysis_gate),
):
    """
    Stream a Markdown analysis of an uploaded PDF. Validates type and size before any model
    call; answers 429 when every analysis slot is taken.
    """
    settings = get_settings()
    data = await report_file.read(settings.report_max_bytes + 1)
    content_type = normalize_content_type(report_file.content_type)
    validate_report_file(content_type, len(data), settings.report_max_bytes)

    if not await gate.try_acquire():
        logger.warning("Report analysis rejected, all %d slots busy: user=%s", gate.limit, user_id)
        raise Overloaded()

    try:
        stream = await open_fragment_stream(
            lambda stop: ai_service.generate_report_analysis_stream(data, content_type, stop)
        )
    except Exception:
        await gate.release()
        raise
    logger.info("Report analysis started: user=%s bytes=%d", user_id, len(data))
    return stream_text_response(stream, on_close=gate.release_soon)
