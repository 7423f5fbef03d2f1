from datetime import datetime
from pydantic import BaseModel, Field


class UploadUrlResponse(BaseModel):
    upload_url: str


class UploadResponse(BaseModel):
    storage_id: str


class ReportCreateRequest(BaseModel):
    chat_id: str | None = None
    file_id: str
    file_name: str = Field(..., min_length=1, max_length=255)
    mime_type: str
    size_bytes: int = Field(..., ge=0)


class ReportAnalysisRequest(BaseModel):
    analysis: str


class ReportOut(BaseModel):
    id: str
    chat_id: str | None = None
    file_id: str
    file_name: str
    mime_type: str
    size_bytes: int
    analysis: str | None = None
    created_at: datetime
    analyzed_at: datetime | None = None

    class Config:
        from_attributes = True
