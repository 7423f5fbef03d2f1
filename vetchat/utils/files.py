"""Report file rules, shared by the upload endpoints and the client-side uploader."""
from vetchat.errors import ValidationFailure

PDF_MIME_TYPE = "application/pdf"
MAX_REPORT_BYTES = 5 * 1024 * 1024
CHUNK_SIZE = 1024 * 1024  # 1 MB


def normalize_content_type(content_type: str | None) -> str:
    return (content_type or "").split(";")[0].strip().lower()


def validate_report_file(content_type: str | None, size_bytes: int, max_bytes: int = MAX_REPORT_BYTES) -> None:
    """Raise ValidationFailure unless the file is a PDF no larger than max_bytes."""
    if normalize_content_type(content_type) != PDF_MIME_TYPE:
        raise ValidationFailure.for_field("file", "Only PDF documents allowed")
    if size_bytes > max_bytes:
        raise ValidationFailure.for_field("file", f"File exceeds {max_bytes // (1024 * 1024)}MB")
