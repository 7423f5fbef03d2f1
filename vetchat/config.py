from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./vetchat.db"

    # Identity provider: bearer JWTs are verified, never issued, in production.
    # HS* algorithms use auth_jwt_key as shared secret; RS*/ES* expect a PEM public key.
    auth_jwt_key: str = "your-secret-key-change-in-production"
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_issuer: str = ""  # empty = issuer not checked
    auth_jwt_audience: str = ""  # empty = audience not checked
    access_token_expire_minutes: int = 60 * 24  # dev tokens only

    # Frontend URL for CORS
    frontend_url: str = "http://localhost:3000"

    # Gemini: Vertex AI when vertex_project_id is set, else API key
    vertex_project_id: str = ""
    vertex_location: str = "us-central1"
    vertex_credentials_path: str = ""  # path to service account JSON; empty = use ADC
    google_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    chat_temperature: float = 0.6
    analysis_temperature: float = 0.3
    max_output_tokens: int = 4096

    # Redis (optional, shared analysis slots; empty = in-process counter)
    redis_url: str = ""  # e.g. redis://localhost:6379/0

    # Reports: upload folder for PDFs (empty = <repo>/uploads/reports)
    report_upload_dir: str = ""
    report_max_bytes: int = 5 * 1024 * 1024
    upload_token_secret: str = "change-me-upload-secret"
    upload_token_expire_minutes: int = 10
    analysis_max_concurrent: int = 2
    analysis_slot_ttl_seconds: int = 600

    # Pagination
    page_size_default: int = 20
    page_size_max: int = 100

    log_level: str = "INFO"

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
