"""
Configuration module using Pydantic Settings.
Supports environment variables and .env files.
"""

from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DOC = "application/msword"
MIME_GOOGLE_DOC = "application/vnd.google-apps.document"
MIME_GOOGLE_FOLDER = "application/vnd.google-apps.folder"

SUPPORTED_MIME_TYPES = [MIME_PDF, MIME_DOCX, MIME_DOC, MIME_GOOGLE_DOC]

FILE_TYPE_MAP = {
    MIME_PDF: "pdf",
    MIME_DOCX: "docx",
    MIME_DOC: "doc",
    MIME_GOOGLE_DOC: "google-doc",
}

NO_RELEVANT_DOCS = {
    "vi": "Xin lỗi, tôi không tìm thấy thông tin liên quan đến câu hỏi của bạn trong cơ sở dữ liệu.",
    "en": "Sorry, I could not find relevant information for your question in the database.",
}

MAX_CONTEXT_DOCUMENTS = 5
MAX_CONTEXT_CONTENT_LENGTH = 2000
MIN_QUERY_LENGTH = 3
EXCERPT_LENGTH = 200

DRIVE_PAGE_SIZE = 1000
DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive.readonly"]

SEPARATOR = "=" * 60


class RAGSettings(BaseSettings):
    """Configuration for the model endpoints, vector store and API."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    llm_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("llm_api_key", "gemini_api_key", "openai_api_key"),
    )
    llm_base_url: str | None = Field(
        default="https://generativelanguage.googleapis.com/v1beta/openai/"
    )
    chat_model: str = Field(default="gemini-2.5-flash")
    embedding_model: str = Field(default="text-embedding-004")
    embedding_dimension: int = Field(default=768)
    request_timeout: float = Field(default=60.0)
    similarity_floor: float = Field(default=0.5, ge=0.0, le=1.0)

    qdrant_location: str | None = Field(default=None)
    qdrant_url: str | None = Field(default=None)
    qdrant_host: str = Field(default="localhost")
    qdrant_port: int = Field(default=6333)
    qdrant_api_key: str | None = Field(default=None)
    collection_name: str = Field(default="knowledge_base")

    api_port: int = Field(default=3000)
    api_cors_origins: str = Field(default="*")


class DriveSettings(BaseSettings):
    """Google Drive source and record tagging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    google_service_account_file: Path | None = Field(default=None)
    google_client_id: str | None = Field(default=None)
    google_client_secret: str | None = Field(default=None)
    google_refresh_token: str | None = Field(default=None)
    drive_folder_id: str | None = Field(default=None)

    teacher_id: str | None = Field(default=None)
    user_id: str | None = Field(default=None)

    @property
    def has_service_account(self) -> bool:
        return self.google_service_account_file is not None

    @property
    def has_oauth(self) -> bool:
        return bool(
            self.google_client_id
            and self.google_client_secret
            and self.google_refresh_token
        )


class SyncSettings(BaseSettings):
    """Throughput and text limits for the sync engine."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    rate_limit_delay: float = Field(default=0.5, ge=0.0)
    sync_workers: int = Field(default=1, ge=1, le=4)
    min_text_length: int = Field(default=10, ge=0)
    max_text_length: int = Field(default=20000, gt=0)


class PathSettings(BaseSettings):
    """Path configuration for project directories."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    project_root: Path = Field(default=Path(__file__).parent.parent)

    @property
    def logs_dir(self) -> Path:
        return self.project_root / "logs"


def _is_placeholder(value: str | None) -> bool:
    return not value or value.startswith("your_")


def validate_config(
    rag: RAGSettings | None = None,
    drive: DriveSettings | None = None,
    require_drive: bool = True,
) -> None:
    """
    Check that required settings are present before any service starts.

    Args:
        rag: Model/store settings (defaults to the module instance).
        drive: Drive settings (defaults to the module instance).
        require_drive: Whether Drive credentials are needed (sync only).

    Raises:
        ConfigurationError: If a required value is missing or still a placeholder.
    """
    rag = rag or rag_settings
    drive = drive or drive_settings

    missing = []
    if _is_placeholder(rag.llm_api_key):
        missing.append("LLM_API_KEY")

    if missing:
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(missing)}",
            details={"missing": missing},
        )

    if require_drive and not (drive.has_service_account or drive.has_oauth):
        raise ConfigurationError(
            "No valid Google Drive authentication configured. Set "
            "GOOGLE_SERVICE_ACCOUNT_FILE or GOOGLE_CLIENT_ID, "
            "GOOGLE_CLIENT_SECRET and GOOGLE_REFRESH_TOKEN."
        )


paths = PathSettings()
rag_settings = RAGSettings()
drive_settings = DriveSettings()
sync_settings = SyncSettings()
