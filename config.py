"""Environment-based configuration for the document extraction service."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Service settings, loaded from environment variables (and .env)."""

    # Server
    PORT: int = 3001
    LOG_LEVEL: str = "INFO"
    ALLOWED_ORIGINS: str = "*"

    # Model API (empty key = extraction and chat unavailable)
    OPENAI_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("OPENAI_API_KEY", "OPENAI_KEY"),
    )
    OPENAI_BASE_URL: str = ""
    VISION_MODEL: str = "gpt-4o"
    TEXT_MODEL: str = "gpt-4o-mini"
    CHAT_MODEL: str = "gpt-4o-mini"

    EXTRACTION_TEMPERATURE: float = 0.1
    EXTRACTION_MAX_TOKENS: int = 4096
    CHAT_MAX_TOKENS: int = 1024

    # Upstream call bounds (no retries)
    LLM_TIMEOUT_SECONDS: float = 120.0
    LLM_CONNECT_TIMEOUT: float = 10.0

    # Input limits
    MAX_UPLOAD_BYTES: int = 16 * 1024 * 1024  # 16MB
    PDF_TEXT_MAX_CHARS: int = 20000
    IMAGE_MAX_SIDE: int = 2048

    # Forward every operation to another instance instead of handling it here
    BACKEND_URL: str = ""
    BACKEND_TIMEOUT_SECONDS: float = 120.0

    model_config = {
        "env_prefix": "",
        "case_sensitive": True,
        "env_file": ".env",
        "extra": "ignore",
        "populate_by_name": True,
    }


settings = Settings()
