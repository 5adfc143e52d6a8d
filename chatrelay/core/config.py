"""Application configuration."""
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Project root directory (2 levels up from this file: chatrelay/core/config.py)
PROJECT_ROOT = Path(__file__).parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

ATTACHMENT_POLICIES = ("best_effort", "strict")


class Settings(BaseSettings):
    """Application settings."""

    # Application
    APP_NAME: str = "chatrelay"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None  # Rotating log file; console only when unset

    # Juma (session-cookie provider)
    JUMA_BASE_URL: str = "https://app.juma.ai"
    JUMA_USER_AGENT: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    # Fallback credential used when the caller does not send one
    JUMA_SESSION_TOKEN: str = ""
    JUMA_WORKSPACE_ID: str = ""
    JUMA_VENDOR_CONNECTION_ID: str = ""

    # OpenAI-compatible passthrough
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_API_KEY: str = ""

    # Upstream HTTP
    UPSTREAM_TIMEOUT_SECONDS: float = 60.0
    UPLOAD_TIMEOUT_SECONDS: float = 30.0
    TRANSFER_TIMEOUT_SECONDS: float = 60.0
    UPSTREAM_MAX_CONNECTIONS: int = 100
    UPSTREAM_MAX_KEEPALIVE_CONNECTIONS: int = 20
    PROXY_URL: Optional[str] = None

    # Streaming
    STREAM_MAX_LINE_BYTES: int = 20 * 1024 * 1024

    # Attachments
    MAX_REMOTE_IMAGE_BYTES: int = 10 * 1024 * 1024
    ATTACHMENT_POLICY: str = "best_effort"  # best_effort | strict
    UPLOAD_READY_POLL_ATTEMPTS: int = 5
    UPLOAD_READY_POLL_BACKOFF_SECONDS: float = 0.4

    # Audit recorder (upstream request/response diagnostics)
    REQUEST_LOG: bool = False

    # Generic image hosting (used by the passthrough provider)
    IMAGE_HOSTING_ENABLE: bool = False
    IMAGE_HOSTING_ENDPOINT: str = ""
    IMAGE_HOSTING_API_KEY: str = ""

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else ".env",
        case_sensitive=True,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("JUMA_BASE_URL", "OPENAI_BASE_URL")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Validate upstream base URL format."""
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Upstream base URL must be an absolute http(s) URL: {v!r}")
        return v.rstrip("/")

    @field_validator("PROXY_URL")
    @classmethod
    def validate_proxy_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate proxy URL scheme."""
        if not v:
            return None
        if not v.startswith(("http://", "https://", "socks5://", "socks5h://")):
            raise ValueError("PROXY_URL must start with http://, https://, socks5:// or socks5h://")
        return v

    @field_validator("ATTACHMENT_POLICY")
    @classmethod
    def validate_attachment_policy(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in ATTACHMENT_POLICIES:
            raise ValueError(f"ATTACHMENT_POLICY must be one of {', '.join(ATTACHMENT_POLICIES)}")
        return value

    @field_validator("UPLOAD_READY_POLL_ATTEMPTS", "UPSTREAM_MAX_CONNECTIONS", "UPSTREAM_MAX_KEEPALIVE_CONNECTIONS")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Value must not be negative")
        return v

    @model_validator(mode="after")
    def warn_incomplete_image_hosting(self):
        """Warn when image hosting is enabled without an endpoint."""
        if self.IMAGE_HOSTING_ENABLE and not self.IMAGE_HOSTING_ENDPOINT:
            logging.getLogger(__name__).warning(
                "IMAGE_HOSTING_ENABLE is set but IMAGE_HOSTING_ENDPOINT is empty; "
                "inline images will be forwarded unchanged."
            )
        return self


settings = Settings()

# Log configuration status (without exposing secrets)
if settings.DEBUG:
    logger = logging.getLogger(__name__)
    logger.info(f"Loaded .env from: {ENV_FILE}")
    logger.info(f"JUMA_BASE_URL: {settings.JUMA_BASE_URL}")
    logger.info(f"Fallback Juma session configured: {'Yes' if settings.JUMA_SESSION_TOKEN else 'No'}")
    logger.info(f"ATTACHMENT_POLICY: {settings.ATTACHMENT_POLICY}")
