# backend/socialchat/core/config.py
import logging
import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path} (exists={env_path.exists()})")
    load_dotenv(env_path)


_DEV_SECRET_KEY = "dev-secret-key-not-for-production"

DEFAULT_ALLOWED_ATTACHMENT_TYPES: List[str] = [
    "image/jpeg",
    "image/png",
    "application/pdf",
    "video/mp4",
    "video/webm",
    "audio/mp3",
    "audio/wav",
    "audio/ogg",
    "audio/webm",
]


class Settings(BaseSettings):
    secret_key: SecretStr = Field(
        default=SecretStr(_DEV_SECRET_KEY),
        description="Secret key used to verify real-time and API bearer tokens",
    )
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 720  # 12 hours

    environment: str = Field(default="development", description="development|test|production")
    log_level: str = Field(default="INFO", description="Root log level")

    database_url: str = Field(
        default="sqlite:///./socialchat.db",
        description="SQLAlchemy database URL for the message/conversation/notification stores",
    )
    database_echo: bool = False

    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
        description="Origins allowed to call the HTTP API",
    )

    # Messaging
    max_attachment_bytes: int = Field(
        default=100 * 1024 * 1024, description="Attachment size ceiling (100MB)"
    )
    allowed_attachment_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ATTACHMENT_TYPES),
        description="Mime types accepted for message attachments",
    )
    summary_max_length: int = Field(
        default=100, description="Max characters kept in a conversation's last-message summary"
    )
    message_history_limit: int = Field(
        default=500, description="Max messages returned by the history endpoint"
    )

    # Cloudflare R2 (S3-compatible) configuration for message attachments
    r2_enabled: bool = Field(
        default=False,
        description="Toggle Cloudflare R2 integration (falls back to the null storage client)",
    )
    r2_account_id: str = Field(default="", description="Cloudflare R2 Account ID")
    r2_access_key_id: str = Field(default="", description="R2 access key ID")
    r2_secret_access_key: SecretStr = Field(
        default=SecretStr(""), description="R2 secret access key"
    )
    r2_bucket_name: str = Field(default="", description="R2 bucket name")
    r2_public_base_url: str = Field(
        default="https://media.socialchat.local",
        description="Base URL attachments are served from",
    )
    video_thumbnail_size: int = Field(default=200, description="Square video thumbnail edge (px)")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,  # allows SECRET_KEY to match secret_key
        extra="ignore",
    )

    @field_validator("allowed_attachment_types", mode="before")
    @classmethod
    def _split_types(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @model_validator(mode="after")
    def _refuse_dev_secret_in_production(self) -> "Settings":
        if (
            self.environment.strip().lower() == "production"
            and self.secret_key.get_secret_value() == _DEV_SECRET_KEY
        ):
            raise ValueError("SECRET_KEY must be set in production environments.")
        return self

    @property
    def r2_configured(self) -> bool:
        return bool(
            self.r2_enabled
            and self.r2_bucket_name
            and self.r2_access_key_id
            and self.r2_secret_access_key.get_secret_value()
        )


settings = Settings()
