"""Runtime settings loaded from the environment or a local .env file."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    The encryption key has no default: phone numbers are only readable when
    SMARTPREP_ENCRYPTION_KEY is provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="SMARTPREP_",
        extra="ignore",
    )

    database_url: str = Field(default="sqlite:///./smartprep.db")
    sql_echo: bool = False
    encryption_key: Optional[str] = Field(default=None, description="Fernet key for phone numbers")
    whatsapp_from: str = Field(default="whatsapp:+10000000000")
    notification_batch_size: int = Field(default=10, ge=1, le=500)
    log_level: str = "INFO"


@lru_cache()
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""
    return Settings()
