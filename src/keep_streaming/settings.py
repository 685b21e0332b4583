"""
Environment-based settings for keep-streaming.

All keys are read from ``KEEP_STREAMING_*`` environment variables or a local
``.env`` file, e.g. ``KEEP_STREAMING_READ_TIMEOUT_MS=30000``.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    read_timeout_ms: int = Field(default=0, ge=0)
    read_chunk_size: int = Field(default=1024, gt=0)
    fifo_reopen_delay_ms: int = Field(default=50, ge=0)
    fifo_writer_poll_ms: int = Field(default=20, gt=0)
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="KEEP_STREAMING_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
