"""
Per-file operation configuration.

``OperationConfig`` is the immutable record every read and write operation
of one ``File`` shares: the read timeout and the four retry strategies.
Option names are accepted in snake_case or in their camelCase form
(``readTimeout``, ``readFileExistsRetryStrategy``, ...).
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, TypedDict, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigurationError
from .retry import (
    RetryStrategy,
    default_read_file_exists_retry_strategy,
    default_read_file_retry_strategy,
    default_write_file_exists_retry_strategy,
    default_write_file_retry_strategy,
)
from .settings import get_settings


class FileOptions(TypedDict, total=False):
    read_timeout: int  # ms, 0 disables
    read_file_exists_retry_strategy: RetryStrategy
    write_file_exists_retry_strategy: RetryStrategy
    read_file_retry_strategy: RetryStrategy
    write_file_retry_strategy: RetryStrategy


def _default_read_timeout() -> int:
    return get_settings().read_timeout_ms


class OperationConfig(BaseModel):
    """Immutable options shared by the operations of one ``File``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    read_timeout: int = Field(default_factory=_default_read_timeout, ge=0, alias="readTimeout")
    read_file_exists_retry_strategy: RetryStrategy = Field(
        default=default_read_file_exists_retry_strategy, alias="readFileExistsRetryStrategy"
    )
    write_file_exists_retry_strategy: RetryStrategy = Field(
        default=default_write_file_exists_retry_strategy, alias="writeFileExistsRetryStrategy"
    )
    read_file_retry_strategy: RetryStrategy = Field(
        default=default_read_file_retry_strategy, alias="readFileRetryStrategy"
    )
    write_file_retry_strategy: RetryStrategy = Field(
        default=default_write_file_retry_strategy, alias="writeFileRetryStrategy"
    )

    @classmethod
    def from_options(
        cls, options: Optional[Union["OperationConfig", Mapping[str, Any]]] = None
    ) -> "OperationConfig":
        """Build a config from a mapping, filling in defaults for missing keys."""
        if isinstance(options, cls):
            return options
        if options is None:
            options = {}
        if not isinstance(options, Mapping):
            raise ConfigurationError(
                f"options must be a mapping, got {type(options).__name__}"
            )
        # an explicit None means "use the default"
        given = {k: v for k, v in options.items() if v is not None}
        try:
            return cls.model_validate(given)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid options: {exc}") from exc
