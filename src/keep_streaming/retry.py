"""
Retry strategies for read and write operations.

A retry strategy is any callable ``(error, attempt, path) -> delay_ms``.
It returns how many milliseconds to wait before the next attempt, or raises
to make the failure permanent; the raised exception becomes the operation's
terminal error. ``attempt`` starts at 1 and grows by one per failed attempt.
"""

from __future__ import annotations

import errno
import random
from dataclasses import dataclass, field
from typing import Callable, Union

from .errors import RetryExhaustedError
from .paths import is_device_path

Delay = Union[int, float, None]
RetryStrategy = Callable[[BaseException, int, str], Delay]

# Used when a strategy returns something that is not a number.
MINIMAL_DELAY_MS = 1

DEVICE_MAX_ATTEMPTS = 10
FILE_MAX_ATTEMPTS = 5
STREAM_MAX_ATTEMPTS = 5
STREAM_RETRY_DELAY_MS = 100


def retry_delay_seconds(delay: Delay) -> float:
    """Normalize a strategy's return value to an ``asyncio.sleep`` argument."""
    if isinstance(delay, bool) or not isinstance(delay, (int, float)):
        delay = MINIMAL_DELAY_MS
    return max(0.0, float(delay)) / 1000.0


def _exhausted(what: str, error: BaseException, attempt: int, path: str) -> RetryExhaustedError:
    return RetryExhaustedError(
        f"{what} after {attempt} retries: {path} ({error})", attempt=attempt, path=path
    )


def _existence_backoff(error: BaseException, attempt: int, path: str) -> int:
    if getattr(error, "errno", None) != errno.ENOENT:
        raise error
    if is_device_path(path):
        # devices may take a while to show up (hotplug, udev)
        if attempt >= DEVICE_MAX_ATTEMPTS:
            raise _exhausted("Device not available", error, attempt, path) from error
        return 2000 * min(attempt, 5)
    if attempt >= FILE_MAX_ATTEMPTS:
        raise _exhausted("File not found", error, attempt, path) from error
    return 1000 * attempt


def default_read_file_exists_retry_strategy(error: BaseException, attempt: int, path: str) -> int:
    """Wait for a missing file or device before reading.

    Only "not found" is retried: ``/dev/`` paths back off ``2000 * min(attempt, 5)``
    ms for up to 10 attempts, other paths ``1000 * attempt`` ms for up to 5.
    """
    return _existence_backoff(error, attempt, path)


def default_write_file_exists_retry_strategy(error: BaseException, attempt: int, path: str) -> int:
    """Wait for a missing device or FIFO before writing (same curve as reads)."""
    return _existence_backoff(error, attempt, path)


def default_read_file_retry_strategy(error: BaseException, attempt: int, path: str) -> int:
    """Retry a failed read stream every 100 ms, give up after 5 attempts."""
    if attempt >= STREAM_MAX_ATTEMPTS:
        raise _exhausted("Failed to read file", error, attempt, path) from error
    return STREAM_RETRY_DELAY_MS


def default_write_file_retry_strategy(error: BaseException, attempt: int, path: str) -> int:
    """Retry a failed write stream every 100 ms, give up after 5 attempts."""
    if attempt >= STREAM_MAX_ATTEMPTS:
        raise _exhausted("Failed to write to file", error, attempt, path) from error
    return STREAM_RETRY_DELAY_MS


_TRANSIENT_ERRNOS = frozenset(
    {
        errno.ENOENT,
        errno.ENXIO,
        errno.EAGAIN,
        errno.EBUSY,
        errno.EINTR,
        errno.EPIPE,
        errno.EIO,
        errno.ETIMEDOUT,
    }
)


def default_retry_classifier(exc: BaseException) -> bool:
    """Return True for errors that usually go away on their own."""
    if isinstance(
        exc, (TimeoutError, FileNotFoundError, BlockingIOError, BrokenPipeError, InterruptedError)
    ):
        return True
    if isinstance(exc, OSError):
        return exc.errno in _TRANSIENT_ERRNOS
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff usable anywhere a retry strategy is expected.

    Example:
        policy = RetryPolicy(max_attempts=8, initial_backoff_ms=50, max_backoff_ms=2000)
        File("/dev/ttyUSB0", {"read_file_retry_strategy": policy})
    """

    max_attempts: int = 5
    initial_backoff_ms: int = 100
    max_backoff_ms: int = 5000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    classify_retryable: Callable[[BaseException], bool] = field(
        default=default_retry_classifier, compare=False
    )

    def next_backoff_ms(self, attempt: int) -> int:
        """Backoff before retrying after failed ``attempt`` (1-based)."""
        exp = self.initial_backoff_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        delay = min(int(exp), self.max_backoff_ms)
        if self.jitter:
            # 50-100% of the computed delay
            delay = int(delay * random.uniform(0.5, 1.0))
        return delay

    def __call__(self, error: BaseException, attempt: int, path: str) -> int:
        if not self.classify_retryable(error):
            raise error
        if attempt >= self.max_attempts:
            raise _exhausted("Giving up", error, attempt, path) from error
        return self.next_backoff_ms(attempt)
