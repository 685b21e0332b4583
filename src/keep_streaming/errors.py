"""
Custom exceptions for keep-streaming.

Existence-check and mid-stream failures are the platform's own ``OSError``
subclasses and reach the retry strategies unchanged. The classes below cover
what the operating system does not describe: bad arguments, read timeouts and
retry exhaustion.
"""

from __future__ import annotations


class KeepStreamingError(Exception):
    """Base error for keep-streaming."""

    pass


class ConfigurationError(KeepStreamingError, ValueError):
    """Invalid path, options or payload handed to the facade."""

    pass


class ReadTimeoutError(KeepStreamingError, TimeoutError):
    """A read stream saw no terminal event within the configured window."""

    def __init__(self, path: str, timeout_ms: int):
        super().__init__(f"{path} read timeout after {timeout_ms}ms")
        self.path = path
        self.timeout_ms = timeout_ms


class RetryExhaustedError(KeepStreamingError):
    """Raised by a retry strategy to stop retrying."""

    def __init__(self, message: str, *, attempt: int, path: str):
        super().__init__(message)
        self.attempt = attempt
        self.path = path


class StreamClosedError(KeepStreamingError):
    """A stream was destroyed while a read was pending."""

    pass
