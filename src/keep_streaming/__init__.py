"""
keep-streaming

Continuous reading and serialized writing for regular files, device files
and named pipes (FIFOs), with pluggable retry strategies.

Usage:
    from keep_streaming import File

    file = File("/tmp/events.fifo")

    reader = (
        file.prepare_read()
        .on_data(lambda chunk, finish, attempt: print(chunk))
        .on_error(lambda err: print("read failed:", err))
        .read()
    )
    await file.prepare_write("hello\\n").write().wait()
    reader.finish()
"""

from .config import FileOptions, OperationConfig
from .errors import (
    ConfigurationError,
    KeepStreamingError,
    ReadTimeoutError,
    RetryExhaustedError,
    StreamClosedError,
)
from .file import File
from .paths import PathKind, classify_path
from .read_operation import ReadOperation, ReadState
from .registry import WriteLockRegistry, write_lock_registry
from .retry import (
    RetryPolicy,
    RetryStrategy,
    default_read_file_exists_retry_strategy,
    default_read_file_retry_strategy,
    default_retry_classifier,
    default_write_file_exists_retry_strategy,
    default_write_file_retry_strategy,
)
from .write_operation import WriteOperation, WriteState

__version__ = "1.0.0"
__all__ = [
    # facade
    "File",
    "FileOptions",
    "OperationConfig",
    # engines
    "ReadOperation",
    "ReadState",
    "WriteOperation",
    "WriteState",
    "WriteLockRegistry",
    "write_lock_registry",
    # paths
    "PathKind",
    "classify_path",
    # retry
    "RetryStrategy",
    "RetryPolicy",
    "default_retry_classifier",
    "default_read_file_exists_retry_strategy",
    "default_write_file_exists_retry_strategy",
    "default_read_file_retry_strategy",
    "default_write_file_retry_strategy",
    # errors
    "KeepStreamingError",
    "ConfigurationError",
    "ReadTimeoutError",
    "RetryExhaustedError",
    "StreamClosedError",
]
