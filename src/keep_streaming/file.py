"""
``File``: entry point for continuous reads and serialized writes.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from .config import FileOptions, OperationConfig
from .errors import ConfigurationError
from .paths import PathKind, classify_path
from .read_operation import ReadOperation
from .registry import WriteLockRegistry
from .write_operation import Payload, WriteOperation


class File:
    """A regular file, device file (``/dev/*``) or FIFO to read from and write to.

    Example:
        sensor = File("/dev/sensor", {"read_timeout": 60_000})

        sensor.prepare_read() \\
            .on_data(lambda chunk, finish, attempt: sys.stdout.buffer.write(chunk)) \\
            .on_error(lambda err: logger.error(f"Read failed: {err}")) \\
            .read()

        await File("/tmp/out.txt").prepare_write("Hello, World!\\n").write().wait()
    """

    def __init__(
        self,
        file_path: str,
        options: Optional[Union[FileOptions, OperationConfig, Mapping[str, Any]]] = None,
        *,
        registry: Optional[WriteLockRegistry] = None,
    ):
        if not isinstance(file_path, str) or not file_path:
            raise ConfigurationError("file_path must be a non-empty string.")
        self._file_path = file_path
        self._config = OperationConfig.from_options(options)
        self._registry = registry

    def __repr__(self) -> str:
        return f"File({self._file_path!r})"

    @property
    def file_path(self) -> str:
        return self._file_path

    @property
    def config(self) -> OperationConfig:
        return self._config

    def kind(self) -> PathKind:
        """Current kind of the path (blocking ``stat``)."""
        return classify_path(self._file_path)

    def prepare_read(self) -> ReadOperation:
        """Create a read operation; start it with ``.read()``."""
        return ReadOperation(self._file_path, self._config)

    def prepare_write(self, data: Payload) -> WriteOperation:
        """Create a write operation for ``data``; start it with ``.write()``."""
        return WriteOperation(self._file_path, data, self._config, registry=self._registry)
