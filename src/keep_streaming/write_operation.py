"""
Serialized write engine.

State machine:

    ACQUIRING_LOCK -> WAITING_FOR_DESTINATION -> WRITING -> FINISHED | ERRORED
                                                  ^   |
                                                  |   v
                                           WAITING_FOR_READER (FIFO only)

The path's write lock is held from ACQUIRING_LOCK until the terminal state,
across every existence retry and every write retry, and is released exactly
once before ``on_finish`` / ``on_error`` fires.
"""

from __future__ import annotations

import asyncio
import errno
import inspect
import os
from enum import Enum
from time import monotonic
from typing import Any, Awaitable, Callable, Optional, Set, Union

from loguru import logger

from .config import OperationConfig
from .errors import ConfigurationError
from .metrics import OPERATIONS_TOTAL, RETRIES_TOTAL, WRITE_LATENCY_MS
from .paths import PathKind, classify_path, is_device_path
from .registry import WriteLockRegistry, write_lock_registry
from .retry import retry_delay_seconds
from .settings import Settings, get_settings
from .streams import open_write_descriptor, write_all

Payload = Union[str, bytes, bytearray, memoryview]
MaybeAwaitable = Union[None, Awaitable[None]]


class WriteState(str, Enum):
    CREATED = "created"
    ACQUIRING_LOCK = "acquiring_lock"
    WAITING_FOR_DESTINATION = "waiting_for_destination"
    WAITING_FOR_READER = "waiting_for_reader"
    WRITING = "writing"
    FINISHED = "finished"
    ERRORED = "errored"


def encode_payload(data: Payload) -> bytes:
    """Text is written as UTF-8, binary payloads as-is."""
    if isinstance(data, str):
        return data.encode("utf-8")
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)
    raise ConfigurationError(
        f"data must be str or a bytes-like object, got {type(data).__name__}"
    )


class WriteOperation:
    """Chainable, per-path serialized write of one payload.

    Writes to the same path run one at a time, in the order ``write()`` was
    called, each one including all of its own retries.
    """

    def __init__(
        self,
        file_path: str,
        data: Payload,
        config: OperationConfig,
        *,
        registry: Optional[WriteLockRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self._file_path = file_path
        self._payload = encode_payload(data)
        self._config = config
        self._registry = registry or write_lock_registry()
        self._reader_poll_ms = (settings or get_settings()).fifo_writer_poll_ms

        self._finish_callback: Optional[Callable[[], MaybeAwaitable]] = None
        self._error_callback: Optional[Callable[[BaseException], MaybeAwaitable]] = None

        self._state = WriteState.CREATED
        self._attempt = 1
        self._error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return (
            f"WriteOperation({self._file_path!r}, {len(self._payload)} bytes, "
            f"state={self._state.value})"
        )

    @property
    def file_path(self) -> str:
        return self._file_path

    @property
    def payload(self) -> bytes:
        return self._payload

    @property
    def state(self) -> WriteState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def done(self) -> bool:
        return self._state in (WriteState.FINISHED, WriteState.ERRORED)

    def on_finish(self, callback: Callable[[], MaybeAwaitable]) -> "WriteOperation":
        self._finish_callback = callback
        return self

    def on_error(self, callback: Callable[[BaseException], MaybeAwaitable]) -> "WriteOperation":
        self._error_callback = callback
        return self

    def write(self) -> "WriteOperation":
        """Queue the write on the running event loop; call last in the chain."""
        if self._task is not None:
            raise RuntimeError(f"write() already started for {self._file_path}")
        self._state = WriteState.ACQUIRING_LOCK
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"keep-streaming-write:{self._file_path}"
        )
        return self

    async def wait(self) -> None:
        """Wait for the write to end; raises its terminal error, if any."""
        if self._task is not None:
            await self._task
        while self._pending:
            await asyncio.gather(*list(self._pending))
        if self._error is not None:
            raise self._error

    async def _run(self) -> None:
        t0 = monotonic()
        unlock = await self._registry.acquire(self._file_path)
        error: Optional[BaseException] = None
        try:
            await self._wait_for_destination()
            await self._write_with_retry()
        except Exception as exc:
            error = exc
        finally:
            unlock()
        WRITE_LATENCY_MS.observe((monotonic() - t0) * 1000)

        if error is None:
            self._state = WriteState.FINISHED
            OPERATIONS_TOTAL.labels("write", "finished").inc()
            logger.debug(f"Wrote {len(self._payload)} bytes to {self._file_path}")
            self._dispatch(self._finish_callback)
        else:
            self._error = error
            self._state = WriteState.ERRORED
            OPERATIONS_TOTAL.labels("write", "errored").inc()
            logger.warning(f"Write to {self._file_path} failed: {type(error).__name__}: {error}")
            self._dispatch(self._error_callback, error)

    async def _wait_for_destination(self) -> None:
        self._state = WriteState.WAITING_FOR_DESTINATION
        attempt = 1
        while True:
            self._attempt = attempt
            try:
                await asyncio.to_thread(self._prepare_destination)
                return
            except Exception as exc:
                delay = self._config.write_file_exists_retry_strategy(
                    exc, attempt, self._file_path
                )
            RETRIES_TOTAL.labels("write", "exists").inc()
            logger.debug(
                f"{self._file_path} not writable yet (attempt {attempt}), "
                f"retrying in {retry_delay_seconds(delay):.3f}s"
            )
            await asyncio.sleep(retry_delay_seconds(delay))
            attempt += 1

    def _prepare_destination(self) -> None:
        path = self._file_path
        if is_device_path(path) or classify_path(path) is PathKind.FIFO:
            os.stat(path)
            return
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)

    async def _write_with_retry(self) -> None:
        attempt = 1
        while True:
            self._attempt = attempt
            self._state = WriteState.WRITING
            try:
                await self._write_once()
                return
            except Exception as exc:
                delay = self._config.write_file_retry_strategy(exc, attempt, self._file_path)
            RETRIES_TOTAL.labels("write", "stream").inc()
            logger.debug(
                f"Write to {self._file_path} failed (attempt {attempt}), "
                f"retrying in {retry_delay_seconds(delay):.3f}s"
            )
            await asyncio.sleep(retry_delay_seconds(delay))
            attempt += 1

    async def _write_once(self) -> None:
        # kind is re-derived on every attempt
        kind = await asyncio.to_thread(classify_path, self._file_path)
        fd = await self._open_destination(kind)
        try:
            await asyncio.to_thread(write_all, fd, self._payload)
        finally:
            os.close(fd)

    async def _open_destination(self, kind: PathKind) -> int:
        """Open the destination; a FIFO with no reader is waited on, not retried."""
        while True:
            try:
                fd = await asyncio.to_thread(open_write_descriptor, self._file_path, kind)
            except OSError as exc:
                if kind is not PathKind.FIFO or exc.errno != errno.ENXIO:
                    raise
            else:
                self._state = WriteState.WRITING
                return fd
            if self._state is not WriteState.WAITING_FOR_READER:
                self._state = WriteState.WAITING_FOR_READER
                logger.debug(f"Waiting for a reader on {self._file_path}")
            await asyncio.sleep(self._reader_poll_ms / 1000)

    def _dispatch(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            fut = asyncio.ensure_future(result)
            self._pending.add(fut)
            fut.add_done_callback(self._pending.discard)
