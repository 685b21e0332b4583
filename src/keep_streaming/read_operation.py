"""
Continuous read engine.

State machine:

    WAITING_FOR_EXISTENCE -> READING -> [RECONNECTING -> READING]* -> FINISHED | ERRORED

A regular file (or block/character device) that reaches end of stream is
FINISHED. A FIFO that reaches end of stream only lost its writer: the engine
waits ``fifo_reopen_delay_ms`` and opens it again, indefinitely, until the
consumer calls ``finish()``.

With a read timeout configured, a stream that is not a FIFO stays open after
end of stream until the timeout expires, and the expiry is handled like any
other stream failure. A retried regular-file stream resumes after the bytes
already delivered.

Usage:

    op = (
        File("/tmp/sensor.fifo")
        .prepare_read()
        .on_data(lambda chunk, finish, attempt: handle(chunk))
        .on_finish(lambda: print("done"))
        .on_error(lambda err: print("failed:", err))
        .read()
    )
    ...
    op.finish()
"""

from __future__ import annotations

import asyncio
import inspect
import os
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Set, Union

from loguru import logger

from .config import OperationConfig
from .errors import ReadTimeoutError
from .metrics import (
    FIFO_RECONNECTS_TOTAL,
    OPERATIONS_TOTAL,
    READ_BYTES_TOTAL,
    READ_CHUNKS_TOTAL,
    RETRIES_TOTAL,
)
from .paths import PathKind, classify_path
from .retry import Delay, retry_delay_seconds
from .settings import Settings, get_settings
from .streams import ReadStream, open_read_stream, release_fifo

MaybeAwaitable = Union[None, Awaitable[None]]
FinishFn = Callable[[], None]
DataCallback = Callable[[bytes, FinishFn, int], MaybeAwaitable]
FinishCallback = Callable[[], MaybeAwaitable]
ErrorCallback = Callable[[BaseException], MaybeAwaitable]


class ReadState(str, Enum):
    CREATED = "created"
    WAITING_FOR_EXISTENCE = "waiting_for_existence"
    READING = "reading"
    RECONNECTING = "reconnecting"
    FINISHED = "finished"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (ReadState.FINISHED, ReadState.ERRORED)


class _CallbackFailed(Exception):
    """Carries an exception raised by the consumer's data callback."""


class ReadOperation:
    """Chainable continuous read of a file, device or FIFO.

    Callbacks may be plain functions or coroutine functions:

    - ``on_data(chunk, finish, attempt)`` for every chunk, in source order.
      ``finish`` cancels the whole operation; ``attempt`` is 1 for the first
      chunk after every (re)connection.
    - ``on_finish()`` once, on natural end of stream or on ``finish()``.
    - ``on_error(error)`` once, when a retry strategy gives up.

    At most one of ``on_finish`` / ``on_error`` fires, and ``on_data`` never
    fires after either.
    """

    def __init__(
        self,
        file_path: str,
        config: OperationConfig,
        *,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self._file_path = file_path
        self._config = config
        self._chunk_size = settings.read_chunk_size
        self._reopen_delay_ms = settings.fifo_reopen_delay_ms

        self._data_callback: Optional[DataCallback] = None
        self._finish_callback: Optional[FinishCallback] = None
        self._error_callback: Optional[ErrorCallback] = None

        self._state = ReadState.CREATED
        self._attempt = 1
        self._stopped = False
        self._stop_event = asyncio.Event()
        self._error: Optional[BaseException] = None

        self._kind: Optional[PathKind] = None
        self._offset = 0
        self._stream: Optional[ReadStream] = None
        self._timeout_handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return f"ReadOperation({self._file_path!r}, state={self._state.value})"

    # --------------- introspection

    @property
    def file_path(self) -> str:
        return self._file_path

    @property
    def state(self) -> ReadState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def kind(self) -> Optional[PathKind]:
        """Kind observed when the current (or last) stream was opened."""
        return self._kind

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def done(self) -> bool:
        return self._stopped

    # --------------- chainable setup

    def on_data(self, callback: DataCallback) -> "ReadOperation":
        self._data_callback = callback
        return self

    def on_finish(self, callback: FinishCallback) -> "ReadOperation":
        self._finish_callback = callback
        return self

    def on_error(self, callback: ErrorCallback) -> "ReadOperation":
        self._error_callback = callback
        return self

    # --------------- execution

    def read(self) -> "ReadOperation":
        """Start reading on the running event loop; call last in the chain."""
        if self._task is not None:
            raise RuntimeError(f"read() already started for {self._file_path}")
        if self._stopped:
            return self
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"keep-streaming-read:{self._file_path}"
        )
        return self

    async def wait(self) -> None:
        """Wait for the operation to end; raises its terminal error, if any."""
        if self._task is not None:
            await self._task
        while self._pending:
            await asyncio.gather(*list(self._pending))
        if self._error is not None:
            raise self._error

    def finish(self) -> None:
        """Cancel the operation. Safe from inside ``on_data``; idempotent."""
        if self._stopped:
            return
        self._settle(ReadState.FINISHED)
        if self._kind is PathKind.FIFO:
            # our read end is closed by now; writers blocked on it got EPIPE
            release_fifo(self._file_path)
        logger.debug(f"Read of {self._file_path} finished by consumer")
        self._dispatch(self._finish_callback)

    async def _run(self) -> None:
        try:
            await self._wait_for_existence()
            await self._stream_loop()
        except _CallbackFailed as exc:
            self._fail(exc.__cause__)
        except Exception as exc:
            self._fail(exc)
        finally:
            self._teardown()

    async def _wait_for_existence(self) -> None:
        self._set_state(ReadState.WAITING_FOR_EXISTENCE)
        attempt = 1
        while not self._stopped:
            self._attempt = attempt
            try:
                await asyncio.to_thread(os.stat, self._file_path)
                return
            except OSError as exc:
                delay = self._config.read_file_exists_retry_strategy(
                    exc, attempt, self._file_path
                )
            RETRIES_TOTAL.labels("read", "exists").inc()
            logger.debug(
                f"{self._file_path} not readable yet (attempt {attempt}), "
                f"retrying in {retry_delay_seconds(delay):.3f}s"
            )
            await self._sleep(delay)
            attempt += 1

    async def _stream_loop(self) -> None:
        self._attempt = 1
        while not self._stopped:
            self._set_state(ReadState.READING)
            try:
                reopen = await self._read_once()
            except _CallbackFailed:
                raise
            except Exception as exc:
                if self._stopped:
                    return
                delay = self._config.read_file_retry_strategy(exc, self._attempt, self._file_path)
                RETRIES_TOTAL.labels("read", "stream").inc()
                logger.debug(
                    f"Read stream for {self._file_path} failed "
                    f"(attempt {self._attempt}): {type(exc).__name__}: {exc}"
                )
                self._attempt += 1
                await self._sleep(delay)
                continue

            if self._stopped:
                return
            if not reopen:
                self._complete()
                return

            # FIFO writer went away; wait for the next one
            self._set_state(ReadState.RECONNECTING)
            FIFO_RECONNECTS_TOTAL.inc()
            await self._sleep(self._reopen_delay_ms)

    async def _read_once(self) -> bool:
        """Stream one opening of the path; True means "reopen" (FIFO hang-up)."""
        kind = await asyncio.to_thread(classify_path, self._file_path)
        stream = await open_read_stream(self._file_path, kind, chunk_size=self._chunk_size)
        if self._stopped:
            stream.destroy()
            return False

        self._kind = kind
        self._stream = stream
        self._arm_timeout(stream)
        received = False
        try:
            if kind is PathKind.REGULAR and self._offset:
                # a retried stream picks up after the bytes already delivered
                self._offset = stream.seek(self._offset)
            while True:
                chunk = await stream.read()
                if not chunk:
                    if kind is PathKind.FIFO:
                        return True
                    if self._timeout_handle is not None:
                        # the read window outlives end of stream; expiry is a stream error
                        await stream.wait_closed()
                    return False
                if not received:
                    # a successful (re)connection clears the failure history
                    received = True
                    self._attempt = 1
                READ_CHUNKS_TOTAL.labels(kind.value).inc()
                READ_BYTES_TOTAL.labels(kind.value).inc(len(chunk))
                if kind is PathKind.REGULAR:
                    self._offset += len(chunk)
                await self._deliver(chunk)
                if self._stopped:
                    return False
        finally:
            self._disarm_timeout()
            self._stream = None
            stream.destroy()

    async def _deliver(self, chunk: bytes) -> None:
        if self._data_callback is None:
            return
        try:
            result = self._data_callback(chunk, self.finish, self._attempt)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            raise _CallbackFailed() from exc

    # --------------- timers

    def _arm_timeout(self, stream: ReadStream) -> None:
        timeout_ms = self._config.read_timeout
        if timeout_ms > 0:
            loop = asyncio.get_running_loop()
            self._timeout_handle = loop.call_later(
                timeout_ms / 1000, self._on_timeout, stream, timeout_ms
            )

    def _on_timeout(self, stream: ReadStream, timeout_ms: int) -> None:
        self._timeout_handle = None
        logger.debug(f"{self._file_path} read timeout after {timeout_ms}ms")
        stream.destroy(ReadTimeoutError(self._file_path, timeout_ms))

    def _disarm_timeout(self) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    async def _sleep(self, delay: Delay) -> None:
        # returns early once the operation is stopped
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=retry_delay_seconds(delay))
        except asyncio.TimeoutError:
            pass

    # --------------- terminal transitions

    def _set_state(self, state: ReadState) -> None:
        if self._state.terminal:
            return
        self._state = state

    def _settle(self, state: ReadState) -> None:
        self._set_state(state)
        self._stopped = True
        self._stop_event.set()
        self._teardown()
        OPERATIONS_TOTAL.labels("read", state.value).inc()

    def _teardown(self) -> None:
        self._disarm_timeout()
        stream, self._stream = self._stream, None
        if stream is not None:
            stream.destroy()

    def _complete(self) -> None:
        if self._stopped:
            return
        self._settle(ReadState.FINISHED)
        logger.debug(f"Read of {self._file_path} reached end of stream")
        self._dispatch(self._finish_callback)

    def _fail(self, error: BaseException) -> None:
        if self._stopped:
            logger.warning(
                f"Ignoring error after {self._file_path} read ended: "
                f"{type(error).__name__}: {error}"
            )
            return
        self._error = error
        self._settle(ReadState.ERRORED)
        logger.warning(f"Read of {self._file_path} failed: {type(error).__name__}: {error}")
        self._dispatch(self._error_callback, error)

    def _dispatch(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        result = callback(*args)
        if inspect.isawaitable(result):
            fut = asyncio.ensure_future(result)
            self._pending.add(fut)
            fut.add_done_callback(self._pending.discard)
