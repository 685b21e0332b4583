"""
Descriptor-level stream primitives used by the operation engines.

``ReadStream`` wraps one open descriptor. FIFOs and pollable character
devices are read non-blocking through the event loop's reader registration;
everything else (regular files, block devices, unpollable character devices)
is read with blocking ``os.read`` calls in the default executor.

``destroy()`` may be called at any time from the loop thread. A pending
``read()`` fails immediately with the destroy reason; if a threaded read is
still in flight the descriptor is closed once that read returns, never
underneath it.
"""

from __future__ import annotations

import asyncio
import os
from typing import Optional

from loguru import logger

from .errors import StreamClosedError
from .paths import PathKind, open_with_fallback, read_flags, write_flags


class ReadStream:
    """A continuous, non-auto-closing read stream over one descriptor."""

    def __init__(
        self,
        fd: int,
        path: str,
        kind: PathKind,
        *,
        chunk_size: int,
        loop: asyncio.AbstractEventLoop,
    ):
        self._fd: Optional[int] = fd
        self.path = path
        self.kind = kind
        self._chunk_size = chunk_size
        self._loop = loop

        self._waiter: Optional[asyncio.Future] = None
        self._inflight = False
        self._destroyed = False
        self._error: Optional[BaseException] = None

        self._pollable = kind.pollable and self._probe_pollable()
        if not self._pollable:
            os.set_blocking(fd, True)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def pollable(self) -> bool:
        return self._pollable

    def _probe_pollable(self) -> bool:
        # e.g. /dev/null and /dev/zero refuse epoll registration
        try:
            self._loop.add_reader(self._fd, lambda: None)
        except (OSError, ValueError, NotImplementedError):
            return False
        self._loop.remove_reader(self._fd)
        return True

    async def read(self) -> bytes:
        """Return the next chunk, or ``b""`` at end of stream."""
        if self._destroyed:
            raise self._error or StreamClosedError(f"{self.path} stream destroyed")
        if self._pollable:
            return await self._read_polled()
        return await self._read_threaded()

    async def _read_polled(self) -> bytes:
        # Wait for readiness before every read: a FIFO opened with no writer
        # reads as EOF immediately, but only polls as hung up once a writer
        # has come and gone.
        while True:
            self._waiter = self._loop.create_future()
            self._loop.add_reader(self._fd, self._on_readable)
            try:
                await self._waiter
            finally:
                self._waiter = None
                if self._fd is not None:
                    self._loop.remove_reader(self._fd)
            try:
                return os.read(self._fd, self._chunk_size)
            except BlockingIOError:
                continue

    def _on_readable(self) -> None:
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_result(None)

    async def _read_threaded(self) -> bytes:
        self._waiter = self._loop.create_future()
        self._inflight = True
        fut = self._loop.run_in_executor(None, os.read, self._fd, self._chunk_size)
        fut.add_done_callback(self._on_threaded_read)
        try:
            return await self._waiter
        finally:
            self._waiter = None

    def _on_threaded_read(self, fut: asyncio.Future) -> None:
        self._inflight = False
        exc = fut.exception() if not fut.cancelled() else StreamClosedError(self.path)
        if self._destroyed:
            self._close_fd()
            return
        waiter = self._waiter
        if waiter is None or waiter.done():
            return
        if exc is not None:
            waiter.set_exception(exc)
        else:
            waiter.set_result(fut.result())

    async def wait_closed(self) -> None:
        """Hold the stream open until it is destroyed; raises the destroy reason."""
        if not self._destroyed:
            self._waiter = self._loop.create_future()
            try:
                await self._waiter
            except StreamClosedError:
                pass
            finally:
                self._waiter = None
        if self._error is not None:
            raise self._error

    def seek(self, offset: int) -> int:
        """Position a regular-file stream; starts over if the file shrank below ``offset``."""
        if offset > os.fstat(self._fd).st_size:
            offset = 0
        return os.lseek(self._fd, offset, os.SEEK_SET)

    def destroy(self, error: Optional[BaseException] = None) -> None:
        """Tear the stream down; idempotent."""
        if self._destroyed:
            return
        self._destroyed = True
        self._error = error
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(error or StreamClosedError(f"{self.path} stream destroyed"))
        if not self._inflight:
            self._close_fd()

    def _close_fd(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        if self._pollable:
            self._loop.remove_reader(fd)
        try:
            os.close(fd)
        except OSError as exc:
            logger.debug(f"close({self.path}) failed: {exc}")


async def open_read_stream(path: str, kind: PathKind, *, chunk_size: int) -> ReadStream:
    """Open ``path`` for continuous reading with flags suited to ``kind``."""
    loop = asyncio.get_running_loop()
    fd = await asyncio.to_thread(open_with_fallback, path, read_flags(kind))
    try:
        return ReadStream(fd, path, kind, chunk_size=chunk_size, loop=loop)
    except BaseException:
        os.close(fd)
        raise


def open_write_descriptor(path: str, kind: PathKind) -> int:
    """Open ``path`` for writing and return a blocking descriptor (blocking call)."""
    fd = open_with_fallback(path, write_flags(kind, path))
    # opened non-blocking only to avoid parking in open(); writes block normally
    os.set_blocking(fd, True)
    return fd


def write_all(fd: int, data: bytes) -> int:
    """Write every byte of ``data`` to ``fd`` (blocking call)."""
    view = memoryview(data)
    written = 0
    while written < len(view):
        written += os.write(fd, view[written:])
    return written


def release_fifo(path: str) -> bool:
    """Let go of both ends of a FIFO without ever blocking.

    First a zero-length write handshake; it returns False when there is no
    reader on the other end (``ENXIO``), which is the normal case once the
    caller's own read end is closed. Then the read end is opened and closed
    once, which completes any writer parked in ``open()``; that writer's next
    write fails with ``EPIPE``.
    """
    nonblock = getattr(os, "O_NONBLOCK", 0)
    try:
        fd = os.open(path, os.O_WRONLY | nonblock)
    except OSError as exc:
        logger.debug(f"FIFO write handshake skipped for {path}: {exc}")
        handshake = False
    else:
        try:
            os.write(fd, b"")
        finally:
            os.close(fd)
        handshake = True

    try:
        os.close(os.open(path, os.O_RDONLY | nonblock))
    except OSError as exc:
        logger.debug(f"FIFO read-end pulse skipped for {path}: {exc}")
    return handshake
