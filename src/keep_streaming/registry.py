"""
Write serialization registry.

One FIFO mutex per normalized path, shared by every write operation in the
process. A write holds its path's mutex across all of its own retries, so
writes to one path complete strictly in the order they asked for the lock.

Entries are created lazily and never evicted; a process touching very many
distinct paths keeps one small ``PathMutex`` per path for its lifetime.
"""

from __future__ import annotations

import asyncio
import os
from collections import deque
from typing import Callable, Dict, Optional

from loguru import logger

Unlock = Callable[[], None]


class PathMutex:
    """First-in-first-out async mutex with direct handoff.

    Waiter futures are created on the acquiring task's running loop, so the
    mutex is not tied to a single event loop.
    """

    def __init__(self, key: str):
        self.key = key
        self._locked = False
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def locked(self) -> bool:
        return self._locked

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> Unlock:
        """Wait for the mutex and return its one-shot unlock function."""
        if not self._locked and not self._waiters:
            self._locked = True
            return self._make_unlock()

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # ownership was handed over just before cancellation
                self._release()
            raise
        finally:
            try:
                self._waiters.remove(fut)
            except ValueError:
                pass
        return self._make_unlock()

    def _make_unlock(self) -> Unlock:
        released = False

        def unlock() -> None:
            nonlocal released
            if released:
                logger.warning(f"Write lock for {self.key} released twice; ignoring")
                return
            released = True
            self._release()

        return unlock

    def _release(self) -> None:
        for fut in self._waiters:
            if not fut.done():
                # stays locked; ownership moves to the next waiter
                fut.set_result(None)
                return
        self._locked = False


class WriteLockRegistry:
    """Process-wide map from normalized path to its ``PathMutex``."""

    def __init__(self) -> None:
        self._mutexes: Dict[str, PathMutex] = {}

    @staticmethod
    def normalize(path: str) -> str:
        return os.path.abspath(path)

    def mutex_for(self, path: str) -> PathMutex:
        key = self.normalize(path)
        mutex = self._mutexes.get(key)
        if mutex is None:
            mutex = self._mutexes[key] = PathMutex(key)
            logger.debug(f"Write lock created for {key} (total: {len(self._mutexes)})")
        return mutex

    async def acquire(self, path: str) -> Unlock:
        """Wait for exclusive write access to ``path``; returns the unlock function."""
        return await self.mutex_for(path).acquire()

    def is_locked(self, path: str) -> bool:
        mutex = self._mutexes.get(self.normalize(path))
        return mutex is not None and mutex.locked

    def __len__(self) -> int:
        return len(self._mutexes)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and self.normalize(path) in self._mutexes


# --- Singleton accessor for in-process use ---

_registry: Optional[WriteLockRegistry] = None


def write_lock_registry() -> WriteLockRegistry:
    """Get the process-wide WriteLockRegistry instance."""
    global _registry
    if _registry is None:
        _registry = WriteLockRegistry()
        logger.debug("WriteLockRegistry singleton initialized")
    return _registry
