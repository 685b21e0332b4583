"""
Path classification and open flags.

The kind of a path is derived from ``os.stat`` every time a stream is opened;
nothing is cached, so a path that turns from a regular file into a FIFO (or
appears as a device after hotplug) is picked up on the next (re)open.
"""

from __future__ import annotations

import os
import stat
from enum import Enum
from typing import Tuple

DEVICE_PREFIX = "/dev/"

_O_NONBLOCK = getattr(os, "O_NONBLOCK", 0)
_O_NOCTTY = getattr(os, "O_NOCTTY", 0)


class PathKind(str, Enum):
    """What kind of filesystem object a path refers to."""

    REGULAR = "regular"
    CHARACTER_DEVICE = "character_device"
    BLOCK_DEVICE = "block_device"
    FIFO = "fifo"

    @property
    def pollable(self) -> bool:
        """Whether readiness can usually be observed through the event loop."""
        return self in (PathKind.FIFO, PathKind.CHARACTER_DEVICE)


def is_device_path(path: str) -> bool:
    return path.startswith(DEVICE_PREFIX)


def kind_from_mode(mode: int) -> PathKind:
    if stat.S_ISFIFO(mode):
        return PathKind.FIFO
    if stat.S_ISCHR(mode):
        return PathKind.CHARACTER_DEVICE
    if stat.S_ISBLK(mode):
        return PathKind.BLOCK_DEVICE
    return PathKind.REGULAR


def classify_path(path: str) -> PathKind:
    """Classify ``path``; anything that cannot be stat'ed counts as REGULAR."""
    try:
        st = os.stat(path)
    except OSError:
        return PathKind.REGULAR
    return kind_from_mode(st.st_mode)


# Candidate flags per kind, tried in order (read-write first for character
# devices, plain read-only / write-only as fallback).
_READ_FLAGS = {
    PathKind.CHARACTER_DEVICE: (
        os.O_RDWR | _O_NOCTTY | _O_NONBLOCK,
        os.O_RDONLY | _O_NOCTTY | _O_NONBLOCK,
    ),
    PathKind.BLOCK_DEVICE: (os.O_RDONLY,),
    PathKind.FIFO: (os.O_RDONLY | _O_NONBLOCK,),
    PathKind.REGULAR: (os.O_RDONLY,),
}

_WRITE_FLAGS = {
    PathKind.CHARACTER_DEVICE: (
        os.O_RDWR | _O_NOCTTY | _O_NONBLOCK,
        os.O_WRONLY | _O_NOCTTY | _O_NONBLOCK,
    ),
    PathKind.BLOCK_DEVICE: (os.O_WRONLY,),
    # non-blocking so a missing reader fails with ENXIO instead of parking in open()
    PathKind.FIFO: (os.O_WRONLY | _O_NONBLOCK,),
    PathKind.REGULAR: (os.O_WRONLY | os.O_CREAT | os.O_TRUNC,),
}

# Regular files under /dev/ (e.g. /dev/shm) are written in place, never
# created or truncated.
_DEVICE_REGULAR_WRITE_FLAGS = (os.O_RDWR, os.O_WRONLY)


def read_flags(kind: PathKind) -> Tuple[int, ...]:
    return _READ_FLAGS[kind]


def write_flags(kind: PathKind, path: str = "") -> Tuple[int, ...]:
    if kind is PathKind.REGULAR and is_device_path(path):
        return _DEVICE_REGULAR_WRITE_FLAGS
    return _WRITE_FLAGS[kind]


def open_with_fallback(path: str, candidates: Tuple[int, ...], mode: int = 0o666) -> int:
    """Open ``path`` with the first flag set that works.

    ``FileNotFoundError`` is raised straight away; other failures move on to the
    next candidate and the failure of the last candidate propagates.
    """
    *fallbacks, final = candidates
    for flags in fallbacks:
        try:
            return os.open(path, flags, mode)
        except FileNotFoundError:
            raise
        except OSError:
            continue
    return os.open(path, final, mode)
