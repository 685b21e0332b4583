"""
Demo script for serialized writes.

Fires many concurrent writes at one path; they land one after another in
the order they were queued, each replacing the file's content.
"""

import asyncio
import os
import tempfile

from loguru import logger

from keep_streaming import File, write_lock_registry


async def main():
    path = os.path.join(tempfile.mkdtemp(prefix="keep-streaming-"), "out", "status.txt")
    target = File(path)
    logger.info(f"🚀 Queueing 100 writes to {path}")

    done = []
    ops = [
        target.prepare_write(f"status {i}\n").on_finish(lambda i=i: done.append(i)).write()
        for i in range(100)
    ]
    await asyncio.sleep(0)
    logger.info(f"Lock held: {write_lock_registry().is_locked(path)}")

    await asyncio.gather(*(op.wait() for op in ops))
    assert done == list(range(100))

    with open(path) as fh:
        logger.info(f"Final content: {fh.read().strip()!r}")
    logger.info("✅ Serialized writes demo complete")


if __name__ == "__main__":
    asyncio.run(main())
