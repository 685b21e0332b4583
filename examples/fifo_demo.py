"""
Demo script for continuous FIFO reads.

Creates a named pipe, follows it with a reader while several short-lived
writers come and go, then finishes the reader.
"""

import asyncio
import os
import tempfile

from loguru import logger

from keep_streaming import File


async def main():
    fifo = os.path.join(tempfile.mkdtemp(prefix="keep-streaming-"), "demo.fifo")
    os.mkfifo(fifo)
    logger.info(f"🚀 Following {fifo}")

    reader = (
        File(fifo)
        .prepare_read()
        .on_data(lambda chunk, finish, attempt: logger.info(f"📥 {chunk!r} (attempt {attempt})"))
        .on_finish(lambda: logger.info("✅ Reader finished"))
        .on_error(lambda err: logger.error(f"❌ Reader failed: {err}"))
        .read()
    )

    # every writer opens, writes and closes; the reader reconnects in between
    for i in range(5):
        await asyncio.sleep(0.3)
        await File(fifo).prepare_write(f"message {i}\n").write().wait()

    await asyncio.sleep(0.3)
    reader.finish()
    await reader.wait()

    os.unlink(fifo)
    os.rmdir(os.path.dirname(fifo))
    logger.info("✅ FIFO demo complete")


if __name__ == "__main__":
    asyncio.run(main())
