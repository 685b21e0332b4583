from __future__ import annotations

import asyncio
import json
import sys
from typing import Optional

import typer
from loguru import logger

from .file import File
from .paths import classify_path
from .settings import get_settings

app = typer.Typer(help="keep-streaming CLI (continuous reads, serialized writes)")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", envvar="KEEP_STREAMING_LOG_LEVEL", help="loguru level for stderr"
    ),
):
    logger.remove()
    logger.add(sys.stderr, level=(log_level or get_settings().log_level).upper())


# ---------------------------
# Reads
# ---------------------------


async def _read(path: str, timeout_ms: Optional[int], max_bytes: Optional[int]) -> bool:
    received = 0

    def on_data(chunk: bytes, finish, attempt: int) -> None:
        nonlocal received
        typer.echo(chunk, nl=False)
        received += len(chunk)
        if max_bytes is not None and received >= max_bytes:
            finish()

    op = File(path, {"read_timeout": timeout_ms}).prepare_read().on_data(on_data).read()
    try:
        await op.wait()
    except Exception as e:
        logger.error(f"Read failed: {e}")
        return False
    logger.info(f"Read {received} bytes from {path}")
    return True


@app.command("read")
def read(
    path: str = typer.Argument(..., help="File, device or FIFO to read"),
    timeout_ms: Optional[int] = typer.Option(
        None, "--timeout-ms", help="Fail a stream with no terminal event after this many ms"
    ),
    max_bytes: Optional[int] = typer.Option(
        None, "--max-bytes", help="Finish once at least this many bytes arrived"
    ),
):
    """Copy PATH to stdout; FIFOs are followed until interrupted."""
    ok = asyncio.run(_read(path, timeout_ms, max_bytes))
    raise typer.Exit(code=0 if ok else 1)


# ---------------------------
# Writes
# ---------------------------


async def _write(path: str, payload: bytes) -> bool:
    op = File(path).prepare_write(payload).write()
    try:
        await op.wait()
    except Exception as e:
        logger.error(f"Write failed: {e}")
        return False
    logger.success(f"Wrote {len(payload)} bytes to {path}")
    return True


@app.command("write")
def write(
    path: str = typer.Argument(..., help="File, device or FIFO to write"),
    data: Optional[str] = typer.Argument(None, help="Text to write"),
    stdin: bool = typer.Option(False, "--stdin", help="Write everything read from stdin"),
):
    """Write DATA (or stdin) to PATH, serialized with other writers in this process."""
    if stdin:
        payload = typer.get_binary_stream("stdin").read()
    elif data is not None:
        payload = data.encode("utf-8")
    else:
        typer.echo("error: provide DATA or --stdin", err=True)
        raise typer.Exit(code=2)
    ok = asyncio.run(_write(path, payload))
    raise typer.Exit(code=0 if ok else 1)


@app.command("classify")
def classify(path: str = typer.Argument(...)):
    """Print the kind of PATH (regular, character_device, block_device, fifo)."""
    typer.echo(json.dumps({"path": path, "kind": classify_path(path).value}))


if __name__ == "__main__":
    app()
