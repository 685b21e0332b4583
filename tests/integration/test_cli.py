"""
CLI tests driven through typer's CliRunner.
"""

import json
import sys

import pytest
from loguru import logger
from typer.testing import CliRunner

from keep_streaming.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_logger():
    # the CLI callback rebinds loguru to the runner's (short-lived) stderr
    yield
    logger.remove()
    logger.add(sys.stderr)


def test_write_then_read(tmp_path):
    p = tmp_path / "nested" / "cli.txt"

    result = runner.invoke(app, ["write", str(p), "hello from the cli"])
    assert result.exit_code == 0
    assert p.read_text() == "hello from the cli"

    result = runner.invoke(app, ["--log-level", "error", "read", str(p)])
    assert result.exit_code == 0
    assert "hello from the cli" in result.stdout


def test_write_from_stdin(tmp_path):
    p = tmp_path / "stdin.bin"
    result = runner.invoke(app, ["write", str(p), "--stdin"], input="piped\n")
    assert result.exit_code == 0
    assert p.read_bytes() == b"piped\n"


def test_write_without_data_is_usage_error(tmp_path):
    result = runner.invoke(app, ["write", str(tmp_path / "x.txt")])
    assert result.exit_code == 2


def test_read_max_bytes_finishes_early(tmp_path):
    p = tmp_path / "big.txt"
    p.write_text("B" * 10_000)
    result = runner.invoke(app, ["--log-level", "error", "read", str(p), "--max-bytes", "1"])
    assert result.exit_code == 0
    # one 1 KiB chunk is enough to cross the limit
    assert result.stdout == "B" * 1024


def test_read_error_exit_code(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    result = runner.invoke(app, ["--log-level", "critical", "read", str(blocker / "child.txt")])
    assert result.exit_code == 1


def test_classify(tmp_path):
    p = tmp_path / "plain.txt"
    p.write_text("x")
    result = runner.invoke(app, ["classify", str(p)])
    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"path": str(p), "kind": "regular"}


def test_classify_fifo(make_fifo):
    path = make_fifo("cli-fifo")
    result = runner.invoke(app, ["classify", path])
    assert json.loads(result.stdout)["kind"] == "fifo"
