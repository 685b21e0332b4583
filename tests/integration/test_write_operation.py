"""
Integration tests for the serialized write engine against the real filesystem.
"""

import asyncio
import errno
import os
import time

import pytest

import keep_streaming.write_operation as write_module
from keep_streaming import File, RetryExhaustedError, WriteState
from prometheus_client import REGISTRY


@pytest.mark.asyncio
async def test_write_text_to_fresh_file(tmp_path, registry):
    """Test write of text content to a file that does not exist yet."""
    p = tmp_path / "write-test.txt"
    finished = []

    op = (
        File(str(p), registry=registry)
        .prepare_write("Test write content")
        .on_finish(lambda: finished.append(True))
        .on_error(lambda err: pytest.fail(f"unexpected error: {err}"))
        .write()
    )
    await op.wait()

    assert finished == [True]
    assert op.state is WriteState.FINISHED
    assert p.read_text() == "Test write content"
    assert not registry.is_locked(str(p))


@pytest.mark.asyncio
async def test_write_binary_data(tmp_path, registry):
    p = tmp_path / "binary-test.dat"
    await File(str(p), registry=registry).prepare_write(bytes([1, 2, 3, 4])).write().wait()
    assert p.read_bytes() == b"\x01\x02\x03\x04"


@pytest.mark.asyncio
async def test_creates_parent_directories(tmp_path, registry):
    p = tmp_path / "nested" / "deep" / "nested-write-test.txt"
    await File(str(p), registry=registry).prepare_write("Nested write test").write().wait()
    assert p.read_text() == "Nested write test"


@pytest.mark.asyncio
async def test_sequential_writes_replace_content(tmp_path, registry):
    p = tmp_path / "sequential-test.txt"
    f = File(str(p), registry=registry)
    await f.prepare_write("First write").write().wait()
    await f.prepare_write(b"Second write").write().wait()
    assert p.read_text() == "Second write"


@pytest.mark.asyncio
async def test_concurrent_writes_finish_in_submission_order(tmp_path, registry):
    """N concurrent writes: N completions, in order; last payload wins."""
    p = tmp_path / "concurrent-test.txt"
    f = File(str(p), registry=registry)
    order = []

    ops = [
        f.prepare_write(f"Write {i}").on_finish(lambda i=i: order.append(i)).write()
        for i in range(1, 11)
    ]
    await asyncio.gather(*(op.wait() for op in ops))

    assert order == list(range(1, 11))
    assert p.read_text() == "Write 10"


@pytest.mark.asyncio
async def test_three_concurrent_writes_leave_one_payload(tmp_path, registry):
    p = tmp_path / "three.txt"
    f = File(str(p), registry=registry)
    ops = [f.prepare_write(f"Write {i}").write() for i in (1, 2, 3)]
    await asyncio.gather(*(op.wait() for op in ops))
    assert p.read_text() in ("Write 1", "Write 2", "Write 3")
    assert p.read_text() == "Write 3"


@pytest.mark.asyncio
async def test_writes_to_one_path_never_overlap(tmp_path, registry, monkeypatch):
    events = []
    real_write_all = write_module.write_all

    def slow_write_all(fd, data):
        events.append(("start", data))
        time.sleep(0.01)
        n = real_write_all(fd, data)
        events.append(("end", data))
        return n

    monkeypatch.setattr(write_module, "write_all", slow_write_all)
    f = File(str(tmp_path / "overlap.txt"), registry=registry)
    ops = [f.prepare_write(f"w{i}").write() for i in range(4)]
    await asyncio.gather(*(op.wait() for op in ops))

    expected = []
    for i in range(4):
        expected += [("start", f"w{i}".encode()), ("end", f"w{i}".encode())]
    assert events == expected


@pytest.mark.asyncio
async def test_rapid_successive_writes(tmp_path, registry):
    p = tmp_path / "rapid-ops-test.txt"
    f = File(str(p), registry=registry)
    for i in range(200):
        await f.prepare_write(f"Operation {i}").write().wait()
    assert p.read_text() == "Operation 199"


@pytest.mark.asyncio
async def test_large_payload(tmp_path, registry):
    p = tmp_path / "large.txt"
    content = "A" * 1_000_000
    await File(str(p), registry=registry).prepare_write(content).write().wait()
    assert p.read_text() == content


@pytest.mark.skipif(not os.path.exists("/dev/null"), reason="/dev/null not available")
@pytest.mark.asyncio
async def test_write_to_dev_null(registry):
    op = File("/dev/null", registry=registry).prepare_write("test data to null device").write()
    await op.wait()
    assert op.state is WriteState.FINISHED


@pytest.mark.asyncio
async def test_missing_device_exhausts_and_releases_lock(registry):
    """Existence retries give up; the lock is free before on_error fires."""
    path = "/dev/keep-streaming-test-missing-device"
    attempts = []
    locked_during_error = []

    def strategy(error, attempt, p):
        attempts.append(attempt)
        if attempt >= 3:
            raise RetryExhaustedError(f"gave up after {attempt} retries", attempt=attempt, path=p)
        return 1

    f = File(path, {"write_file_exists_retry_strategy": strategy}, registry=registry)
    op = (
        f.prepare_write("x")
        .on_error(lambda err: locked_during_error.append(registry.is_locked(path)))
        .write()
    )
    with pytest.raises(RetryExhaustedError):
        await op.wait()

    assert attempts == [1, 2, 3]
    assert locked_during_error == [False]
    assert op.state is WriteState.ERRORED

    # a failed write never blocks the next one on the same path
    follow_up = f.prepare_write("y").write()
    with pytest.raises(RetryExhaustedError):
        await asyncio.wait_for(follow_up.wait(), timeout=2)


@pytest.mark.asyncio
async def test_parent_that_is_a_file_fails_without_retry(tmp_path, registry):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    errors = []

    op = (
        File(str(blocker / "child.txt"), registry=registry)
        .prepare_write("x")
        .on_finish(lambda: pytest.fail("should not finish"))
        .on_error(errors.append)
        .write()
    )
    with pytest.raises(OSError):
        await op.wait()
    assert len(errors) == 1
    assert not registry.is_locked(str(blocker / "child.txt"))


@pytest.mark.asyncio
async def test_stream_failure_is_retried(tmp_path, registry, monkeypatch):
    p = tmp_path / "flaky.txt"
    failures = {"left": 2}
    real_open = write_module.open_write_descriptor

    def flaky_open(path, kind):
        if failures["left"] > 0:
            failures["left"] -= 1
            raise BrokenPipeError(errno.EPIPE, "Broken pipe")
        return real_open(path, kind)

    monkeypatch.setattr(write_module, "open_write_descriptor", flaky_open)
    attempts = []

    def strategy(error, attempt, path):
        attempts.append(attempt)
        return 1

    op = File(str(p), {"write_file_retry_strategy": strategy}, registry=registry)
    await op.prepare_write("eventually").write().wait()

    assert attempts == [1, 2]
    assert p.read_text() == "eventually"


@pytest.mark.asyncio
async def test_stream_failure_exhaustion_reports_once(tmp_path, registry, monkeypatch, fast_retry):
    def broken_open(path, kind):
        raise OSError(errno.EIO, "Input/output error")

    monkeypatch.setattr(write_module, "open_write_descriptor", broken_open)
    finished, errors = [], []
    path = str(tmp_path / "broken.txt")

    op = (
        File(path, {"write_file_retry_strategy": fast_retry}, registry=registry)
        .prepare_write("x")
        .on_finish(lambda: finished.append(True))
        .on_error(errors.append)
        .write()
    )
    with pytest.raises(OSError):
        await op.wait()

    assert finished == []
    assert len(errors) == 1
    assert errors[0].errno == errno.EIO
    assert op.attempt == 3
    assert not registry.is_locked(path)


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(tmp_path, registry):
    seen = []

    async def on_finish():
        await asyncio.sleep(0.01)
        seen.append("finished")

    await File(str(tmp_path / "a.txt"), registry=registry).prepare_write("x").on_finish(
        on_finish
    ).write().wait()
    assert seen == ["finished"]


@pytest.mark.asyncio
async def test_write_cannot_start_twice(tmp_path, registry):
    op = File(str(tmp_path / "twice.txt"), registry=registry).prepare_write("x").write()
    with pytest.raises(RuntimeError):
        op.write()
    await op.wait()


@pytest.mark.asyncio
async def test_write_outcomes_are_counted(tmp_path, registry):
    labels = {"direction": "write", "outcome": "finished"}
    before = REGISTRY.get_sample_value("keep_streaming_operations_total", labels) or 0.0
    await File(str(tmp_path / "m.txt"), registry=registry).prepare_write("x").write().wait()
    after = REGISTRY.get_sample_value("keep_streaming_operations_total", labels)
    assert after == before + 1


@pytest.mark.asyncio
async def test_regular_file_under_dev_is_written_in_place(registry):
    """Regular files below /dev/ are overwritten from offset 0, not truncated."""
    if not os.access("/dev/shm", os.W_OK):
        pytest.skip("/dev/shm not writable")
    path = f"/dev/shm/keep-streaming-test-{os.getpid()}"
    with open(path, "w") as fh:
        fh.write("abcdef")
    try:
        await File(path, registry=registry).prepare_write("XY").write().wait()
        with open(path) as fh:
            assert fh.read() == "XYcdef"
    finally:
        os.unlink(path)
