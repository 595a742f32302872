"""Tests for TranscodedStream against fake engines run as real subprocesses."""

import asyncio
import signal
import time

import pytest

from transcoder.errors import StartError
from transcoder.stream import TranscodedStream

from tests.engines import (
    CRASHING_ENGINE,
    ENDLESS_ENGINE,
    FINITE_ENGINE,
    NOISY_ENGINE,
    STUBBORN_ENGINE,
    engine,
    process_exists,
)

SOURCE = "http://example.test/news.m3u8"
GRACEFUL = 0.5
KILL = 2.0


async def open_engine(script: str) -> TranscodedStream:
    return await TranscodedStream.open(
        SOURCE, build_command=engine(script), graceful_timeout=GRACEFUL, kill_timeout=KILL
    )


async def read_all(stream: TranscodedStream, size: int = 1024) -> bytes:
    data = b""
    while True:
        chunk = await asyncio.wait_for(stream.read(size), timeout=10)
        if not chunk:
            return data
        assert len(chunk) <= size
        data += chunk


@pytest.mark.asyncio
async def test_reads_until_engine_exits():
    async with await open_engine(FINITE_ENGINE) as stream:
        assert await read_all(stream) == b"\x47" * 1880
        assert await stream.read(1024) == b""


@pytest.mark.asyncio
async def test_crash_looks_like_end_of_stream():
    stream = await open_engine(CRASHING_ENGINE)
    assert await read_all(stream) == b"\x47" * 376
    await stream.close()

    assert stream.returncode == 3
    assert "Connection refused" in stream.stderr_tail


@pytest.mark.asyncio
async def test_noisy_stderr_does_not_stall_output():
    stream = await open_engine(NOISY_ENGINE)
    try:
        assert await read_all(stream) == b"\x47" * 1880
    finally:
        await stream.close()
    assert len(stream.stderr_tail) <= 50
    assert stream.stderr_tail[-1] == "frame=4999 warning: non-monotonic DTS"


@pytest.mark.asyncio
async def test_graceful_quit():
    stream = await open_engine(ENDLESS_ENGINE)
    assert await asyncio.wait_for(stream.read(188), timeout=10)

    await stream.close()

    assert stream.returncode == 0
    assert not process_exists(stream.pid)
    assert await stream.read(188) == b""


@pytest.mark.asyncio
async def test_kill_when_quit_is_ignored():
    stream = await open_engine(STUBBORN_ENGINE)

    started = time.monotonic()
    await stream.close()
    elapsed = time.monotonic() - started

    assert GRACEFUL <= elapsed < GRACEFUL + KILL + 1
    assert stream.returncode == -signal.SIGKILL
    assert not process_exists(stream.pid)


@pytest.mark.asyncio
async def test_close_twice_is_a_no_op():
    stream = await open_engine(ENDLESS_ENGINE)
    await stream.close()
    returncode = stream.returncode

    await stream.close()

    assert stream.closed
    assert stream.returncode == returncode


@pytest.mark.asyncio
async def test_concurrent_close_shares_one_shutdown():
    stream = await open_engine(STUBBORN_ENGINE)
    await asyncio.gather(stream.close(), stream.close(), stream.close())
    assert stream.returncode == -signal.SIGKILL


@pytest.mark.asyncio
async def test_close_unblocks_pending_read():
    stream = await open_engine(STUBBORN_ENGINE)
    pending = asyncio.create_task(stream.read(1024))
    await asyncio.sleep(0.1)
    assert not pending.done()

    await stream.close()

    assert await asyncio.wait_for(pending, timeout=1) == b""


@pytest.mark.asyncio
async def test_cancelled_close_still_finishes_shutdown():
    stream = await open_engine(STUBBORN_ENGINE)
    closer = asyncio.create_task(stream.close())
    await asyncio.sleep(0.1)
    closer.cancel()

    # A later caller waits for the same shutdown
    await asyncio.wait_for(stream.close(), timeout=GRACEFUL + KILL + 1)
    assert not process_exists(stream.pid)


@pytest.mark.asyncio
async def test_start_error_when_engine_is_missing():
    with pytest.raises(StartError):
        await TranscodedStream.open(SOURCE, build_command=lambda source: ["/nonexistent/ffmpeg", "-i", source])


@pytest.mark.asyncio
async def test_default_command_runs_configured_binary(monkeypatch):
    monkeypatch.setattr("transcoder.config.FFMPEG_BIN", "/nonexistent/ffmpeg")
    with pytest.raises(StartError, match="/nonexistent/ffmpeg"):
        await TranscodedStream.open(SOURCE)


@pytest.mark.asyncio
async def test_start_error_for_empty_command():
    with pytest.raises(StartError):
        await TranscodedStream.open(SOURCE, build_command=lambda source: [])


@pytest.mark.asyncio
async def test_unreaped_engine_still_releases_pipes(monkeypatch):
    stream = await TranscodedStream.open(
        SOURCE, build_command=engine(STUBBORN_ENGINE), graceful_timeout=0.2, kill_timeout=0.2
    )
    pending = asyncio.create_task(stream.read(1024))

    async def never_reaped():
        await asyncio.Event().wait()

    monkeypatch.setattr(stream._proc, "wait", never_reaped)
    await asyncio.wait_for(stream.close(), timeout=5)

    assert stream._proc._transport.is_closing()
    assert await asyncio.wait_for(pending, timeout=1) == b""
    assert stream._stderr_task.done()
