#!/usr/bin/env python3
"""Test the session registry against fake engine executables."""

import asyncio
import os
import signal
import sys
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from filecast import ConnectionStatus, SessionDescriptor, SessionRegistry, Settings
from filecast.engine import SubprocessEngine
from filecast.errors import AlreadyRunning, NotRunning, SpawnError, StartFailed

CREDENTIAL = "abcd-efgh-ijkl-mnop"

# Emits progress only after the confirmation window so the baseline reset keeps it
STEADY_ENGINE = (
    "sleep 1\n"
    "echo 'frame=30 fps=30 q=28.0 size=512kB time=00:00:01.00 bitrate=4000kbits/s speed=2.0x'\n"
    "exec sleep 30\n"
)
FATAL_ENGINE = (
    "sleep 1\n"
    "echo '[rtmp @ 0x1] Server returned 403 Forbidden (access denied)' >&2\n"
    "exec sleep 30\n"
)
CRASHING_ENGINE = "echo 'rtmp://ingest: Input/output error' >&2\nexit 1\n"


def _settings() -> Settings:
    return Settings(confirm_timeout=0.3, tick_interval=0.1, kill_timeout=1.0)


def _engine(directory: Path, body: str) -> SubprocessEngine:
    script_path = directory / "fake-ffmpeg"
    script_path.write_text("#!/bin/sh\n" + body)
    os.chmod(script_path, 0o755)
    return SubprocessEngine(str(script_path))


def _descriptor(directory: Path, session_id: str = "s1") -> SessionDescriptor:
    media = directory / "input.mp4"
    if not media.exists():
        media.write_bytes(b"\x00" * 32)
    return SessionDescriptor(session_id=session_id, credential=CREDENTIAL, input_path=media)


async def _wait_until(predicate, timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.05)


def _run_with_engine(body: str, scenario):
    with TemporaryDirectory() as tmpdir:
        directory = Path(tmpdir)
        engine = _engine(directory, body)

        async def _main():
            async with SessionRegistry(_settings(), engine=engine) as registry:
                await scenario(registry, directory)

        asyncio.run(_main())


def test_start_goes_live_and_tracks_metrics():
    async def scenario(registry, directory):
        result = await registry.start("s1", _descriptor(directory))
        assert result.ok and result.error is None

        snapshot = registry.get_status("s1")
        assert snapshot.status is ConnectionStatus.LIVE
        assert snapshot.started_at is not None
        assert registry.list_active() == {"s1"}

        await _wait_until(lambda: registry.get_status("s1").upload_rate_mbps == 4.0)

        first = registry.get_status("s1").elapsed_seconds
        await asyncio.sleep(0.35)
        second = registry.get_status("s1").elapsed_seconds
        assert second > first >= 0.0

    _run_with_engine(STEADY_ENGINE, scenario)


def test_duplicate_start_is_rejected():
    async def scenario(registry, directory):
        descriptor = _descriptor(directory)
        first = asyncio.create_task(registry.start("s1", descriptor))
        await asyncio.sleep(0.05)

        second = await registry.start("s1", descriptor)
        assert not second.ok
        assert isinstance(second.error, AlreadyRunning)

        assert (await first).ok
        assert registry.list_active() == {"s1"}
        assert registry.get_status("s1").status is ConnectionStatus.LIVE

    _run_with_engine(STEADY_ENGINE, scenario)


def test_stop_and_not_running():
    async def scenario(registry, directory):
        missing = await registry.stop("never-started")
        assert isinstance(missing.error, NotRunning)
        assert registry.get_status("never-started") is None

        assert (await registry.start("s1", _descriptor(directory))).ok
        stopped = await registry.stop("s1")
        assert stopped.ok

        snapshot = registry.get_status("s1")
        assert snapshot.status is ConnectionStatus.STOPPED
        assert snapshot.elapsed_seconds is None
        assert snapshot.ended_at is not None
        assert registry.list_active() == set()

        again = await registry.stop("s1")
        assert isinstance(again.error, NotRunning)
        assert registry.get_status("s1").status is ConnectionStatus.STOPPED

        assert await registry.clear("s1")
        assert registry.get_status("s1") is None

    _run_with_engine(STEADY_ENGINE, scenario)


def test_fatal_output_stops_live_session():
    async def scenario(registry, directory):
        events = registry.subscribe()
        assert (await registry.start("s1", _descriptor(directory))).ok

        await _wait_until(lambda: registry.get_status("s1").status is ConnectionStatus.STOPPED)
        snapshot = registry.get_status("s1")
        assert "403 Forbidden" in snapshot.error

        result = await registry.stop("s1")
        assert isinstance(result.error, NotRunning)

        errors = []
        while not events.empty():
            event = events.get_nowait()
            if event.error:
                errors.append(event.error)
        assert any("403 Forbidden" in error for error in errors)

    _run_with_engine(FATAL_ENGINE, scenario)


def test_engine_dying_during_confirmation_fails_start():
    async def scenario(registry, directory):
        result = await registry.start("s1", _descriptor(directory))
        assert not result.ok
        assert isinstance(result.error, StartFailed)

        snapshot = registry.get_status("s1")
        assert snapshot.status is ConnectionStatus.FAILED
        assert registry.list_active() == set()

        # A failed session can be started again under the same id
        retry = await registry.start("s1", _descriptor(directory))
        assert isinstance(retry.error, StartFailed)

    _run_with_engine(CRASHING_ENGINE, scenario)


def test_missing_engine_reports_spawn_error():
    async def _main(directory):
        engine = SubprocessEngine(str(directory / "no-such-engine"))
        async with SessionRegistry(_settings(), engine=engine) as registry:
            result = await registry.start("s1", _descriptor(directory))
            assert isinstance(result.error, SpawnError)
            assert registry.get_status("s1").status is ConnectionStatus.FAILED
            assert registry.list_active() == set()

    with TemporaryDirectory() as tmpdir:
        asyncio.run(_main(Path(tmpdir)))


def test_sessions_are_independent():
    async def scenario(registry, directory):
        results = await asyncio.gather(
            registry.start("a", _descriptor(directory, "a")),
            registry.start("b", _descriptor(directory, "b")),
        )
        assert all(result.ok for result in results)

        pid_a = registry._sessions["a"].supervisor.pid
        pid_b = registry._sessions["b"].supervisor.pid
        assert pid_a != pid_b

        os.kill(pid_a, signal.SIGKILL)
        await _wait_until(lambda: registry.get_status("a").status is ConnectionStatus.STOPPED)

        assert registry.get_status("b").status is ConnectionStatus.LIVE
        assert registry.list_active() == {"b"}

    _run_with_engine(STEADY_ENGINE, scenario)


def test_descriptor_id_must_match():
    with TemporaryDirectory() as tmpdir:
        descriptor = _descriptor(Path(tmpdir), "s1")
        registry = SessionRegistry(_settings())
        with pytest.raises(ValueError):
            asyncio.run(registry.start("other", descriptor))


if __name__ == "__main__":
    sys.exit(pytest.main([__file__]))
