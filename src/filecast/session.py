"""Live session state machine: one engine process, one set of metrics."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import Settings
from .diagnostics import DiagnosticsParser
from .engine import Engine, ProcessSupervisor, build_engine_args, redact
from .errors import FatalStreamError, NotRunning, SpawnError, StartFailed
from .models import ConnectionStatus, SessionDescriptor, StatusEvent, StatusSnapshot, StreamMetrics
from .profiles import resolve

logger = logging.getLogger(__name__)

Publisher = Callable[[StatusEvent], None]


class LiveSession:
    """Drives one publishing attempt from connecting to a terminal state."""

    def __init__(
        self,
        descriptor: SessionDescriptor,
        engine: Engine,
        settings: Settings,
        publish: Optional[Publisher] = None,
    ) -> None:
        self.id = descriptor.session_id
        self.descriptor = descriptor
        self.settings = settings

        self.status: ConnectionStatus = ConnectionStatus.IDLE
        self.metrics = StreamMetrics()
        self.parser = DiagnosticsParser(self.metrics)
        self.started_at: Optional[datetime] = None
        self.ended_at: Optional[datetime] = None
        self.error: Optional[str] = None

        self._engine = engine
        self._publish = publish
        self._supervisor: Optional[ProcessSupervisor] = None
        self._live_since: Optional[float] = None
        self._finished = asyncio.Event()

    @property
    def supervisor(self) -> Optional[ProcessSupervisor]:
        return self._supervisor

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    async def start(self) -> None:
        """
        Launch the engine and wait out the confirmation window.

        Raises:
            SpawnError: The engine could not be launched
            StartFailed: The engine died or was stopped before confirmation
        """
        if self.status is not ConnectionStatus.IDLE:
            raise RuntimeError(f"Session {self.id} has already been started")

        profile = resolve(self.descriptor.quality, self.descriptor.orientation)
        args = build_engine_args(
            self.descriptor,
            profile,
            self.settings.ingest_base,
            video_codec=self.settings.video_codec,
            preset=self.settings.preset,
            audio_bitrate=self.settings.audio_bitrate,
            audio_sample_rate=self.settings.audio_sample_rate,
        )
        logger.info(
            "Starting session %s (%s, %s, loop=%s): %s",
            self.id,
            self.descriptor.quality.value,
            self.descriptor.orientation.value,
            self.descriptor.loop,
            redact(args, self.descriptor.credential),
        )

        supervisor = ProcessSupervisor(
            self._engine,
            on_diagnostics=self._handle_diagnostics,
            on_exit=self._handle_exit,
            kill_timeout=self.settings.kill_timeout,
            label=self.id,
        )
        self._supervisor = supervisor
        self._set_status(ConnectionStatus.CONNECTING)

        try:
            await supervisor.spawn(args)
        except SpawnError as exc:
            self._finish(ConnectionStatus.FAILED, str(exc))
            raise

        await asyncio.sleep(self.settings.confirm_timeout)

        if self.status is ConnectionStatus.CONNECTING and supervisor.is_alive():
            self.parser.reset()
            self.started_at = datetime.now(timezone.utc)
            self._live_since = asyncio.get_running_loop().time()
            self.metrics.elapsed_seconds = 0.0
            self._set_status(ConnectionStatus.LIVE)
            logger.info("Session %s is live", self.id)
            return

        # Dead, dying or stopped during the window: make sure nothing survives
        supervisor.terminate()
        await supervisor.wait()
        await self._finished.wait()
        raise StartFailed(self.error or f"Engine for session {self.id} did not confirm")

    def stop(self) -> None:
        """
        Begin teardown. The terminal state follows once the exit is observed.

        Raises:
            NotRunning: The session is not connecting or live
        """
        if self.status not in (ConnectionStatus.CONNECTING, ConnectionStatus.LIVE):
            raise NotRunning(f"Session {self.id} is not running")

        self._set_status(ConnectionStatus.STOPPING)
        if self._supervisor is not None:
            self._supervisor.terminate()

    async def wait_finished(self) -> None:
        """Wait until the session reaches Stopped or Failed."""
        await self._finished.wait()

    def tick(self) -> None:
        """Refresh the elapsed duration while live."""
        if self.status is not ConnectionStatus.LIVE or self._live_since is None:
            return
        elapsed = asyncio.get_running_loop().time() - self._live_since
        self.metrics.elapsed_seconds = max(0.0, elapsed)
        self._notify()

    def snapshot(self) -> StatusSnapshot:
        """Return a copy of the current status."""
        live = self.status is ConnectionStatus.LIVE
        return StatusSnapshot(
            session_id=self.id,
            status=self.status,
            upload_rate_mbps=self.metrics.upload_rate_mbps,
            dropped_frames=self.metrics.dropped_frames,
            elapsed_seconds=self.metrics.elapsed_seconds if live else None,
            started_at=self.started_at,
            ended_at=self.ended_at,
            error=self.error,
            title=self.descriptor.title,
        )

    def _handle_diagnostics(self, chunk: str) -> None:
        if self.status.is_terminal:
            return

        result = self.parser.feed(chunk)
        if result.fatal and self.status in (ConnectionStatus.CONNECTING, ConnectionStatus.LIVE):
            error = FatalStreamError(f"Fatal engine output: {result.fatal}")
            logger.error("Session %s stopping on fatal engine output: %s", self.id, result.fatal)
            self.error = str(error)
            self.stop()
            self._notify(error=self.error)
            return

        if result.speed is not None or result.dropped:
            self._notify()

    def _handle_exit(self, returncode: Optional[int]) -> None:
        if self.status.is_terminal:
            return

        if self.status is ConnectionStatus.CONNECTING or (
            self.status is ConnectionStatus.STOPPING and self._live_since is None
        ):
            if self.error is None:
                message = f"Engine exited with code {returncode} before confirmation"
                tail = self.parser.tail
                if tail:
                    message = f"{message}: {tail[-1]}"
                self.error = message
            self._finish(ConnectionStatus.FAILED, self.error)
            return

        if self.status is ConnectionStatus.LIVE:
            logger.warning("Engine for session %s exited on its own (code %s)", self.id, returncode)
        self._finish(ConnectionStatus.STOPPED, self.error)

    def _finish(self, status: ConnectionStatus, error: Optional[str]) -> None:
        self._supervisor = None
        self._live_since = None
        self.started_at = None
        self.ended_at = datetime.now(timezone.utc)
        self.metrics.upload_rate_mbps = 0.0
        self.error = error
        self._set_status(status)
        self._finished.set()
        if status is ConnectionStatus.FAILED:
            logger.error("Session %s failed: %s", self.id, error)
        else:
            logger.info("Session %s stopped", self.id)

    def _set_status(self, status: ConnectionStatus) -> None:
        if self.status is status:
            return
        logger.debug("Session %s: %s -> %s", self.id, self.status.value, status.value)
        self.status = status
        self._notify(error=self.error if status.is_terminal else None)

    def _notify(self, error: Optional[str] = None) -> None:
        if self._publish is None:
            return
        try:
            self._publish(StatusEvent(session_id=self.id, snapshot=self.snapshot(), error=error))
        except Exception:
            logger.exception("Status publish failed for session %s", self.id)
