"""Registry of live sessions keyed by caller-supplied identifiers."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Set

from .config import Settings
from .engine import Engine, SubprocessEngine
from .errors import AlreadyRunning, NotRunning, SessionError, StartFailed, StartResult, StopResult
from .events import StatusBroadcaster
from .models import SessionDescriptor, StatusEvent, StatusSnapshot
from .session import LiveSession

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Mediates every start, stop and status query for live sessions."""

    def __init__(self, settings: Optional[Settings] = None, engine: Optional[Engine] = None) -> None:
        """
        Initialize the registry.

        Args:
            settings: Runtime settings; defaults are used when omitted
            engine: Engine used to launch processes; defaults to a subprocess
                engine for ``settings.engine_path``
        """
        self.settings = settings or Settings()
        self.engine = engine or SubprocessEngine(self.settings.engine_path)
        self._sessions: Dict[str, LiveSession] = {}
        self._lock = asyncio.Lock()
        self._events = StatusBroadcaster(self.settings.event_queue_size)
        self._clock_task: Optional[asyncio.Task] = None
        self._closed = False

    async def __aenter__(self) -> "SessionRegistry":
        self.start_clock()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def start(self, session_id: str, descriptor: SessionDescriptor) -> StartResult:
        """
        Start publishing a descriptor under an identifier.

        Resolves once the confirmation window has elapsed.

        Returns:
            StartResult carrying AlreadyRunning, SpawnError or StartFailed on failure
        """
        if descriptor.session_id != session_id:
            raise ValueError(
                f"Descriptor is for session {descriptor.session_id!r}, not {session_id!r}"
            )

        async with self._lock:
            if self._closed:
                return StartResult(ok=False, error=StartFailed("Registry is closed"))
            existing = self._sessions.get(session_id)
            if existing is not None and existing.is_active:
                logger.warning("Rejected duplicate start for session %s", session_id)
                return StartResult(ok=False, error=AlreadyRunning(f"Session {session_id} is already running"))

            session = LiveSession(descriptor, self.engine, self.settings, publish=self._events.publish)
            self._sessions[session_id] = session

        self.start_clock()

        try:
            await session.start()
        except SessionError as exc:
            return StartResult(ok=False, error=exc)
        except asyncio.CancelledError:
            await self._abandon(session)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure starting session %s", session_id)
            await self._abandon(session)
            return StartResult(ok=False, error=StartFailed(str(exc)))

        return StartResult(ok=True)

    async def stop(self, session_id: str) -> StopResult:
        """
        Stop a connecting or live session and wait for its engine to exit.

        Returns:
            StopResult carrying NotRunning when there is nothing to stop
        """
        session = self._sessions.get(session_id)
        if session is None:
            return StopResult(ok=False, error=NotRunning(f"Session {session_id} is not running"))

        try:
            session.stop()
        except NotRunning as exc:
            return StopResult(ok=False, error=exc)

        logger.info("Stopping session %s", session_id)
        await session.wait_finished()
        return StopResult(ok=True)

    def get_status(self, session_id: str) -> Optional[StatusSnapshot]:
        """Return a snapshot copy for the session, or None if unknown."""
        session = self._sessions.get(session_id)
        return session.snapshot() if session else None

    def list_active(self) -> Set[str]:
        """Identifiers of sessions that still own a process."""
        return {session_id for session_id, session in self._sessions.items() if session.is_active}

    def list_statuses(self) -> List[StatusSnapshot]:
        """Snapshots of every retained session, active or terminal."""
        return [session.snapshot() for session in list(self._sessions.values())]

    async def clear(self, session_id: str) -> bool:
        """
        Forget a terminal session.

        Returns:
            True if removed, False if unknown

        Raises:
            AlreadyRunning: The session is still active
        """
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            if session.is_active:
                raise AlreadyRunning(f"Session {session_id} is still active")
            del self._sessions[session_id]
            logger.info("Cleared session %s", session_id)
            return True

    def subscribe(self, maxsize: Optional[int] = None) -> "asyncio.Queue[StatusEvent]":
        """Register an observer queue that receives every status event."""
        return self._events.subscribe(maxsize)

    def unsubscribe(self, queue: "asyncio.Queue[StatusEvent]") -> None:
        """Remove an observer queue once its transport has closed."""
        self._events.unsubscribe(queue)

    def start_clock(self) -> None:
        """Start the duration clock if it is not already running."""
        if self._clock_task is None or self._clock_task.done():
            self._clock_task = asyncio.create_task(self._run_clock(), name="filecast-clock")

    async def close(self) -> None:
        """Stop every active session and the duration clock."""
        async with self._lock:
            self._closed = True

        active = [session for session in self._sessions.values() if session.is_active]
        for session in active:
            try:
                session.stop()
            except NotRunning:
                pass
        if active:
            await asyncio.gather(*(session.wait_finished() for session in active))

        if self._clock_task is not None:
            self._clock_task.cancel()
            try:
                await self._clock_task
            except asyncio.CancelledError:
                pass
            self._clock_task = None

    async def _abandon(self, session: LiveSession) -> None:
        supervisor = session.supervisor
        if supervisor is not None:
            await supervisor.close()

    async def _run_clock(self) -> None:
        interval = self.settings.tick_interval
        while True:
            await asyncio.sleep(interval)
            for session in list(self._sessions.values()):
                try:
                    session.tick()
                except Exception:
                    logger.exception("Clock tick failed for session %s", session.id)
