"""Error taxonomy and result values for session control."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class SessionError(RuntimeError):
    """Base class for session control failures."""

    code = "session_error"


class AlreadyRunning(SessionError):
    """A session with the same identifier is already active."""

    code = "already_running"


class SpawnError(SessionError):
    """The engine binary could not be launched."""

    code = "spawn_error"


class StartFailed(SessionError):
    """The engine launched but died or never confirmed within the window."""

    code = "start_failed"


class NotRunning(SessionError):
    """No active session exists for the identifier."""

    code = "not_running"


class FatalStreamError(SessionError):
    """The engine diagnostics matched a known-fatal pattern."""

    code = "fatal_stream_error"


@dataclass(frozen=True)
class StartResult:
    """Outcome of a start request."""

    ok: bool
    error: Optional[SessionError] = None


@dataclass(frozen=True)
class StopResult:
    """Outcome of a stop request."""

    ok: bool
    error: Optional[SessionError] = None
