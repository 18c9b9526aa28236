"""filecast: Publish media files to live ingest endpoints through an external engine."""

__version__ = "0.1.0"

from .config import Settings
from .errors import (
    AlreadyRunning,
    FatalStreamError,
    NotRunning,
    SessionError,
    SpawnError,
    StartFailed,
    StartResult,
    StopResult,
)
from .manager import SessionRegistry
from .models import ConnectionStatus, Orientation, Quality, SessionDescriptor, StatusSnapshot
from .profiles import resolve

__all__ = [
    "AlreadyRunning",
    "ConnectionStatus",
    "FatalStreamError",
    "NotRunning",
    "Orientation",
    "Quality",
    "SessionDescriptor",
    "SessionError",
    "SessionRegistry",
    "Settings",
    "SpawnError",
    "StartFailed",
    "StartResult",
    "StatusSnapshot",
    "StopResult",
    "resolve",
]
