"""Dataclasses and enums for filecast runtime."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

CREDENTIAL_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,}$")


class Quality(str, Enum):
    """Named encode presets."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def coerce(cls, value: Union["Quality", str, None]) -> "Quality":
        """Map a tier name or resolution alias to a tier, defaulting to Medium."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        aliases = {"480p": cls.LOW, "720p": cls.MEDIUM, "1080p": cls.HIGH}
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            return cls.MEDIUM


class Orientation(str, Enum):
    """Output framing."""

    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"

    @classmethod
    def coerce(cls, value: Union["Orientation", str]) -> "Orientation":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {"desktop": cls.LANDSCAPE, "mobile": cls.PORTRAIT}
        if key in aliases:
            return aliases[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"Unknown orientation: {value!r}") from None


class ConnectionStatus(str, Enum):
    """Lifecycle status of a live session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    LIVE = "live"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (ConnectionStatus.CONNECTING, ConnectionStatus.LIVE, ConnectionStatus.STOPPING)

    @property
    def is_terminal(self) -> bool:
        return self in (ConnectionStatus.STOPPED, ConnectionStatus.FAILED)


def validate_credential(credential: str) -> bool:
    """Return True when the ingest credential has an acceptable shape."""
    return bool(credential) and CREDENTIAL_PATTERN.match(credential) is not None


@dataclass(frozen=True)
class SessionDescriptor:
    """Immutable description of what a session should publish and where."""

    session_id: str
    credential: str = field(repr=False)
    input_path: Path
    quality: Quality = Quality.MEDIUM
    orientation: Orientation = Orientation.LANDSCAPE
    loop: bool = True
    title: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.session_id or not str(self.session_id).strip():
            raise ValueError("session_id must be a non-empty string")
        if not validate_credential(self.credential):
            raise ValueError(
                "credential must be at least 16 characters of letters, digits, '-' or '_'"
            )

        path = Path(self.input_path)
        if not path.is_file():
            raise ValueError(f"Input file not found: {path}")
        if not os.access(path, os.R_OK):
            raise ValueError(f"Input file is not readable: {path}")

        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "session_id", str(self.session_id))
        object.__setattr__(self, "input_path", path)
        object.__setattr__(self, "quality", Quality.coerce(self.quality))
        object.__setattr__(self, "orientation", Orientation.coerce(self.orientation))
        object.__setattr__(self, "loop", bool(self.loop))


@dataclass(frozen=True)
class EncodeProfile:
    """Concrete encode parameters for one quality/orientation pair."""

    max_bitrate: str
    buffer_size: str
    width: int
    height: int
    scale_filter: str


@dataclass
class StreamMetrics:
    """Mutable metrics accumulator owned by one session."""

    upload_rate_mbps: float = 0.0
    dropped_frames: int = 0
    elapsed_seconds: Optional[float] = None


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time copy of a session's status."""

    session_id: str
    status: ConnectionStatus
    upload_rate_mbps: float = 0.0
    dropped_frames: int = 0
    elapsed_seconds: Optional[float] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "is_streaming": self.status is ConnectionStatus.LIVE,
            "upload_rate_mbps": self.upload_rate_mbps,
            "upload_speed": f"{self.upload_rate_mbps:.1f} Mbps",
            "dropped_frames": self.dropped_frames,
            "elapsed_seconds": self.elapsed_seconds,
            "duration": format_duration(self.elapsed_seconds or 0.0),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "error": self.error,
            "title": self.title,
        }


@dataclass(frozen=True)
class StatusEvent:
    """A status change delivered to subscribers."""

    session_id: str
    snapshot: StatusSnapshot
    error: Optional[str] = None


def format_duration(seconds: float) -> str:
    """Format seconds as HH:MM:SS."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
