"""Runtime settings for the session manager."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional

ENV_PREFIX = "FILECAST_"


@dataclass(frozen=True)
class Settings:
    """Engine, ingest and timing configuration."""

    engine_path: str = "ffmpeg"
    ingest_base: str = "rtmp://a.rtmp.youtube.com/live2"
    confirm_timeout: float = 2.0
    tick_interval: float = 1.0
    kill_timeout: float = 5.0
    event_queue_size: int = 100
    video_codec: str = "libx264"
    preset: str = "fast"
    audio_bitrate: str = "128k"
    audio_sample_rate: int = 44100

    def __post_init__(self) -> None:
        if self.confirm_timeout < 0:
            raise ValueError("confirm_timeout must be >= 0")
        if self.tick_interval <= 0:
            raise ValueError("tick_interval must be > 0")
        if self.kill_timeout < 0:
            raise ValueError("kill_timeout must be >= 0")
        if self.event_queue_size < 1:
            raise ValueError("event_queue_size must be >= 1")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "Settings":
        """
        Build settings from ``FILECAST_*`` environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``
            overrides: Explicit values that win over the environment

        Returns:
            Settings instance
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for item in fields(cls):
            raw = environ.get(ENV_PREFIX + item.name.upper())
            if raw is None or raw == "":
                continue
            default = item.default
            if isinstance(default, float):
                values[item.name] = float(raw)
            elif isinstance(default, int):
                values[item.name] = int(raw)
            else:
                values[item.name] = raw

        settings = cls(**values)
        explicit = {key: value for key, value in overrides.items() if value is not None}
        return replace(settings, **explicit) if explicit else settings
