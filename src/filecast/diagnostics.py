"""Incremental parser for engine diagnostic output."""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Tuple

from .models import StreamMetrics

logger = logging.getLogger(__name__)

SPEED_PATTERN = re.compile(r"speed=\s*([0-9]+(?:\.[0-9]+)?)x")

# Upload rate is estimated as speed multiplier times this factor (Mbps).
UPLOAD_RATE_FACTOR = 2.0

MAX_PARTIAL = 1024

DROP_MARKERS: Tuple[str, ...] = ("drop", "error")

FATAL_MARKERS: Tuple[str, ...] = (
    "connection refused",
    "404 not found",
    "403 forbidden",
    "http error",
    "no such file or directory",
)


@dataclass(frozen=True)
class FeedResult:
    """What a single chunk changed."""

    speed: Optional[float] = None
    dropped: bool = False
    fatal: Optional[str] = None


class DiagnosticsParser:
    """
    Mine a session's diagnostic stream for metrics and fatal conditions.

    Both derived metrics are heuristics: the upload rate is the reported
    speed multiplier times two, and every chunk mentioning "drop" or
    "error" counts as a single dropped frame.
    """

    def __init__(self, metrics: Optional[StreamMetrics] = None, tail_size: int = 20) -> None:
        self.metrics = metrics or StreamMetrics()
        self._tail: Deque[str] = deque(maxlen=tail_size)
        self._partial = ""

    def feed(self, chunk: str) -> FeedResult:
        """Consume one chunk of diagnostic text."""
        if not chunk:
            return FeedResult()

        # Markers may straddle reads; match against the unfinished line too
        carried = self._partial
        fatal = self._find_fatal(carried + chunk, len(carried))
        self._remember(chunk)

        speed = None
        matches = SPEED_PATTERN.findall(chunk)
        if matches:
            try:
                speed = float(matches[-1])
            except ValueError:
                logger.debug("Ignoring malformed speed token %r", matches[-1])
            else:
                self.metrics.upload_rate_mbps = round(speed * UPLOAD_RATE_FACTOR, 3)

        dropped = any(marker in chunk for marker in DROP_MARKERS)
        if dropped:
            self.metrics.dropped_frames += 1

        return FeedResult(speed=speed, dropped=dropped, fatal=fatal)

    def reset(self) -> None:
        """Return the accumulator to its zero baseline."""
        self.metrics.upload_rate_mbps = 0.0
        self.metrics.dropped_frames = 0
        self.metrics.elapsed_seconds = None

    @property
    def tail(self) -> list[str]:
        """Most recent diagnostic lines, oldest first."""
        lines = list(self._tail)
        if self._partial:
            lines.append(self._partial)
        return lines

    def _find_fatal(self, chunk: str, fresh_from: int = 0) -> Optional[str]:
        lowered = chunk.lower()
        for marker in FATAL_MARKERS:
            # Only report markers that end in newly received text
            index = lowered.find(marker, max(0, fresh_from - len(marker) + 1))
            if index < 0:
                continue
            start = max(lowered.rfind("\n", 0, index), lowered.rfind("\r", 0, index)) + 1
            end_candidates = [pos for pos in (lowered.find("\n", index), lowered.find("\r", index)) if pos >= 0]
            end = min(end_candidates) if end_candidates else len(chunk)
            return chunk[start:end].strip()
        return None

    def _remember(self, chunk: str) -> None:
        # ffmpeg rewrites its progress line with carriage returns
        text = (self._partial + chunk).replace("\r", "\n")
        *complete, partial = text.split("\n")
        self._partial = partial[-MAX_PARTIAL:]
        for line in complete:
            line = line.strip()
            if line:
                self._tail.append(line)
