"""Map quality tiers and orientation to concrete encode parameters."""

from __future__ import annotations

from typing import Dict, NamedTuple, Union

from .models import EncodeProfile, Orientation, Quality


class _Tier(NamedTuple):
    max_bitrate: str
    buffer_size: str
    width: int
    height: int


# Landscape dimensions; portrait is derived by transposing.
_TIERS: Dict[Quality, _Tier] = {
    Quality.LOW: _Tier("1500k", "3000k", 854, 480),
    Quality.MEDIUM: _Tier("3000k", "6000k", 1280, 720),
    Quality.HIGH: _Tier("6000k", "12000k", 1920, 1080),
}


def build_scale_filter(width: int, height: int) -> str:
    """Fit the input inside width x height and letterbox the remainder."""
    size = f"{width}:{height}"
    return f"scale={size}:force_original_aspect_ratio=decrease,pad={size}:(ow-iw)/2:(oh-ih)/2"


def resolve(
    quality: Union[Quality, str, None],
    orientation: Union[Orientation, str] = Orientation.LANDSCAPE,
) -> EncodeProfile:
    """
    Resolve the encode profile for a quality tier and orientation.

    Args:
        quality: Tier or alias; unrecognised values resolve as Medium
        orientation: Landscape or portrait framing

    Returns:
        EncodeProfile with bitrate ceiling, buffer size, resolution and filter
    """
    tier = _TIERS[Quality.coerce(quality)]
    width, height = tier.width, tier.height
    if Orientation.coerce(orientation) is Orientation.PORTRAIT:
        width, height = height, width

    return EncodeProfile(
        max_bitrate=tier.max_bitrate,
        buffer_size=tier.buffer_size,
        width=width,
        height=height,
        scale_filter=build_scale_filter(width, height),
    )
