#!/usr/bin/env python3
"""Test quality/orientation resolution into encode profiles."""

import sys

from filecast.models import Orientation, Quality
from filecast.profiles import resolve


def test_high_portrait_is_transposed_landscape():
    portrait = resolve(Quality.HIGH, Orientation.PORTRAIT)
    landscape = resolve(Quality.HIGH, Orientation.LANDSCAPE)

    assert portrait.width < portrait.height
    assert landscape.width > landscape.height
    assert (portrait.width, portrait.height) == (landscape.height, landscape.width)
    assert portrait.max_bitrate == landscape.max_bitrate == "6000k"
    assert portrait.buffer_size == landscape.buffer_size == "12000k"


def test_every_tier_has_a_profile():
    expected = {
        Quality.LOW: ("1500k", "3000k", 854, 480),
        Quality.MEDIUM: ("3000k", "6000k", 1280, 720),
        Quality.HIGH: ("6000k", "12000k", 1920, 1080),
    }
    for quality, (maxrate, bufsize, width, height) in expected.items():
        profile = resolve(quality, Orientation.LANDSCAPE)
        assert (profile.max_bitrate, profile.buffer_size) == (maxrate, bufsize)
        assert (profile.width, profile.height) == (width, height)


def test_unknown_quality_falls_back_to_medium():
    assert resolve("4k") == resolve(Quality.MEDIUM)
    assert resolve(None, "portrait") == resolve(Quality.MEDIUM, Orientation.PORTRAIT)


def test_resolution_aliases():
    assert resolve("1080p", "mobile") == resolve(Quality.HIGH, Orientation.PORTRAIT)
    assert resolve("480p", "desktop") == resolve(Quality.LOW, Orientation.LANDSCAPE)


def test_scale_filter_pads_to_target():
    profile = resolve(Quality.MEDIUM, Orientation.PORTRAIT)
    assert profile.scale_filter == (
        "scale=720:1280:force_original_aspect_ratio=decrease,pad=720:1280:(ow-iw)/2:(oh-ih)/2"
    )


if __name__ == "__main__":
    test_high_portrait_is_transposed_landscape()
    test_every_tier_has_a_profile()
    test_unknown_quality_falls_back_to_medium()
    test_resolution_aliases()
    test_scale_filter_pads_to_target()
    print("✓ Profile resolution tests passed")
    sys.exit(0)
