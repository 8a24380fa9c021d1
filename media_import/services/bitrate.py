"""Theoretical bitrates per resolution class, used as policy bounds."""

from __future__ import annotations

import math

from media_import.core.constants import VideoResolution

# Bits per pixel, keyed by the resolution class a stream falls into
MIN_LIMIT_BIT_PER_PIXEL: dict[VideoResolution, float] = {
    VideoResolution.H_NOVIDEO: 0,
    VideoResolution.H_144P: 0.02,
    VideoResolution.H_240P: 0.02,
    VideoResolution.H_360P: 0.02,
    VideoResolution.H_480P: 0.02,
    VideoResolution.H_720P: 0.02,
    VideoResolution.H_1080P: 0.02,
    VideoResolution.H_1440P: 0.02,
    VideoResolution.H_4K: 0.02,
}

AVERAGE_BIT_PER_PIXEL: dict[VideoResolution, float] = {
    VideoResolution.H_NOVIDEO: 0,
    VideoResolution.H_144P: 0.19,
    VideoResolution.H_240P: 0.17,
    VideoResolution.H_360P: 0.15,
    VideoResolution.H_480P: 0.12,
    VideoResolution.H_720P: 0.11,
    VideoResolution.H_1080P: 0.10,
    VideoResolution.H_1440P: 0.09,
    VideoResolution.H_4K: 0.08,
}

MAX_BIT_PER_PIXEL: dict[VideoResolution, float] = {
    VideoResolution.H_NOVIDEO: 0,
    VideoResolution.H_144P: 0.32,
    VideoResolution.H_240P: 0.29,
    VideoResolution.H_360P: 0.26,
    VideoResolution.H_480P: 0.23,
    VideoResolution.H_720P: 0.2,
    VideoResolution.H_1080P: 0.19,
    VideoResolution.H_1440P: 0.17,
    VideoResolution.H_4K: 0.15,
}

_RESOLUTIONS_DESCENDING = sorted(VideoResolution, reverse=True)

# Audio-only fallbacks
DEFAULT_AVERAGE_BITRATE = 192_000
DEFAULT_MAX_BITRATE = 256_000
DEFAULT_MIN_BITRATE = 10_000


def _calculate_bitrate(
    bit_per_pixel: dict[VideoResolution, float],
    *,
    resolution: int,
    ratio: float,
    fps: float,
) -> int:
    size1 = resolution
    # Portrait streams report the inverse ratio
    size2 = resolution / ratio if 0 < ratio < 1 else resolution * ratio

    for candidate in _RESOLUTIONS_DESCENDING:
        if candidate <= resolution:
            return math.floor(size1 * size2 * fps * bit_per_pixel[candidate])

    raise ValueError(f"Unknown resolution {resolution}")


def get_min_theoretical_bitrate(*, resolution: int, ratio: float, fps: float) -> int:
    bitrate = _calculate_bitrate(MIN_LIMIT_BIT_PER_PIXEL, resolution=resolution, ratio=ratio, fps=fps)
    return bitrate or DEFAULT_MIN_BITRATE


def get_average_theoretical_bitrate(*, resolution: int, ratio: float, fps: float) -> int:
    bitrate = _calculate_bitrate(AVERAGE_BIT_PER_PIXEL, resolution=resolution, ratio=ratio, fps=fps)
    return bitrate or DEFAULT_AVERAGE_BITRATE


def get_max_theoretical_bitrate(*, resolution: int, ratio: float, fps: float) -> int:
    bitrate = _calculate_bitrate(MAX_BIT_PER_PIXEL, resolution=resolution, ratio=ratio, fps=fps)
    return bitrate or DEFAULT_MAX_BITRATE
