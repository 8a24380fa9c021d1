"""Format selector chain handed to the extraction tool's ``-f`` option."""

from __future__ import annotations

from collections.abc import Iterable

from media_import.core.constants import VideoResolution

FORMAT_SEPARATOR = "/"

# AV1 and VP9 profile 2 streams break playback downstream, never request them
EXCLUDED_CODECS = "[vcodec!*=av01][vcodec!*=vp9.2]"

UNIVERSAL_FALLBACKS: tuple[str, ...] = (
    f"bestvideo{EXCLUDED_CODECS}+bestaudio",
    f"best{EXCLUDED_CODECS}",
    "bestvideo[ext=mp4]+bestaudio[ext=m4a]",
    "best",
)


def build_format_tiers(enabled_resolutions: Iterable[int], use_best_format: bool) -> list[str]:
    """Return format selectors ordered from most to least specific.

    The first tier asks for an H.264/M4A pair at the exact target resolution so
    the download can usually be imported without re-encoding; the second
    accepts any other safe codec at that resolution; the third degrades the
    resolution of the first.
    """

    tiers: list[str] = []

    if not use_best_format:
        resolutions = list(enabled_resolutions)
        resolution = max(resolutions) if resolutions else int(VideoResolution.H_1080P)

        tiers = [
            f"bestvideo[vcodec^=avc1][height={resolution}]+bestaudio[ext=m4a]",
            f"bestvideo{EXCLUDED_CODECS}[height={resolution}]+bestaudio",
            f"bestvideo[vcodec^=avc1][height<={resolution}]+bestaudio[ext=m4a]",
        ]

    return tiers + list(UNIVERSAL_FALLBACKS)


def build_format_selector(enabled_resolutions: Iterable[int], use_best_format: bool) -> str:
    """Join the tiers with the tool's or-else separator, preserving order."""

    return FORMAT_SEPARATOR.join(build_format_tiers(enabled_resolutions, use_best_format))
