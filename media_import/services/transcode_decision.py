"""Decide whether downloaded streams can be copied as-is, and at what bitrate to re-encode.

All functions here are pure over an ffprobe payload, so a verdict can be
recomputed at any time without side effects.
"""

from __future__ import annotations

from dataclasses import dataclass

from media_import.services.bitrate import (
    get_average_theoretical_bitrate,
    get_max_theoretical_bitrate,
    get_min_theoretical_bitrate,
)
from media_import.services.ffprobe import (
    ProbeData,
    get_audio_stream,
    get_video_stream,
    get_video_stream_bitrate,
    get_video_stream_dimensions,
    get_video_stream_fps,
)

TARGET_AUDIO_CODEC = "aac"
TARGET_VIDEO_CODEC = "h264"
TARGET_PIXEL_FORMAT = "yuv420p"

MIN_QUICK_FPS = 2
MAX_QUICK_FPS = 65
DEFAULT_FPS = 30

MAX_AUDIO_BITRATE = 384_000
DEFAULT_AUDIO_BITRATE = 256_000
# Both layouts break HLS playback in Chrome
UNSUPPORTED_CHANNEL_LAYOUTS = frozenset({"unknown", "quad"})

INPUT_BITRATE_MARGIN = 1.3


@dataclass(frozen=True, slots=True)
class TranscodeVerdict:
    audio_copy: bool
    video_copy: bool
    target_video_bitrate: int | None = None
    target_audio_bitrate: int | None = None

    @property
    def quick_transcode(self) -> bool:
        return self.audio_copy and self.video_copy


def get_max_audio_bitrate(codec: str | None, bitrate: int | None) -> int:
    """Ceiling audio bitrate (bits/s) for a source stream of the given codec and bitrate."""

    if not bitrate:
        return DEFAULT_AUDIO_BITRATE

    if codec == TARGET_AUDIO_CODEC:
        return min(bitrate, MAX_AUDIO_BITRATE)

    # A 192k mp3 carries less than a 192k aac, so aim lower
    if bitrate <= 192_000:
        return 128_000
    if bitrate <= 384_000:
        return 256_000
    return MAX_AUDIO_BITRATE


def can_do_quick_audio_transcode(probe: ProbeData) -> bool:
    parsed = get_audio_stream(probe)
    stream = parsed.stream

    if stream is None:
        return True

    if stream.get("codec_name") != TARGET_AUDIO_CODEC:
        return False

    if not parsed.bitrate:
        return False

    if parsed.bitrate > get_max_audio_bitrate(TARGET_AUDIO_CODEC, parsed.bitrate):
        return False

    channel_layout = stream.get("channel_layout")
    if not channel_layout or channel_layout in UNSUPPORTED_CHANNEL_LAYOUTS:
        return False

    return True


def can_do_quick_video_transcode(probe: ProbeData) -> bool:
    stream = get_video_stream(probe)
    fps = get_video_stream_fps(probe)
    bitrate = get_video_stream_bitrate(probe)
    dimensions = get_video_stream_dimensions(probe)

    if not bitrate:
        return False

    if stream is None:
        return False
    if stream.get("codec_name") != TARGET_VIDEO_CODEC:
        return False
    if stream.get("pix_fmt") != TARGET_PIXEL_FORMAT:
        return False
    if fps < MIN_QUICK_FPS or fps > MAX_QUICK_FPS:
        return False

    max_bitrate = get_max_theoretical_bitrate(resolution=dimensions.resolution, ratio=dimensions.ratio, fps=fps)
    if bitrate > max_bitrate:
        return False

    return True


def cap_bitrate(input_bitrate: int | None, target_bitrate: int) -> float:
    if not input_bitrate:
        return target_bitrate

    return min(target_bitrate, input_bitrate * INPUT_BITRATE_MARGIN)


def get_target_bitrate(*, resolution: int, ratio: float, fps: float, input_bitrate: int | None = None) -> int:
    """``max(floor, min(average, 1.3 * input))``, or the average when input is unknown."""

    capped = cap_bitrate(
        input_bitrate,
        get_average_theoretical_bitrate(resolution=resolution, ratio=ratio, fps=fps),
    )
    floor = get_min_theoretical_bitrate(resolution=resolution, ratio=ratio, fps=fps)

    return int(max(floor, capped))


def decide_transcode(
    probe: ProbeData,
    *,
    target_resolution: int | None = None,
    target_fps: int | None = None,
) -> TranscodeVerdict:
    audio_copy = can_do_quick_audio_transcode(probe)
    video_copy = can_do_quick_video_transcode(probe)

    target_video_bitrate: int | None = None
    if not video_copy and get_video_stream(probe) is not None:
        dimensions = get_video_stream_dimensions(probe)
        target_video_bitrate = get_target_bitrate(
            resolution=target_resolution or dimensions.resolution,
            ratio=dimensions.ratio,
            fps=target_fps or get_video_stream_fps(probe) or DEFAULT_FPS,
            input_bitrate=get_video_stream_bitrate(probe),
        )

    target_audio_bitrate: int | None = None
    parsed_audio = get_audio_stream(probe)
    if not audio_copy and parsed_audio.stream is not None:
        target_audio_bitrate = get_max_audio_bitrate(parsed_audio.stream.get("codec_name"), parsed_audio.bitrate)

    return TranscodeVerdict(
        audio_copy=audio_copy,
        video_copy=video_copy,
        target_video_bitrate=target_video_bitrate,
        target_audio_bitrate=target_audio_bitrate,
    )
