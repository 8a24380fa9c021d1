"""ffprobe invocation and helpers reading its JSON payload."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from media_import.core.config import Settings, get_settings
from media_import.core.constants import VideoResolution

logger = logging.getLogger(__name__)

ProbeData = dict[str, Any]


class FFprobeError(RuntimeError):
    """Raised when ffprobe cannot be run or returns unusable output."""


@dataclass(frozen=True, slots=True)
class AudioStreamInfo:
    stream: dict[str, Any] | None
    bitrate: int | None


@dataclass(frozen=True, slots=True)
class VideoDimensions:
    width: int
    height: int
    ratio: float
    resolution: int
    is_portrait_mode: bool


async def probe_file(path: str | Path, settings: Settings | None = None, *, timeout: float = 30) -> ProbeData:
    """Return ffprobe's ``-show_format -show_streams`` JSON for a media file."""

    settings = settings or get_settings()
    command = [
        settings.ffprobe_path,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise FFprobeError("ffprobe is not installed or not available in PATH") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        process.kill()
        raise FFprobeError(f"ffprobe timed out while probing: {path}") from exc

    if process.returncode != 0:
        stderr_text = (stderr or b"").decode("utf-8", errors="replace").strip()
        raise FFprobeError(f"ffprobe failed for {path}: {stderr_text or process.returncode}")

    try:
        payload = json.loads(stdout or b"{}")
    except json.JSONDecodeError as exc:
        raise FFprobeError(f"ffprobe returned invalid JSON for {path}") from exc

    logger.debug("Probed %s", path, extra={"streams": len(payload.get("streams") or [])})
    return payload


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return parsed or None


def _first_stream(probe: ProbeData, codec_type: str) -> dict[str, Any] | None:
    for stream in probe.get("streams") or []:
        if isinstance(stream, dict) and stream.get("codec_type") == codec_type:
            return stream
    return None


def get_audio_stream(probe: ProbeData) -> AudioStreamInfo:
    stream = _first_stream(probe, "audio")
    if stream is None:
        return AudioStreamInfo(stream=None, bitrate=None)
    return AudioStreamInfo(stream=stream, bitrate=_parse_int(stream.get("bit_rate")))


def get_video_stream(probe: ProbeData) -> dict[str, Any] | None:
    return _first_stream(probe, "video")


def get_video_stream_fps(probe: ProbeData) -> int:
    """Rounded frame rate from ``avg_frame_rate`` or ``r_frame_rate``; 0 when unknown."""

    stream = get_video_stream(probe)
    if stream is None:
        return 0

    for key in ("avg_frame_rate", "r_frame_rate"):
        value = stream.get(key)
        if not isinstance(value, str) or "/" not in value:
            continue
        frames, _, seconds = value.partition("/")
        try:
            result = int(frames) / int(seconds)
        except (ValueError, ZeroDivisionError):
            continue
        if result > 0:
            return round(result)

    return 0


def get_video_stream_bitrate(probe: ProbeData) -> int | None:
    """Container bitrate when known, otherwise the video stream's own."""

    bitrate = _parse_int((probe.get("format") or {}).get("bit_rate"))
    if bitrate:
        return bitrate

    stream = get_video_stream(probe)
    if stream is None:
        return None
    return _parse_int(stream.get("bit_rate"))


def get_video_stream_dimensions(probe: ProbeData) -> VideoDimensions:
    stream = get_video_stream(probe)
    width = _parse_int(stream.get("width")) if stream else None
    height = _parse_int(stream.get("height")) if stream else None

    if not width or not height or width < 0 or height < 0:
        return VideoDimensions(
            width=0,
            height=0,
            ratio=0,
            resolution=int(VideoResolution.H_NOVIDEO),
            is_portrait_mode=False,
        )

    return VideoDimensions(
        width=width,
        height=height,
        ratio=max(width, height) / min(width, height),
        resolution=min(width, height),
        is_portrait_mode=height > width,
    )
