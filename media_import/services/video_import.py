"""Import job construction and the handlers run by the job worker."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from media_import.core.config import Settings, get_settings
from media_import.core.constants import AFTER_CHANNEL_IMPORT_JOB, VIDEO_IMPORT_JOB, VideoImportState
from media_import.db.models import Channel, ChannelSync, User, VideoImport
from media_import.schema.job import (
    AfterChannelImportPayload,
    CreateJobArgument,
    ImportDataOverride,
    VideoImportPayload,
)
from media_import.services import import_registry
from media_import.services.ffprobe import ProbeData, probe_file
from media_import.services.info_builder import VideoMetadata
from media_import.services.transcode_decision import TranscodeVerdict, decide_transcode
from media_import.services.youtube_dl_errors import (
    YoutubeDLError,
    YoutubeDLErrorOp,
    YoutubeDLIsLiveError,
    YoutubeDLNoFormatsError,
    YoutubeDLValidationError,
)
from media_import.services.youtube_dl_wrapper import YoutubeDLSubtitle, YoutubeDLWrapper, wrapper_for_vod

logger = logging.getLogger(__name__)

WrapperFactory = Callable[[str], YoutubeDLWrapper]
Prober = Callable[[Path, Settings], Awaitable[ProbeData]]

_LIVE_STATUS_OPS: dict[str, YoutubeDLErrorOp] = {
    "is_live": YoutubeDLErrorOp.IS_LIVE,
    "is_upcoming": YoutubeDLErrorOp.TO_BE_PUBLISHED,
    "post_live": YoutubeDLErrorOp.NOT_POST_PROCESSED,
}


async def build_youtube_dl_import(
    session: AsyncSession,
    *,
    user: User,
    channel: Channel,
    target_url: str,
    channel_sync: ChannelSync | None = None,
    import_data_override: ImportDataOverride | None = None,
) -> CreateJobArgument:
    """Persist a pending import row and return the job that will process it."""

    override = import_data_override or ImportDataOverride()

    video_import = VideoImport(
        channel_id=channel.id,
        user_id=user.id,
        channel_sync_id=channel_sync.id if channel_sync is not None else None,
        target_url=target_url,
        state=VideoImportState.PENDING.value,
        privacy=override.privacy.value,
        originally_published_at=override.originally_published_at,
    )
    await import_registry.save(session, video_import)

    payload = VideoImportPayload(video_import_id=video_import.id, import_data_override=override)
    return CreateJobArgument(type=VIDEO_IMPORT_JOB, payload=payload.model_dump(mode="json"))


def build_after_channel_import(channel_sync: ChannelSync | None) -> CreateJobArgument:
    payload = AfterChannelImportPayload(channel_sync_id=channel_sync.id if channel_sync is not None else None)
    return CreateJobArgument(type=AFTER_CHANNEL_IMPORT_JOB, payload=payload.model_dump(mode="json"))


async def fetch_import_info(wrapper: YoutubeDLWrapper) -> VideoMetadata:
    """Fetch download info, turning extraction failures into validation errors."""

    try:
        metadata = await wrapper.get_info_for_download()
    except YoutubeDLIsLiveError as err:
        raise YoutubeDLValidationError.from_error(err, YoutubeDLErrorOp.IS_LIVE, wrapper.url) from err
    except YoutubeDLNoFormatsError as err:
        raise YoutubeDLValidationError.from_error(err, YoutubeDLErrorOp.NO_FORMATS_AVAILABLE, wrapper.url) from err
    except YoutubeDLError as err:
        raise YoutubeDLValidationError.from_error(
            err, YoutubeDLErrorOp.VIDEO_AVAILABILITY_ERROR, wrapper.url
        ) from err

    validate_import_info(metadata, wrapper.url)
    return metadata


def validate_import_info(metadata: VideoMetadata, url: str) -> None:
    op = _LIVE_STATUS_OPS.get(metadata.live_status or "")
    if op is not None:
        raise YoutubeDLValidationError(op, url)
    if not metadata.formats:
        raise YoutubeDLValidationError(YoutubeDLErrorOp.NO_FORMATS_AVAILABLE, url)


def _apply_metadata(
    video_import: VideoImport,
    metadata: VideoMetadata,
    override: ImportDataOverride | None,
) -> None:
    video_import.name = metadata.name
    video_import.description = metadata.description
    video_import.category = metadata.category
    video_import.licence = metadata.licence
    video_import.language = metadata.language
    video_import.nsfw = metadata.nsfw
    video_import.tags = "\n".join(metadata.tags) or None
    video_import.thumbnail_url = metadata.thumbnail_url

    if override is not None:
        video_import.privacy = override.privacy.value
    published_at = override.originally_published_at if override is not None else None
    video_import.originally_published_at = published_at or metadata.originally_published_at


def _apply_verdict(video_import: VideoImport, verdict: TranscodeVerdict) -> None:
    video_import.quick_audio_copy = verdict.audio_copy
    video_import.quick_video_copy = verdict.video_copy
    video_import.target_video_bitrate = verdict.target_video_bitrate
    video_import.target_audio_bitrate = verdict.target_audio_bitrate


async def _fetch_subtitles(wrapper: YoutubeDLWrapper) -> list[YoutubeDLSubtitle]:
    try:
        return await wrapper.get_subtitles()
    except YoutubeDLError:
        logger.warning("Cannot get video subtitles", extra={"url": wrapper.url}, exc_info=True)
        return []


async def process_video_import(
    session: AsyncSession,
    payload: Mapping[str, Any],
    *,
    settings: Settings | None = None,
    wrapper_factory: WrapperFactory | None = None,
    prober: Prober | None = None,
) -> VideoImport:
    """Download one remote video and record its metadata and transcode plan."""

    settings = settings or get_settings()
    data = VideoImportPayload.model_validate(payload)
    prober = prober or probe_file

    video_import = await session.get(VideoImport, data.video_import_id)
    if video_import is None:
        raise LookupError(f"Unknown video import {data.video_import_id}")

    if wrapper_factory is None:
        wrapper = wrapper_for_vod(video_import.target_url, settings)
    else:
        wrapper = wrapper_factory(video_import.target_url)

    try:
        metadata = await fetch_import_info(wrapper)
        file_path = await wrapper.download_video(metadata.ext, settings.import_timeout_seconds)
        probe = await prober(file_path, settings)
        verdict = decide_transcode(probe)
        subtitles = await _fetch_subtitles(wrapper)
    except YoutubeDLValidationError as err:
        video_import.state = VideoImportState.REJECTED.value
        video_import.error = str(err)
        video_import.updated_at = datetime.now(timezone.utc)
        await session.flush()
        raise
    except Exception as err:
        video_import.state = VideoImportState.FAILED.value
        video_import.error = str(err)
        video_import.updated_at = datetime.now(timezone.utc)
        await session.flush()
        raise

    _apply_metadata(video_import, metadata, data.import_data_override)
    _apply_verdict(video_import, verdict)
    video_import.file_path = str(file_path)
    video_import.subtitle_languages = "\n".join(sub.language for sub in subtitles) or None
    video_import.state = VideoImportState.SUCCESS.value
    video_import.error = None
    video_import.updated_at = datetime.now(timezone.utc)
    await session.flush()

    logger.info(
        "Imported video",
        extra={
            "video_import_id": video_import.id,
            "url": video_import.target_url,
            "quick_transcode": verdict.quick_transcode,
        },
    )
    return video_import


async def process_after_channel_import(
    session: AsyncSession,
    payload: Mapping[str, Any],
    *,
    settings: Settings | None = None,
) -> ChannelSync | None:
    data = AfterChannelImportPayload.model_validate(payload)
    if data.channel_sync_id is None:
        return None

    channel_sync = await session.get(ChannelSync, data.channel_sync_id)
    if channel_sync is None:
        logger.warning("Channel sync vanished before finalization", extra={"channel_sync_id": data.channel_sync_id})
        return None

    channel_sync.mark_synced()
    await session.flush()
    return channel_sync


__all__ = [
    "build_after_channel_import",
    "build_youtube_dl_import",
    "fetch_import_info",
    "process_after_channel_import",
    "process_video_import",
    "validate_import_info",
]
