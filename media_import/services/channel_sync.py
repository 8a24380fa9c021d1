"""Bulk synchronization of an external channel into import jobs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from functools import partial

from sqlalchemy.ext.asyncio import AsyncSession

from media_import.core.config import Settings, get_settings
from media_import.core.constants import VideoPrivacy
from media_import.db.models import Channel, ChannelSync
from media_import.schema.job import CreateJobArgument, ImportDataOverride
from media_import.services import import_registry
from media_import.services.job_queue import DatabaseJobQueue, JobQueue
from media_import.services.playlist_filter import PlaylistEntry
from media_import.services.video_import import (
    WrapperFactory,
    build_after_channel_import,
    build_youtube_dl_import,
)
from media_import.services.youtube_dl_wrapper import wrapper_for_vod

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChannelSyncResult:
    """Outcome of one run; ``parent`` is None only when the run failed."""

    candidates: int = 0
    children: list[CreateJobArgument] = field(default_factory=list)
    parent: CreateJobArgument | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


async def skip_import(
    session: AsyncSession,
    channel: Channel,
    entry: PlaylistEntry,
    only_after: date | datetime | None,
    *,
    wrapper_factory: WrapperFactory,
) -> tuple[bool, datetime | None]:
    """Decide whether ``entry`` should be left out of this run.

    Returns the skip decision together with the publish date that was
    recovered, if any. Errors from the detail fetch propagate to the caller.
    """

    if await import_registry.url_already_imported(session, channel.id, entry.webpage_url):
        return True, None

    published_at = entry.published_at
    if only_after is None:
        return False, published_at

    if published_at is None:
        metadata = await wrapper_factory(entry.webpage_url).get_info_for_download()
        published_at = metadata.originally_published_at

    # Without a known date the floor cannot be honoured
    if published_at is None:
        return True, None

    return _as_date(published_at) < _as_date(only_after), published_at


def _day_start(value: datetime) -> datetime:
    return datetime.combine(_as_date(value), time.min, tzinfo=timezone.utc)


def _override_for(
    import_data_override: ImportDataOverride | None,
    published_at: datetime | None,
) -> ImportDataOverride:
    override = import_data_override or ImportDataOverride(privacy=VideoPrivacy.PUBLIC)
    if published_at is not None and override.originally_published_at is None:
        override = override.model_copy(update={"originally_published_at": _day_start(published_at)})
    return override


async def synchronize_channel(
    session: AsyncSession,
    *,
    channel: Channel,
    external_channel_url: str,
    channel_sync: ChannelSync | None = None,
    videos_count_limit: int | None = None,
    only_after: date | datetime | None = None,
    job_queue: JobQueue | None = None,
    wrapper_factory: WrapperFactory | None = None,
    import_data_override: ImportDataOverride | None = None,
    settings: Settings | None = None,
) -> ChannelSyncResult:
    """Queue one import job per new video of ``external_channel_url``.

    Jobs are submitted as children of a single finalize job which marks the
    sync SYNCED once every child has settled. Without a ``channel_sync`` the
    run is untracked and any failure is raised to the caller.
    """

    settings = settings or get_settings()
    job_queue = job_queue or DatabaseJobQueue(session)
    wrapper_factory = wrapper_factory or partial(wrapper_for_vod, settings=settings)

    if channel_sync is not None:
        channel_sync.mark_processing()
        await import_registry.save(session, channel_sync)

    log_extra = {"channel_id": channel.id, "url": external_channel_url}
    result = ChannelSyncResult()

    try:
        async with session.begin_nested():
            user = await import_registry.load_user_by_channel_actor_id(session, channel.actor_id)
            if user is None:
                raise LookupError(f"No owner found for channel actor {channel.actor_id}")

            entries = await wrapper_factory(external_channel_url).get_info_for_list_import(
                latest_videos_count=videos_count_limit
            )
            result.candidates = len(entries)
            logger.info("Fetched %d candidate URLs", len(entries), extra=log_extra)

            if not entries and channel_sync is not None:
                channel_sync.mark_synced()
                await import_registry.save(session, channel_sync)

            for entry in entries:
                try:
                    skip, published_at = await skip_import(
                        session,
                        channel,
                        entry,
                        only_after,
                        wrapper_factory=wrapper_factory,
                    )
                except Exception:
                    logger.exception(
                        "Cannot decide whether to import %s, skipping it",
                        entry.webpage_url,
                        extra=log_extra,
                    )
                    continue

                if skip:
                    continue

                result.children.append(
                    await build_youtube_dl_import(
                        session,
                        user=user,
                        channel=channel,
                        target_url=entry.webpage_url,
                        channel_sync=channel_sync,
                        import_data_override=_override_for(import_data_override, published_at),
                    )
                )

            result.parent = build_after_channel_import(channel_sync)
            await job_queue.create_job_with_children(result.parent, result.children)
    except Exception as err:
        if channel_sync is None:
            raise

        logger.exception("Cannot synchronize channel", extra=log_extra)
        channel_sync.fail(str(err))
        await import_registry.save(session, channel_sync)
        return ChannelSyncResult(candidates=result.candidates, error=str(err))

    logger.info(
        "Queued %d import jobs out of %d candidates",
        len(result.children),
        result.candidates,
        extra=log_extra,
    )
    return result


__all__ = ["ChannelSyncResult", "skip_import", "synchronize_channel"]
