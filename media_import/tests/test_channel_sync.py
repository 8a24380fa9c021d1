"""Tests for bulk channel synchronization."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from media_import.core.constants import (
    AFTER_CHANNEL_IMPORT_JOB,
    VIDEO_IMPORT_JOB,
    ChannelSyncState,
    JobStatus,
    VideoPrivacy,
)
from media_import.db.models import Base, Channel, ChannelSync, Job, User, VideoImport
from media_import.schema.job import ImportDataOverride, VideoImportPayload
from media_import.services.channel_sync import skip_import, synchronize_channel
from media_import.services.info_builder import VideoMetadata
from media_import.services.playlist_filter import PlaylistEntry
from media_import.services.youtube_dl_errors import YoutubeDLRetCodeError

pytest_plugins = ("pytest_asyncio",)

CHANNEL_URL = "https://video.example.com/c/hiking"


def _memory_db_url() -> str:
    return f"sqlite+aiosqlite:///file:channel_sync_{uuid.uuid4().hex}?mode=memory&cache=shared"


@pytest_asyncio.fixture
async def session() -> AsyncSession:
    engine = create_async_engine(_memory_db_url(), future=True, connect_args={"uri": True})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
    async with SessionLocal() as session:
        yield session
        await session.rollback()

    await engine.dispose()


@pytest_asyncio.fixture
async def channel(session: AsyncSession) -> Channel:
    user = User(username="alice")
    channel = Channel(name="Hiking", actor_id=100, owner=user)
    session.add(channel)
    await session.flush()
    return channel


@pytest_asyncio.fixture
async def channel_sync(session: AsyncSession, channel: Channel) -> ChannelSync:
    channel_sync = ChannelSync(channel_id=channel.id, external_channel_url=CHANNEL_URL)
    session.add(channel_sync)
    await session.flush()
    return channel_sync


class FakeWrapper:
    def __init__(self, factory: "FakeWrapperFactory", url: str) -> None:
        self._factory = factory
        self.url = url

    async def get_info_for_list_import(self, *, latest_videos_count=None):
        self._factory.list_calls.append(latest_videos_count)
        if self._factory.observed_sync is not None:
            self._factory.observed_states.append(self._factory.observed_sync.state)
        if self._factory.list_error is not None:
            raise self._factory.list_error
        return list(self._factory.entries)

    async def get_info_for_download(self, additional_args=None):
        self._factory.detail_calls.append(self.url)
        detail = self._factory.details.get(self.url)
        if isinstance(detail, Exception):
            raise detail
        return detail or VideoMetadata()


class FakeWrapperFactory:
    def __init__(self, entries=(), *, details=None, list_error=None, observed_sync=None) -> None:
        self.entries = list(entries)
        self.details = details or {}
        self.list_error = list_error
        self.observed_sync = observed_sync
        self.observed_states: list[str] = []
        self.list_calls: list[int | None] = []
        self.detail_calls: list[str] = []

    def __call__(self, url: str) -> FakeWrapper:
        return FakeWrapper(self, url)


async def _jobs(session: AsyncSession) -> list[Job]:
    return list(await session.scalars(select(Job).order_by(Job.id)))


@pytest.mark.asyncio
async def test_zero_candidates_marks_synced_and_queues_parent_only(session, channel, channel_sync):
    factory = FakeWrapperFactory([], observed_sync=channel_sync)
    assert isinstance(channel.id, int)
    assert isinstance(channel_sync.id, int)
    assert channel_sync.state == ChannelSyncState.PENDING.value

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        channel_sync=channel_sync,
        wrapper_factory=factory,
    )

    assert factory.observed_states == [ChannelSyncState.PROCESSING.value]
    assert channel_sync.state == ChannelSyncState.SYNCED.value
    assert channel_sync.last_sync_at is not None
    assert result.children == []
    assert result.failed is False

    jobs = await _jobs(session)
    assert len(jobs) == 1
    assert jobs[0].type == AFTER_CHANNEL_IMPORT_JOB
    assert jobs[0].status == JobStatus.PENDING.value
    assert jobs[0].payload == {"channel_sync_id": channel_sync.id}


@pytest.mark.asyncio
async def test_failing_candidate_is_skipped(session, channel, channel_sync):
    entries = [PlaylistEntry(webpage_url=f"https://v/{index}") for index in range(3)]
    factory = FakeWrapperFactory(
        entries,
        details={
            "https://v/0": VideoMetadata(originally_published_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            "https://v/1": YoutubeDLRetCodeError(1, "https://v/1"),
            "https://v/2": VideoMetadata(originally_published_at=datetime(2024, 2, 1, tzinfo=timezone.utc)),
        },
    )

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        channel_sync=channel_sync,
        only_after=date(2023, 6, 1),
        wrapper_factory=factory,
    )

    assert len(result.children) == 2
    assert channel_sync.state == ChannelSyncState.PROCESSING.value

    jobs = await _jobs(session)
    parents = [job for job in jobs if job.type == AFTER_CHANNEL_IMPORT_JOB]
    children = [job for job in jobs if job.type == VIDEO_IMPORT_JOB]
    assert len(parents) == 1
    assert parents[0].status == JobStatus.WAITING_CHILDREN.value
    assert len(children) == 2
    assert all(child.parent_id == parents[0].id for child in children)

    imports = list(await session.scalars(select(VideoImport).order_by(VideoImport.id)))
    assert [item.target_url for item in imports] == ["https://v/0", "https://v/2"]
    assert all(item.channel_sync_id == channel_sync.id for item in imports)


@pytest.mark.asyncio
async def test_already_imported_and_old_videos_are_skipped(session, channel, channel_sync):
    session.add(VideoImport(channel_id=channel.id, user_id=channel.owner_id, target_url="https://v/old-import"))
    await session.flush()

    only_after = datetime(2023, 11, 14, 23, 0, tzinfo=timezone.utc)
    entries = [
        PlaylistEntry(webpage_url="https://v/old-import", timestamp=1_800_000_000),
        # 2023-11-13
        PlaylistEntry(webpage_url="https://v/day-before", timestamp=1_699_900_000),
        # 2023-11-14 22:13 UTC, earlier in the day than the floor
        PlaylistEntry(webpage_url="https://v/same-day", timestamp=1_700_000_000),
    ]
    factory = FakeWrapperFactory(entries)

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        channel_sync=channel_sync,
        only_after=only_after,
        wrapper_factory=factory,
    )

    assert len(result.children) == 1
    assert factory.detail_calls == []

    payload = VideoImportPayload.model_validate(result.children[0].payload)
    video_import = await session.get(VideoImport, payload.video_import_id)
    assert video_import.target_url == "https://v/same-day"
    assert payload.import_data_override.privacy == VideoPrivacy.PUBLIC
    assert payload.import_data_override.originally_published_at == datetime(2023, 11, 14, tzinfo=timezone.utc)
    assert video_import.originally_published_at.hour == 0


@pytest.mark.asyncio
async def test_custom_override_and_count_limit(session, channel, channel_sync):
    factory = FakeWrapperFactory([PlaylistEntry(webpage_url="https://v/1")])

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        channel_sync=channel_sync,
        videos_count_limit=5,
        wrapper_factory=factory,
        import_data_override=ImportDataOverride(privacy=VideoPrivacy.UNLISTED),
    )

    assert factory.list_calls == [5]
    payload = VideoImportPayload.model_validate(result.children[0].payload)
    assert payload.import_data_override.privacy == VideoPrivacy.UNLISTED
    assert payload.import_data_override.originally_published_at is None


@pytest.mark.asyncio
async def test_listing_failure_marks_session_failed(session, channel, channel_sync):
    factory = FakeWrapperFactory(list_error=YoutubeDLRetCodeError(1, CHANNEL_URL))

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        channel_sync=channel_sync,
        wrapper_factory=factory,
    )

    assert result.failed is True
    assert channel_sync.state == ChannelSyncState.FAILED.value
    assert "return code" in (channel_sync.last_error or "")
    assert await _jobs(session) == []


@pytest.mark.asyncio
async def test_listing_failure_without_session_propagates(session, channel):
    factory = FakeWrapperFactory(list_error=YoutubeDLRetCodeError(1, CHANNEL_URL))

    with pytest.raises(YoutubeDLRetCodeError):
        await synchronize_channel(
            session,
            channel=channel,
            external_channel_url=CHANNEL_URL,
            wrapper_factory=factory,
        )


@pytest.mark.asyncio
async def test_anonymous_sync_queues_parent_without_session(session, channel):
    factory = FakeWrapperFactory([PlaylistEntry(webpage_url="https://v/1")])

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        wrapper_factory=factory,
    )

    assert len(result.children) == 1
    assert result.parent is not None
    assert result.parent.payload == {"channel_sync_id": None}


@pytest.mark.asyncio
async def test_skip_import_skips_entries_without_known_date(session, channel):
    entry = PlaylistEntry(webpage_url="https://v/unknown")
    factory = FakeWrapperFactory()

    skip, published_at = await skip_import(session, channel, entry, date(2024, 1, 1), wrapper_factory=factory)

    assert skip is True
    assert published_at is None
    assert factory.detail_calls == ["https://v/unknown"]


@pytest.mark.asyncio
async def test_skip_import_without_floor_needs_no_detail(session, channel):
    entry = PlaylistEntry(webpage_url="https://v/1", timestamp=1_700_000_000)
    factory = FakeWrapperFactory()

    skip, published_at = await skip_import(session, channel, entry, None, wrapper_factory=factory)

    assert skip is False
    assert published_at == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    assert factory.detail_calls == []


class FailingJobQueue:
    async def create_job_with_children(self, parent, children):
        raise RuntimeError("queue unavailable")


@pytest.mark.asyncio
async def test_queue_failure_after_synced_marks_session_failed(session, channel, channel_sync):
    factory = FakeWrapperFactory([])

    result = await synchronize_channel(
        session,
        channel=channel,
        external_channel_url=CHANNEL_URL,
        channel_sync=channel_sync,
        job_queue=FailingJobQueue(),
        wrapper_factory=factory,
    )

    assert result.failed is True
    assert result.parent is None
    assert channel_sync.state == ChannelSyncState.FAILED.value
    assert channel_sync.last_error == "queue unavailable"
    assert await _jobs(session) == []


@pytest.mark.parametrize("prepare", ["pending", "processing", "synced"])
def test_channel_sync_can_fail_from_any_state(prepare):
    channel_sync = ChannelSync(channel_id=1, external_channel_url=CHANNEL_URL, state=ChannelSyncState.PENDING.value)
    if prepare in ("processing", "synced"):
        channel_sync.mark_processing()
    if prepare == "synced":
        channel_sync.mark_synced()

    channel_sync.fail("listing broke")

    assert channel_sync.state == ChannelSyncState.FAILED.value
    assert channel_sync.last_error == "listing broke"
