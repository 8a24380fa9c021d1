from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from media_import.core.constants import ChannelSyncState, JobStatus, VideoImportState, VideoPrivacy


# SQLite only auto-increments INTEGER PRIMARY KEY columns
BigIntegerPK = BigInteger().with_variant(Integer, "sqlite")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    channels: Mapped[list["Channel"]] = relationship(back_populates="owner", cascade="all, delete-orphan")


class Channel(Base):
    __tablename__ = "channels"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    owner: Mapped[User] = relationship(back_populates="channels")
    syncs: Mapped[list["ChannelSync"]] = relationship(back_populates="channel", cascade="all, delete-orphan")
    video_imports: Mapped[list["VideoImport"]] = relationship(
        back_populates="channel", cascade="all, delete-orphan"
    )


class ChannelSync(Base):
    """Bookkeeping record for one bulk synchronization of an external channel.

    ``fail`` is accepted from every state so a failure is always observable,
    whatever progress the run had made.
    """

    __tablename__ = "channel_syncs"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    channel_id: Mapped[int] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    external_channel_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    state: Mapped[str] = mapped_column(String(16), default=ChannelSyncState.PENDING.value, nullable=False)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    channel: Mapped[Channel] = relationship(back_populates="syncs")

    def mark_processing(self, now: datetime | None = None) -> None:
        self.state = ChannelSyncState.PROCESSING.value
        self.last_sync_at = now or _utcnow()
        self.last_error = None

    def mark_synced(self) -> None:
        self.state = ChannelSyncState.SYNCED.value

    def fail(self, reason: str | None = None) -> None:
        self.state = ChannelSyncState.FAILED.value
        self.last_error = reason


class VideoImport(Base):
    __tablename__ = "video_imports"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    channel_id: Mapped[int] = mapped_column(ForeignKey("channels.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    channel_sync_id: Mapped[int | None] = mapped_column(
        ForeignKey("channel_syncs.id", ondelete="SET NULL"), nullable=True
    )
    target_url: Mapped[str] = mapped_column(String(2000), nullable=False)
    state: Mapped[str] = mapped_column(String(16), default=VideoImportState.PENDING.value, nullable=False)
    privacy: Mapped[str] = mapped_column(String(16), default=VideoPrivacy.PUBLIC.value, nullable=False)

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[int | None] = mapped_column(Integer, nullable=True)
    licence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    language: Mapped[str | None] = mapped_column(String(16), nullable=True)
    nsfw: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    originally_published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    file_path: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    subtitle_languages: Mapped[str | None] = mapped_column(Text, nullable=True)
    quick_audio_copy: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    quick_video_copy: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    target_video_bitrate: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    target_audio_bitrate: Mapped[int | None] = mapped_column(Integer, nullable=True)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    channel: Mapped[Channel] = relationship(back_populates="video_imports")
    user: Mapped[User] = relationship()
    channel_sync: Mapped[ChannelSync | None] = relationship()


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[str] = mapped_column(String(24), default=JobStatus.PENDING.value, nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    children: Mapped[list["Job"]] = relationship(back_populates="parent")
    parent: Mapped["Job | None"] = relationship(back_populates="children", remote_side=[id])
