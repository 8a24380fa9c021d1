"""Persistence helpers for channel syncs, video imports and their owners."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from media_import.db.models import Base, Channel, User, VideoImport


async def url_already_imported(session: AsyncSession, channel_id: int, url: str) -> bool:
    """Return True when ``url`` already has an import row for the channel."""

    existing = await session.scalar(
        select(VideoImport.id)
        .where(VideoImport.channel_id == channel_id)
        .where(VideoImport.target_url == url)
        .limit(1)
    )
    return existing is not None


async def load_user_by_channel_actor_id(session: AsyncSession, actor_id: int) -> User | None:
    """Fetch the owner of the channel identified by its actor id."""

    return await session.scalar(
        select(User).join(Channel, Channel.owner_id == User.id).where(Channel.actor_id == actor_id)
    )


async def save(session: AsyncSession, obj: Base) -> None:
    session.add(obj)
    await session.flush()
