"""Utility to synchronize an external channel into a local channel."""

from __future__ import annotations

import asyncio
import logging
from datetime import date

from media_import.core.config import get_settings
from media_import.db.models import Channel, ChannelSync
from media_import.db.session import SessionLocal
from media_import.services.channel_sync import synchronize_channel

USAGE = (
    "Usage: python -m media_import.jobs.sync_channel <CHANNEL_ID> <EXTERNAL_URL>"
    " [--limit N] [--after YYYY-MM-DD]"
)


async def sync_channel(
    channel_id: int,
    external_url: str,
    *,
    limit: int | None = None,
    only_after: date | None = None,
) -> None:
    async with SessionLocal() as session:
        channel = await session.get(Channel, channel_id)
        if not channel:
            print(f"Channel {channel_id} not found.")
            return

        channel_sync = ChannelSync(channel_id=channel.id, external_channel_url=external_url)
        session.add(channel_sync)
        await session.flush()

        result = await synchronize_channel(
            session,
            channel=channel,
            external_channel_url=external_url,
            channel_sync=channel_sync,
            videos_count_limit=limit,
            only_after=only_after,
        )
        await session.commit()

        if result.failed:
            print(f"Sync {channel_sync.id} failed: {result.error}")
        else:
            print(f"Sync {channel_sync.id} queued {len(result.children)} of {result.candidates} videos.")


def _option(args: list[str], name: str) -> str | None:
    if name not in args:
        return None
    index = args.index(name)
    if index + 1 >= len(args):
        raise ValueError(f"Missing value for {name}")
    return args[index + 1]


if __name__ == "__main__":
    import sys

    argv = sys.argv[1:]
    if len(argv) < 2:
        print(USAGE)
        sys.exit(1)

    try:
        limit_arg = _option(argv, "--limit")
        after_arg = _option(argv, "--after")
        arguments = {
            "limit": int(limit_arg) if limit_arg else None,
            "only_after": date.fromisoformat(after_arg) if after_arg else None,
        }
        target_channel = int(argv[0])
    except ValueError as exc:
        print(f"{exc}\n{USAGE}")
        sys.exit(1)

    logging.basicConfig(level=get_settings().log_level)
    asyncio.run(sync_channel(target_channel, argv[1], **arguments))
