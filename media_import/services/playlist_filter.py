"""Merging and availability filtering of channel / playlist listings."""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

TIMESTAMP_KEYS = ("timestamp", "release_timestamp")
UNAVAILABLE_LIVE_STATUSES = frozenset({"is_live", "is_upcoming", "post_live"})


@dataclass(frozen=True, slots=True)
class PlaylistEntry:
    """One listed video, identified by its webpage URL."""

    webpage_url: str
    timestamp: int | None = None
    release_timestamp: int | None = None
    live_status: str | None = None

    @property
    def published_at(self) -> datetime | None:
        value = self.timestamp or self.release_timestamp
        if not value:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)


def _is_positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _as_timestamp(value: Any) -> int | None:
    if not _is_positive(value):
        return None
    return int(value)


def merge_listing_passes(
    listing: Iterable[Mapping[str, Any]],
    flat_listing: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    """Copy timestamps from the flat pass onto the detailed listing.

    A flat value only wins when strictly positive, so a zero or missing flat
    timestamp never erases one the detailed pass already supplied.
    """

    flat_by_url: dict[str, Mapping[str, Any]] = {}
    for item in flat_listing:
        url = item.get("webpage_url")
        if url and url not in flat_by_url:
            flat_by_url[url] = item

    merged: list[dict[str, Any]] = []
    for item in listing:
        record = dict(item)
        flat_item = flat_by_url.get(record.get("webpage_url"))
        if flat_item is not None:
            for key in TIMESTAMP_KEYS:
                if _is_positive(flat_item.get(key)):
                    record[key] = flat_item[key]
        merged.append(record)

    return merged


def build_playlist_entries(records: Iterable[Mapping[str, Any]]) -> list[PlaylistEntry]:
    entries: list[PlaylistEntry] = []
    for record in records:
        webpage_url = record.get("webpage_url")
        if not isinstance(webpage_url, str) or not webpage_url:
            continue

        live_status = record.get("live_status")
        if record.get("is_live") is True:
            live_status = "is_live"

        entries.append(
            PlaylistEntry(
                webpage_url=webpage_url,
                timestamp=_as_timestamp(record.get("timestamp")),
                release_timestamp=_as_timestamp(record.get("release_timestamp")),
                live_status=live_status if isinstance(live_status, str) else None,
            )
        )
    return entries


def filter_unavailable(entries: Iterable[PlaylistEntry], *, now: float | None = None) -> list[PlaylistEntry]:
    """Drop scheduled premieres and live items that cannot be fetched yet."""

    current = int(now if now is not None else time.time())
    available: list[PlaylistEntry] = []
    for entry in entries:
        if entry.release_timestamp is not None and entry.release_timestamp > current:
            continue
        if entry.live_status in UNAVAILABLE_LIVE_STATUSES:
            continue
        available.append(entry)
    return available


__all__ = ["PlaylistEntry", "build_playlist_entries", "filter_unavailable", "merge_listing_passes"]
