"""Normalisation of raw extraction output into :class:`VideoMetadata`.

Every field degrades to ``None`` (or an empty collection) on malformed input;
building a record never raises.
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

from media_import.core.constants import (
    NSFW_AGE_LIMIT,
    VIDEO_CATEGORIES,
    VIDEO_DESCRIPTION_MAX,
    VIDEO_DESCRIPTION_MIN,
    VIDEO_LANGUAGES,
    VIDEO_LICENCES,
    VIDEO_NAME_MAX,
    VIDEO_NAME_MIN,
    VIDEO_TAG_MAX,
    VIDEO_TAG_MIN,
    VIDEO_TAGS_MAX_COUNT,
)

TRUNCATE_SEPARATOR = re.compile(r",? +")
TRUNCATE_OMISSION = " […]"
SHORT_TITLE_SUFFIX = " video"

NEWS_CATEGORY = "News & Politics"
NEWS_CATEGORY_ID = 11
CREATIVE_COMMONS_ATTRIBUTION = "Creative Commons Attribution"
CREATIVE_COMMONS_ATTRIBUTION_ID = 1

_UPLOAD_DATE_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_VALID_URL_SCHEMES = frozenset({"http", "https"})


@dataclass(slots=True)
class VideoMetadata:
    """Canonical description of one remote video."""

    name: str | None = None
    description: str | None = None
    category: int | None = None
    licence: int | None = None
    language: str | None = None
    nsfw: bool = False
    tags: list[str] = field(default_factory=list)
    thumbnail_url: str | None = None
    urls: list[str] = field(default_factory=list)
    formats: list[dict[str, Any]] = field(default_factory=list)
    ext: str | None = None
    webpage_url: str | None = None
    is_live: bool = False
    live_status: str | None = None
    originally_published_at: datetime | None = None
    upload_date: str | None = None
    timestamp: int | None = None
    release_timestamp: int | None = None


def truncate(
    text: str,
    *,
    length: int,
    separator: re.Pattern[str] = TRUNCATE_SEPARATOR,
    omission: str = TRUNCATE_OMISSION,
) -> str:
    """Shorten ``text`` to ``length`` characters, cutting at the last separator."""

    if len(text) <= length:
        return text

    end = length - len(omission)
    if end < 1:
        return omission

    result = text[:end]
    boundary = separator.search(text, end)
    if boundary is None or boundary.start() != end:
        last_match = None
        for last_match in separator.finditer(result):
            pass
        if last_match is not None:
            result = result[: last_match.start()]

    return result + omission


def is_url_valid(url: Any) -> bool:
    if not isinstance(url, str) or not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in _VALID_URL_SCHEMES and bool(parsed.netloc)


def build_title(title: Any) -> str | None:
    if not isinstance(title, str) or not title:
        return None

    name = truncate(title, length=VIDEO_NAME_MAX)
    if len(name) < VIDEO_NAME_MIN:
        name += SHORT_TITLE_SUFFIX
    return name


def build_description(description: Any) -> str | None:
    if not isinstance(description, str) or len(description) < VIDEO_DESCRIPTION_MIN:
        return None
    return truncate(description, length=VIDEO_DESCRIPTION_MAX)


def build_category(categories: Any) -> int | None:
    if not isinstance(categories, list) or not categories:
        return None

    category = categories[0]
    if not isinstance(category, str) or not category:
        return None

    if category == NEWS_CATEGORY:
        return NEWS_CATEGORY_ID

    lowered = category.lower()
    for key, label in VIDEO_CATEGORIES.items():
        if label.lower() == lowered:
            return key
    return None


def build_licence(licence: Any) -> int | None:
    if not isinstance(licence, str) or not licence:
        return None

    if CREATIVE_COMMONS_ATTRIBUTION in licence:
        return CREATIVE_COMMONS_ATTRIBUTION_ID

    lowered = licence.lower()
    for key, label in VIDEO_LICENCES.items():
        if label.lower() == lowered:
            return key
    return None


def build_language(language: Any) -> str | None:
    if isinstance(language, str) and language in VIDEO_LANGUAGES:
        return language
    return None


def is_nsfw(age_limit: Any) -> bool:
    return isinstance(age_limit, (int, float)) and not isinstance(age_limit, bool) and age_limit >= NSFW_AGE_LIMIT


def build_tags(tags: Any) -> list[str]:
    if not isinstance(tags, list):
        return []

    kept = [
        unicodedata.normalize("NFC", tag)
        for tag in tags
        if isinstance(tag, str) and VIDEO_TAG_MIN < len(tag) < VIDEO_TAG_MAX
    ]
    return kept[:VIDEO_TAGS_MAX_COUNT]


def build_originally_published_at(upload_date: Any) -> datetime | None:
    """Parse a ``YYYYMMDD`` stamp into a UTC midnight datetime."""

    if not isinstance(upload_date, str):
        return None

    matched = _UPLOAD_DATE_RE.match(upload_date)
    if matched is None:
        return None

    year, month, day = (int(part) for part in matched.groups())
    try:
        return datetime(year, month, day, tzinfo=timezone.utc)
    except ValueError:
        return None


def _urls_of(items: Any) -> list[Any]:
    if not isinstance(items, list):
        return []
    return [item.get("url") for item in items if isinstance(item, Mapping) and item.get("url")]


def build_available_urls(info: Mapping[str, Any]) -> list[str]:
    urls: list[Any] = []

    if info.get("url"):
        urls.append(info["url"])

    raw_urls = info.get("urls")
    if isinstance(raw_urls, list):
        urls.extend(raw_urls)
    elif raw_urls:
        urls.append(raw_urls)

    urls.extend(_urls_of(info.get("formats")))
    urls.extend(_urls_of(info.get("thumbnails")))

    if info.get("thumbnail"):
        urls.append(info["thumbnail"])

    subtitles = info.get("subtitles")
    if isinstance(subtitles, Mapping):
        for tracks in subtitles.values():
            urls.extend(_urls_of(tracks))

    return [url for url in urls if is_url_valid(url)]


def _formats_of(info: Mapping[str, Any]) -> list[dict[str, Any]]:
    for key in ("formats", "requested_formats"):
        formats = info.get(key)
        if isinstance(formats, list) and formats:
            return [item for item in formats if isinstance(item, dict)]
    return []


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _optional_int(value: Any) -> int | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return int(value)
    return None


def build_video_metadata(info: Any) -> VideoMetadata:
    """Map one raw extraction record onto :class:`VideoMetadata`."""

    if not isinstance(info, Mapping):
        return VideoMetadata()

    live_status = _optional_str(info.get("live_status"))

    return VideoMetadata(
        name=build_title(info.get("title")),
        description=build_description(info.get("description")),
        category=build_category(info.get("categories")),
        licence=build_licence(info.get("license")),
        language=build_language(info.get("language")),
        nsfw=is_nsfw(info.get("age_limit")),
        tags=build_tags(info.get("tags")),
        thumbnail_url=_optional_str(info.get("thumbnail")),
        urls=build_available_urls(info),
        formats=_formats_of(info),
        ext=_optional_str(info.get("ext")),
        webpage_url=_optional_str(info.get("webpage_url")),
        is_live=info.get("is_live") is True or live_status == "is_live",
        live_status=live_status,
        originally_published_at=build_originally_published_at(info.get("upload_date")),
        upload_date=_optional_str(info.get("upload_date")),
        timestamp=_optional_int(info.get("timestamp")),
        release_timestamp=_optional_int(info.get("release_timestamp")),
    )


__all__ = ["VideoMetadata", "build_video_metadata", "is_url_valid", "truncate"]
