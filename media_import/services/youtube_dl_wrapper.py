"""Per-URL facade over the extraction runner used by import jobs and channel sync."""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from media_import.core.config import Settings, get_settings
from media_import.services.format_negotiator import build_format_selector
from media_import.services.info_builder import VideoMetadata, build_video_metadata
from media_import.services.playlist_filter import PlaylistEntry, build_playlist_entries, filter_unavailable
from media_import.services.youtube_dl_cli import YoutubeDLCLI
from media_import.services.youtube_dl_errors import (
    YoutubeDLIsLiveError,
    YoutubeDLNoFormatsError,
    YoutubeDLNoInfoError,
)

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset({".mp4", ".mkv", ".webm", ".mov", ".m4v", ".ogv", ".flv", ".avi"})
FALLBACK_EXTENSIONS = (".mp4", ".mkv", ".webm")
_SUBTITLE_FILENAME_RE = re.compile(r"\.([a-z]{2})(-[a-z]+)?\.(vtt|ttml)", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class YoutubeDLSubtitle:
    language: str
    path: Path
    filename: str


def normalize_extension(extension: str | None) -> str:
    if not extension:
        return ""
    ext = extension.lower()
    if not ext.startswith("."):
        ext = f".{ext}"
    return ext


def generate_import_tmp_path(tmp_dir: Path, url: str, extension: str = "") -> Path:
    digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
    return tmp_dir / f"{digest}-import{extension}"


class YoutubeDLWrapper:
    """Import-level operations for one external URL."""

    def __init__(
        self,
        url: str,
        enabled_resolutions: Sequence[int],
        use_best_format: bool,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.url = url
        self.enabled_resolutions = list(enabled_resolutions)
        self.use_best_format = use_best_format
        self._settings = settings or get_settings()

    @property
    def format_selector(self) -> str:
        return build_format_selector(self.enabled_resolutions, self.use_best_format)

    async def _cli(self) -> YoutubeDLCLI:
        return await YoutubeDLCLI.safe_get(self._settings)

    async def get_info_for_download(self, additional_args: list[str] | None = None) -> VideoMetadata:
        cli = await self._cli()
        info = await cli.get_info(self.url, self.format_selector, additional_args=additional_args)

        if not info:
            raise YoutubeDLNoInfoError(self.url)
        if isinstance(info, list):
            info = info[0]

        metadata = build_video_metadata(info)

        if metadata.is_live:
            raise YoutubeDLIsLiveError(metadata.webpage_url or self.url)

        if not metadata.formats:
            raise YoutubeDLNoFormatsError(metadata.webpage_url or self.url)

        return metadata

    async def get_info_for_list_import(self, *, latest_videos_count: int | None = None) -> list[PlaylistEntry]:
        """Return the available entries of a channel or playlist, oldest first."""

        cli = await self._cli()
        records = await cli.get_list_info(self.url, latest_videos_count=latest_videos_count)

        entries = build_playlist_entries(records)
        available = filter_unavailable(entries)
        logger.debug(
            "Listed %d entries (%d available) for %s",
            len(entries),
            len(available),
            self.url,
        )
        return available

    async def get_subtitles(self) -> list[YoutubeDLSubtitle]:
        cwd = self._settings.tmp_dir
        cwd.mkdir(parents=True, exist_ok=True)

        cli = await self._cli()
        files = await cli.get_subs(self.url, sub_format="vtt", cwd=str(cwd))
        logger.debug("Got subtitles from youtube-dl", extra={"url": self.url, "files": files})

        subtitles: list[YoutubeDLSubtitle] = []
        for filename in files:
            matched = _SUBTITLE_FILENAME_RE.search(filename)
            if not matched:
                continue
            subtitles.append(YoutubeDLSubtitle(language=matched.group(1), path=cwd / filename, filename=filename))
        return subtitles

    async def download_video(self, file_ext: str | None, timeout: float | None) -> Path:
        # The tool appends the extension itself
        path_without_extension = generate_import_tmp_path(self._settings.tmp_dir, self.url)
        path_without_extension.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Importing youtube-dl video %s to %s", self.url, path_without_extension)

        cli = await self._cli()
        try:
            await cli.download(
                self.url,
                self.format_selector,
                str(path_without_extension),
                timeout=timeout,
            )

            if path_without_extension.exists():
                path_without_extension.rename(Path(f"{path_without_extension}.mp4"))

            return self._guess_video_path_with_extension(path_without_extension, file_ext)
        except Exception:
            self._remove_partial_download(path_without_extension, file_ext)
            raise

    def _guess_video_path_with_extension(self, tmp_path: Path, source_ext: str | None) -> Path:
        extension = normalize_extension(source_ext) or ".mp4"
        if extension not in VIDEO_EXTENSIONS:
            raise ValueError(f"Invalid video extension {extension}")

        for candidate in (extension, *FALLBACK_EXTENSIONS):
            path = Path(f"{tmp_path}{candidate}")
            if path.exists():
                return path

        directory_content = sorted(entry.name for entry in tmp_path.parent.iterdir())
        raise FileNotFoundError(f"Cannot guess path of {tmp_path}. Directory content: {', '.join(directory_content)}")

    def _remove_partial_download(self, tmp_path: Path, source_ext: str | None) -> None:
        try:
            path = self._guess_video_path_with_extension(tmp_path, source_ext)
            logger.debug("Error in youtube-dl import, deleting file %s", path)
            path.unlink()
        except (OSError, ValueError):
            logger.debug("No partial youtube-dl download to remove for %s", self.url, exc_info=True)


def wrapper_for_vod(url: str, settings: Settings | None = None) -> YoutubeDLWrapper:
    """Wrapper negotiating formats against the VOD transcoding resolutions."""

    settings = settings or get_settings()
    return YoutubeDLWrapper(
        url,
        settings.enabled_resolutions("vod"),
        settings.always_transcode_original_resolution,
        settings=settings,
    )


__all__ = ["YoutubeDLSubtitle", "YoutubeDLWrapper", "generate_import_tmp_path", "wrapper_for_vod"]
