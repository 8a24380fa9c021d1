"""Supervision of the external youtube-dl / yt-dlp extraction process."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from media_import.core.config import Settings, get_settings
from media_import.services.format_negotiator import build_format_selector
from media_import.services.playlist_filter import merge_listing_passes
from media_import.services.youtube_dl_errors import (
    YoutubeDLCrashError,
    YoutubeDLExecError,
    YoutubeDLRetCodeError,
)

logger = logging.getLogger(__name__)

SUBTITLE_LINE_PREFIX = "[info] Writing video subtitles to: "
BINARY_CONTENT_TYPE = "application/octet-stream"

# Only the fields consumed downstream, to bound output for long livestreams
INFO_FIELDS = (
    "title",
    "description",
    "subtitles",
    "webpage_url",
    "live_status",
    "upload_date",
    "thumbnail",
    "language",
    "age_limit",
    "license",
    "categories",
    "tags",
    "ext",
)
FORMAT_FIELDS = ("height", "audio_channels", "url", "ext", "vcodec", "acodec")
FLAT_LIST_FIELDS = ("webpage_url", "timestamp", "release_timestamp")
LIST_FIELDS = ("webpage_url", "live_status")

LIVE_MATCH_FILTER = "!is_live & live_status != is_upcoming & live_status != post_live"

Record = dict[str, Any]


class BinaryProvisioningError(RuntimeError):
    """Raised when the release feed does not lead to a usable binary."""


def output_template(fields: tuple[str, ...], prefix: str = "") -> str:
    """Build a ``-O`` template printing the given fields as one JSON object."""

    return "%(" + prefix + ".{" + ",".join(fields) + "})j"


class ToolVariant:
    """Capabilities of the plain youtube-dl tool.

    The extended fork is modelled by :class:`ExtendedToolVariant`; pick one with
    :func:`select_tool_variant` once and keep it for the life of the runner.
    """

    name = "youtube-dl"
    extended = False
    supports_flat_listing = False
    pairs_format_records = False

    def info_args(self) -> list[str]:
        return ["--dump-json"]

    def list_filter_args(self) -> list[str]:
        return []

    def flat_list_args(self) -> list[str]:
        return []

    def list_output_args(self) -> list[str]:
        return ["--dump-json"]


class ExtendedToolVariant(ToolVariant):
    """yt-dlp: server-side filtering, field projections and flat date recovery."""

    name = "yt-dlp"
    extended = True
    supports_flat_listing = True
    pairs_format_records = True

    def info_args(self) -> list[str]:
        return [
            "--compat-options",
            "no-live-chat",
            "--extractor-args",
            "youtube:skip=dash,hls",
            "-S",
            "res,br,fps",
            "-O",
            output_template(INFO_FIELDS),
            "-O",
            output_template(FORMAT_FIELDS, prefix="requested_formats.:"),
        ]

    def list_filter_args(self) -> list[str]:
        return [
            "--compat-options",
            "no-youtube-unavailable-videos",
            "--match-filters",
            LIVE_MATCH_FILTER,
        ]

    def flat_list_args(self) -> list[str]:
        return [
            "--flat-playlist",
            "--extractor-args",
            "youtubetab:approximate-date",
            "-O",
            output_template(FLAT_LIST_FIELDS),
        ]

    def list_output_args(self) -> list[str]:
        return ["-O", output_template(LIST_FIELDS)]


def select_tool_variant(settings: Settings) -> ToolVariant:
    if settings.is_youtube_dl_extended:
        return ExtendedToolVariant()
    return ToolVariant()


def _is_binary_response(response: httpx.Response) -> bool:
    content_type = response.headers.get("content-type", "")
    return content_type.split(";")[0].strip().lower() == BINARY_CONTENT_TYPE


async def _fetch_release_binary(client: httpx.AsyncClient, url: str, release_name: str) -> bytes:
    response = await client.get(url)
    response.raise_for_status()

    if not _is_binary_response(response):
        releases = response.json()
        latest = next((release for release in releases if release.get("prerelease") is False), None)
        if latest is None:
            raise BinaryProvisioningError("Cannot find latest release")

        asset = next((a for a in latest.get("assets", []) if a.get("name") == release_name), None)
        if asset is None:
            raise BinaryProvisioningError(
                f"Cannot find appropriate release with name {release_name} in release assets"
            )

        response = await client.get(asset["browser_download_url"])
        response.raise_for_status()

    if not _is_binary_response(response):
        raise BinaryProvisioningError("Not a binary response")

    return response.content


async def update_youtube_dl_binary(
    settings: Settings | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> bool:
    """Download the latest stable extraction binary; failures are only logged."""

    settings = settings or get_settings()

    if client is None:
        async with httpx.AsyncClient(follow_redirects=True, timeout=60) as owned_client:
            return await update_youtube_dl_binary(settings, client=owned_client)

    url = settings.youtube_dl_release_url
    binary_path = settings.youtube_dl_binary_path
    logger.info("Updating youtube-dl binary from %s", url)

    try:
        content = await _fetch_release_binary(client, url, settings.youtube_dl_release_name)
        binary_path.parent.mkdir(parents=True, exist_ok=True)
        binary_path.write_bytes(content)
    except (httpx.HTTPError, BinaryProvisioningError, OSError, ValueError, KeyError):
        logger.exception("Cannot update youtube-dl from %s", url)
        return False

    logger.info("youtube-dl updated %s", binary_path)
    return True


def _parse_record(line: str) -> Any:
    try:
        return json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Ignoring non JSON youtube-dl output line", extra={"line": line[:200]})
        return None


def _attach_requested_formats(records: list[Any]) -> list[Any]:
    """Fold each format projection line into the item line printed before it."""

    merged: list[Any] = []
    for index in range(0, len(records), 2):
        item = records[index]
        formats = records[index + 1] if index + 1 < len(records) else None
        if isinstance(item, dict) and isinstance(formats, list):
            item = {**item, "requested_formats": formats}
        merged.append(item)
    return merged


def _as_list(info: Record | list[Record] | None) -> list[Record]:
    if info is None:
        return []
    if isinstance(info, list):
        return info
    return [info]


def _terminate(process: asyncio.subprocess.Process, url: str) -> None:
    logger.warning("youtube-dl timed out, asking process to stop", extra={"url": url})
    try:
        process.terminate()
    except ProcessLookupError:
        logger.debug("youtube-dl process already exited", extra={"url": url})


class YoutubeDLCLI:
    """Runs the extraction tool as ``<python> <binary> <flags...> <url>``."""

    def __init__(self, settings: Settings | None = None, variant: ToolVariant | None = None) -> None:
        self._settings = settings or get_settings()
        self.variant = variant or select_tool_variant(self._settings)

    @classmethod
    async def safe_get(cls, settings: Settings | None = None) -> "YoutubeDLCLI":
        """Return a runner, provisioning the binary first when it is missing."""

        settings = settings or get_settings()
        if not settings.youtube_dl_binary_path.exists():
            await update_youtube_dl_binary(settings)
        return cls(settings)

    # ------------------------------------------------------------------ #
    # Commands                                                           #
    # ------------------------------------------------------------------ #
    async def download(
        self,
        url: str,
        format_selector: str,
        output: str,
        *,
        timeout: float | None = None,
        additional_args: list[str] | None = None,
    ) -> list[str]:
        args = list(additional_args or [])
        args += [
            "-S",
            "br,res,fps",
            "--merge-output-format",
            "mp4",
            "-f",
            format_selector,
            "-o",
            output,
        ]
        return await self.run(url, args, timeout=timeout)

    async def get_info(
        self,
        url: str,
        format_selector: str,
        *,
        additional_args: list[str] | None = None,
        project_fields: bool = True,
    ) -> Record | list[Record] | None:
        """Fetch metadata; one JSON record per output line, collapsed when single."""

        args = list(additional_args or [])
        pair_formats = False
        if project_fields:
            args += self.variant.info_args()
            pair_formats = self.variant.pairs_format_records
        args += ["-f", format_selector]

        lines = await self.run(url, args)
        if not lines:
            logger.error("No data from youtube-dl", extra={"url": url})
            return None

        records = [_parse_record(line) for line in lines]
        if pair_formats:
            records = _attach_requested_formats(records)

        info = [record for record in records if isinstance(record, dict)]
        if not info:
            return None
        return info[0] if len(info) == 1 else info

    async def get_list_info(self, url: str, *, latest_videos_count: int | None = None) -> list[Record]:
        """List a channel or playlist, oldest first, merging the flat date pass."""

        base_args = ["--skip-download", "--playlist-reverse"]
        if latest_videos_count is not None:
            base_args += ["--playlist-end", str(latest_videos_count)]
        base_args += self.variant.list_filter_args()

        format_selector = build_format_selector([], False)
        flat_list: list[Record] = []

        if self.variant.supports_flat_listing:
            flat_list = _as_list(
                await self.get_info(
                    url,
                    format_selector,
                    additional_args=base_args + self.variant.flat_list_args(),
                    project_fields=False,
                )
            )

        listing = _as_list(
            await self.get_info(
                url,
                format_selector,
                additional_args=base_args + self.variant.list_output_args(),
                project_fields=False,
            )
        )
        return merge_listing_passes(listing, flat_list)

    async def get_subs(self, url: str, *, sub_format: str = "vtt", cwd: str | None = None) -> list[str]:
        """Write every subtitle track to ``cwd`` and return the written file names."""

        args = ["--skip-download", "--all-subs", f"--sub-format={sub_format}"]
        lines = await self.run(url, args, cwd=cwd)
        return [line[len(SUBTITLE_LINE_PREFIX) :] for line in lines if line.startswith(SUBTITLE_LINE_PREFIX)]

    # ------------------------------------------------------------------ #
    # Process supervision                                                #
    # ------------------------------------------------------------------ #
    def build_command(self, url: str, args: list[str]) -> list[str]:
        complete_args = self._wrap_with_proxy_options(args)
        complete_args = self._wrap_with_ip_options(complete_args)
        complete_args = self._wrap_with_ffmpeg_options(complete_args)

        return [
            self._settings.youtube_dl_python_path,
            str(self._settings.youtube_dl_binary_path),
            *complete_args,
            url,
        ]

    async def run(
        self,
        url: str,
        args: list[str],
        *,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> list[str]:
        command = self.build_command(url, args)
        logger.debug("Run youtube-dl command", extra={"command": command})

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
            )
        except OSError as exc:
            raise YoutubeDLExecError(url) from exc

        cancel_handle: asyncio.TimerHandle | None = None
        if timeout:
            cancel_handle = asyncio.get_running_loop().call_later(timeout, _terminate, process, url)

        try:
            stdout, stderr = await process.communicate()
        finally:
            if cancel_handle is not None:
                cancel_handle.cancel()

        if process.returncode is None:
            raise YoutubeDLExecError(url)

        if process.returncode != 0:
            raise YoutubeDLRetCodeError(process.returncode, url)

        if stderr:
            raise YoutubeDLCrashError(stderr.decode("utf-8", errors="replace"), url)

        output = stdout.decode("utf-8", errors="replace").strip() if stdout else ""
        return [line for line in output.splitlines() if line.strip()]

    def _wrap_with_proxy_options(self, args: list[str]) -> list[str]:
        proxy = self._settings.proxy_url
        if proxy:
            logger.debug("Using proxy %s for youtube-dl", proxy)
            return ["--proxy", proxy] + args
        return args

    def _wrap_with_ip_options(self, args: list[str]) -> list[str]:
        if self._settings.force_ipv4:
            logger.debug("Force ipv4 for youtube-dl")
            return ["--force-ipv4"] + args
        return args

    def _wrap_with_ffmpeg_options(self, args: list[str]) -> list[str]:
        ffmpeg_path = self._settings.ffmpeg_path
        if ffmpeg_path:
            logger.debug("Using ffmpeg location %s for youtube-dl", ffmpeg_path)
            return ["--ffmpeg-location", ffmpeg_path] + args
        return args


__all__ = [
    "BinaryProvisioningError",
    "ExtendedToolVariant",
    "ToolVariant",
    "YoutubeDLCLI",
    "select_tool_variant",
    "update_youtube_dl_binary",
]
