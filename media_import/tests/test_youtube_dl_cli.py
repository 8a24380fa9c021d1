"""Tests for the extraction process runner."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest

from media_import.core.config import Settings
from media_import.services import youtube_dl_cli
from media_import.services.youtube_dl_cli import (
    ExtendedToolVariant,
    ToolVariant,
    YoutubeDLCLI,
    select_tool_variant,
    update_youtube_dl_binary,
)
from media_import.services.youtube_dl_errors import (
    YoutubeDLCrashError,
    YoutubeDLExecError,
    YoutubeDLRetCodeError,
)

pytest_plugins = ("pytest_asyncio",)

URL = "https://video.example.com/watch?v=abc"
RELEASES_URL = "https://api.example.com/releases"


class FakeProcess:
    def __init__(self, stdout: bytes = b"", stderr: bytes = b"", returncode: int | None = 0) -> None:
        self._stdout = stdout
        self._stderr = stderr
        self.returncode = returncode
        self.terminated = False

    async def communicate(self) -> tuple[bytes, bytes]:
        return self._stdout, self._stderr

    def terminate(self) -> None:
        self.terminated = True


class HangingProcess(FakeProcess):
    def __init__(self) -> None:
        super().__init__(returncode=None)
        self._done = asyncio.Event()

    async def communicate(self) -> tuple[bytes, bytes]:
        await self._done.wait()
        return b"", b""

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15
        self._done.set()


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "bin_dir": tmp_path / "bin",
        "tmp_dir": tmp_path / "tmp",
        "youtube_dl_python_path": "/usr/bin/python3",
        "youtube_dl_release_url": RELEASES_URL,
        "youtube_dl_release_name": "yt-dlp",
        "proxy_url": None,
        "force_ipv4": False,
        "ffmpeg_path": None,
    }
    values.update(overrides)
    return Settings(**values)


def _install_exec(monkeypatch, responder, calls: list[list[str]]) -> None:
    async def fake_exec(*command, **kwargs):
        calls.append(list(command))
        return responder(list(command))

    monkeypatch.setattr(youtube_dl_cli.asyncio, "create_subprocess_exec", fake_exec)


def _lines(*records) -> bytes:
    return "\n".join(json.dumps(record) for record in records).encode()


def test_variant_selection(tmp_path):
    assert isinstance(select_tool_variant(_settings(tmp_path)), ExtendedToolVariant)
    assert type(select_tool_variant(_settings(tmp_path, youtube_dl_release_name="youtube-dl"))) is ToolVariant
    assert type(select_tool_variant(_settings(tmp_path, youtube_dl_extended=False))) is ToolVariant


def test_build_command_wraps_proxy_then_ipv4_then_ffmpeg(tmp_path):
    settings = _settings(tmp_path, proxy_url="http://proxy:3128", force_ipv4=True, ffmpeg_path="/opt/ffmpeg")
    cli = YoutubeDLCLI(settings)

    command = cli.build_command(URL, ["-f", "best"])

    assert command == [
        "/usr/bin/python3",
        str(settings.bin_dir / "yt-dlp"),
        "--ffmpeg-location",
        "/opt/ffmpeg",
        "--force-ipv4",
        "--proxy",
        "http://proxy:3128",
        "-f",
        "best",
        URL,
    ]


def test_build_command_without_options(tmp_path):
    cli = YoutubeDLCLI(_settings(tmp_path))

    assert cli.build_command(URL, ["--skip-download"])[2:] == ["--skip-download", URL]


@pytest.mark.asyncio
async def test_run_returns_non_empty_lines(tmp_path, monkeypatch):
    calls: list[list[str]] = []
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=b"first\n\n  \nsecond\n"), calls)

    lines = await YoutubeDLCLI(_settings(tmp_path)).run(URL, ["--version"])

    assert lines == ["first", "second"]
    assert calls[0][-1] == URL


@pytest.mark.asyncio
async def test_run_non_zero_exit_raises_retcode_error(tmp_path, monkeypatch):
    _install_exec(monkeypatch, lambda _: FakeProcess(returncode=2), [])

    with pytest.raises(YoutubeDLRetCodeError) as excinfo:
        await YoutubeDLCLI(_settings(tmp_path)).run(URL, [])

    assert excinfo.value.retcode == 2
    assert excinfo.value.url == URL


@pytest.mark.asyncio
async def test_run_stderr_output_is_a_crash(tmp_path, monkeypatch):
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=b"{}", stderr=b"WARNING: boom"), [])

    with pytest.raises(YoutubeDLCrashError) as excinfo:
        await YoutubeDLCLI(_settings(tmp_path)).run(URL, [])

    assert "boom" in excinfo.value.stderr


@pytest.mark.asyncio
async def test_run_spawn_failure_raises_exec_error(tmp_path, monkeypatch):
    async def failing_exec(*command, **kwargs):
        raise FileNotFoundError("python3")

    monkeypatch.setattr(youtube_dl_cli.asyncio, "create_subprocess_exec", failing_exec)

    with pytest.raises(YoutubeDLExecError):
        await YoutubeDLCLI(_settings(tmp_path)).run(URL, [])


@pytest.mark.asyncio
async def test_run_terminates_process_on_timeout(tmp_path, monkeypatch):
    process = HangingProcess()
    _install_exec(monkeypatch, lambda _: process, [])

    with pytest.raises(YoutubeDLRetCodeError):
        await YoutubeDLCLI(_settings(tmp_path)).run(URL, [], timeout=0.01)

    assert process.terminated is True


@pytest.mark.asyncio
async def test_get_info_pairs_format_projection_with_item(tmp_path, monkeypatch):
    calls: list[list[str]] = []
    stdout = _lines(
        {"title": "Video", "webpage_url": URL},
        [{"url": "https://cdn.example.com/v.mp4", "height": 720}, {"url": "https://cdn.example.com/a.m4a"}],
    )
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=stdout), calls)

    info = await YoutubeDLCLI(_settings(tmp_path)).get_info(URL, "best")

    assert info == {
        "title": "Video",
        "webpage_url": URL,
        "requested_formats": [
            {"url": "https://cdn.example.com/v.mp4", "height": 720},
            {"url": "https://cdn.example.com/a.m4a"},
        ],
    }
    command = calls[0]
    assert command[command.index("-S") + 1] == "res,br,fps"
    assert command[command.index("-f") + 1] == "best"
    assert command.count("-O") == 2


@pytest.mark.asyncio
async def test_get_info_basic_variant_dumps_json(tmp_path, monkeypatch):
    calls: list[list[str]] = []
    stdout = _lines({"title": "One"}, {"title": "Two"})
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=stdout), calls)

    cli = YoutubeDLCLI(_settings(tmp_path, youtube_dl_release_name="youtube-dl"))
    info = await cli.get_info(URL, "best")

    assert info == [{"title": "One"}, {"title": "Two"}]
    assert "--dump-json" in calls[0]
    assert "-O" not in calls[0]


@pytest.mark.asyncio
async def test_get_info_without_output_returns_none(tmp_path, monkeypatch):
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=b""), [])

    assert await YoutubeDLCLI(_settings(tmp_path)).get_info(URL, "best") is None


@pytest.mark.asyncio
async def test_get_list_info_merges_flat_pass(tmp_path, monkeypatch):
    calls: list[list[str]] = []

    def responder(command: list[str]) -> FakeProcess:
        if "--flat-playlist" in command:
            return FakeProcess(
                stdout=_lines(
                    {"webpage_url": "https://v/1", "timestamp": 1700000000, "release_timestamp": None},
                    {"webpage_url": "https://v/2", "timestamp": None, "release_timestamp": None},
                )
            )
        return FakeProcess(
            stdout=_lines(
                {"webpage_url": "https://v/1", "live_status": "not_live"},
                {"webpage_url": "https://v/2", "live_status": "was_live"},
            )
        )

    _install_exec(monkeypatch, responder, calls)

    records = await YoutubeDLCLI(_settings(tmp_path)).get_list_info(URL, latest_videos_count=3)

    assert records == [
        {"webpage_url": "https://v/1", "live_status": "not_live", "timestamp": 1700000000},
        {"webpage_url": "https://v/2", "live_status": "was_live"},
    ]
    assert len(calls) == 2
    for command in calls:
        assert "--playlist-reverse" in command
        assert command[command.index("--playlist-end") + 1] == "3"
        assert "--match-filters" in command


@pytest.mark.asyncio
async def test_get_list_info_basic_variant_single_pass(tmp_path, monkeypatch):
    calls: list[list[str]] = []
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=_lines({"webpage_url": "https://v/1"})), calls)

    cli = YoutubeDLCLI(_settings(tmp_path, youtube_dl_release_name="youtube-dl"))
    records = await cli.get_list_info(URL)

    assert records == [{"webpage_url": "https://v/1"}]
    assert len(calls) == 1
    assert "--playlist-end" not in calls[0]


@pytest.mark.asyncio
async def test_get_subs_extracts_written_files(tmp_path, monkeypatch):
    stdout = (
        b"[info] Extracting URL\n"
        b"[info] Writing video subtitles to: abc.en.vtt\n"
        b"[info] Writing video subtitles to: abc.pt-br.vtt\n"
    )
    calls: list[list[str]] = []
    _install_exec(monkeypatch, lambda _: FakeProcess(stdout=stdout), calls)

    files = await YoutubeDLCLI(_settings(tmp_path)).get_subs(URL)

    assert files == ["abc.en.vtt", "abc.pt-br.vtt"]
    assert "--sub-format=vtt" in calls[0]


@pytest.mark.asyncio
async def test_download_passes_selector_and_output(tmp_path, monkeypatch):
    calls: list[list[str]] = []
    _install_exec(monkeypatch, lambda _: FakeProcess(), calls)

    await YoutubeDLCLI(_settings(tmp_path)).download(URL, "best", "/tmp/out")

    command = calls[0]
    assert command[command.index("-S") + 1] == "br,res,fps"
    assert command[command.index("--merge-output-format") + 1] == "mp4"
    assert command[command.index("-o") + 1] == "/tmp/out"


def _release_transport(releases: list[dict]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == RELEASES_URL:
            return httpx.Response(200, json=releases)
        if str(request.url) == "https://cdn.example.com/stable/yt-dlp":
            return httpx.Response(200, content=b"#!binary", headers={"content-type": "application/octet-stream"})
        return httpx.Response(404)

    return httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_update_binary_downloads_latest_stable_asset(tmp_path):
    releases = [
        {"prerelease": True, "assets": [{"name": "yt-dlp", "browser_download_url": "https://cdn.example.com/pre"}]},
        {
            "prerelease": False,
            "assets": [
                {"name": "yt-dlp.exe", "browser_download_url": "https://cdn.example.com/stable/yt-dlp.exe"},
                {"name": "yt-dlp", "browser_download_url": "https://cdn.example.com/stable/yt-dlp"},
            ],
        },
    ]
    settings = _settings(tmp_path)

    async with httpx.AsyncClient(transport=_release_transport(releases)) as client:
        assert await update_youtube_dl_binary(settings, client=client) is True

    assert settings.youtube_dl_binary_path.read_bytes() == b"#!binary"


@pytest.mark.asyncio
async def test_update_binary_failure_is_only_logged(tmp_path):
    releases = [{"prerelease": True, "assets": []}]
    settings = _settings(tmp_path)

    async with httpx.AsyncClient(transport=_release_transport(releases)) as client:
        assert await update_youtube_dl_binary(settings, client=client) is False

    assert not settings.youtube_dl_binary_path.exists()
