"""Errors raised while driving the external extraction tool."""

from __future__ import annotations

from enum import Enum


class YoutubeDLError(RuntimeError):
    """Base class for extraction failures; always carries the target URL."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class YoutubeDLExecError(YoutubeDLError):
    """Raised when the tool process cannot be spawned or produced no result."""

    def __init__(self, url: str) -> None:
        super().__init__("youtube-dl failed to execute, possibly missing or corrupt", url)


class YoutubeDLRetCodeError(YoutubeDLError):
    def __init__(self, retcode: int, url: str) -> None:
        super().__init__(f"youtube-dl return code was not 0, was {retcode} on {url}", url)
        self.retcode = retcode


class YoutubeDLCrashError(YoutubeDLError):
    """Raised when the tool exits cleanly but wrote to stderr."""

    def __init__(self, stderr: str, url: str) -> None:
        super().__init__(f"youtube-dl crashed on {url}: {stderr}", url)
        self.stderr = stderr


class YoutubeDLNoInfoError(YoutubeDLError):
    def __init__(self, url: str) -> None:
        super().__init__(f"youtube-dl returned no info for {url}", url)


class YoutubeDLNoFormatsError(YoutubeDLError):
    def __init__(self, url: str) -> None:
        super().__init__(f"youtube-dl returned no video formats for {url}", url)


class YoutubeDLIsLiveError(YoutubeDLError):
    def __init__(self, url: str) -> None:
        super().__init__(f"youtube-dl cannot download live streaming {url}", url)


class YoutubeDLErrorOp(Enum):
    VIDEO_AVAILABILITY_ERROR = "video-availability-error"
    NO_FORMATS_AVAILABLE = "no-formats-available"
    NOT_POST_PROCESSED = "not-post-processed"
    IS_LIVE = "is-live"
    TO_BE_PUBLISHED = "to-be-published"


_REASONS: dict[YoutubeDLErrorOp, str] = {
    YoutubeDLErrorOp.IS_LIVE: "Video {url} is currently livestreaming",
    YoutubeDLErrorOp.TO_BE_PUBLISHED: "Video {url} has not been published yet",
    YoutubeDLErrorOp.NOT_POST_PROCESSED: "Video {url} is currently post processing",
    YoutubeDLErrorOp.NO_FORMATS_AVAILABLE: "Video {url} has no downloadable video formats available",
    YoutubeDLErrorOp.VIDEO_AVAILABILITY_ERROR: "Video {url} not available for import",
}


class YoutubeDLValidationError(YoutubeDLError):
    """User-facing rejection of a single video import.

    The originating failure, when there is one, is kept on ``cause``.
    """

    def __init__(self, op: YoutubeDLErrorOp, url: str, cause: BaseException | None = None) -> None:
        super().__init__(self.reason_from_op(op, url), url)
        self.op = op
        self.cause = cause

    @staticmethod
    def reason_from_op(op: YoutubeDLErrorOp, url: str) -> str:
        return _REASONS[op].format(url=url)

    @classmethod
    def from_error(cls, err: BaseException, op: YoutubeDLErrorOp, url: str) -> "YoutubeDLValidationError":
        return cls(op, url, cause=err)


__all__ = [
    "YoutubeDLCrashError",
    "YoutubeDLError",
    "YoutubeDLErrorOp",
    "YoutubeDLExecError",
    "YoutubeDLIsLiveError",
    "YoutubeDLNoFormatsError",
    "YoutubeDLNoInfoError",
    "YoutubeDLRetCodeError",
    "YoutubeDLValidationError",
]
