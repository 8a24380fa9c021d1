"""Pydantic models for queued job payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from media_import.core.constants import VideoPrivacy


class ImportDataOverride(BaseModel):
    """Fields forced onto imported videos regardless of the remote metadata."""

    privacy: VideoPrivacy = VideoPrivacy.PUBLIC
    originally_published_at: datetime | None = None


class VideoImportPayload(BaseModel):
    video_import_id: int
    import_data_override: ImportDataOverride | None = None


class AfterChannelImportPayload(BaseModel):
    channel_sync_id: int | None = None


class CreateJobArgument(BaseModel):
    """A job ready to be handed to the queue."""

    type: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
