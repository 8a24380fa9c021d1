"""Background worker executing queued import jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from media_import.core.config import Settings, get_settings
from media_import.core.constants import AFTER_CHANNEL_IMPORT_JOB, VIDEO_IMPORT_JOB
from media_import.db.models import Job
from media_import.db.session import SessionLocal
from media_import.services.job_queue import DatabaseJobQueue, mark_completed, mark_failed
from media_import.services.video_import import process_after_channel_import, process_video_import

logger = logging.getLogger(__name__)

JobHandler = Callable[..., Awaitable[Any]]

DEFAULT_HANDLERS: dict[str, JobHandler] = {
    VIDEO_IMPORT_JOB: process_video_import,
    AFTER_CHANNEL_IMPORT_JOB: process_after_channel_import,
}


async def run_job(
    session: AsyncSession,
    job: Job,
    *,
    handlers: Mapping[str, JobHandler],
    settings: Settings,
) -> bool:
    """Run one claimed job and record its outcome; returns True on success."""

    handler = handlers.get(job.type)
    if handler is None:
        logger.error("No handler for job type", extra={"job_id": job.id, "job_type": job.type})
        mark_failed(job, LookupError(f"Unknown job type {job.type}"))
        return False

    try:
        await handler(session, job.payload, settings=settings)
    except Exception as exc:
        logger.exception("Job failed", extra={"job_id": job.id, "job_type": job.type})
        mark_failed(job, exc)
        return False

    mark_completed(job)
    return True


async def process_pending_jobs(
    session: AsyncSession,
    *,
    handlers: Mapping[str, JobHandler] | None = None,
    batch_size: int | None = None,
    settings: Settings | None = None,
) -> list[Job]:
    """Run a batch of pending jobs, then release parents whose children settled."""

    settings = settings or get_settings()
    handlers = handlers if handlers is not None else DEFAULT_HANDLERS
    queue = DatabaseJobQueue(session)

    jobs = await queue.claim_pending_jobs(batch_size=batch_size or settings.job_batch_size)
    for job in jobs:
        await run_job(session, job, handlers=handlers, settings=settings)
    await session.flush()

    released = await queue.release_ready_parents()
    if released:
        logger.info("Released %d parent jobs", len(released))
    return jobs + released


class JobWorker:
    """Background loop draining the job queue."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    async def _run(self) -> None:
        idle_sleep = 30
        active_sleep = 1

        while not self._stop_event.is_set():
            try:
                async with SessionLocal() as session:
                    jobs = await process_pending_jobs(session, settings=self._settings)
                    await session.commit()
            except Exception:  # pragma: no cover - database dependent
                logger.exception("Job worker iteration failed")
                await asyncio.sleep(idle_sleep)
                continue

            await asyncio.sleep(active_sleep if jobs else idle_sleep)

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:  # pragma: no cover - event loop behaviour
            pass
        finally:
            self._task = None


__all__ = ["DEFAULT_HANDLERS", "JobWorker", "process_pending_jobs", "run_job"]
