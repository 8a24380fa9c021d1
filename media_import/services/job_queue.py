"""Job-graph queue backed by the ``jobs`` table.

A parent job is held in ``waiting-children`` until every child has settled
(completed or failed), then released to ``pending`` so the worker can run it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from media_import.core.constants import SETTLED_JOB_STATUSES, JobStatus
from media_import.db.models import Job
from media_import.schema.job import CreateJobArgument

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    async def create_job_with_children(
        self,
        parent: CreateJobArgument,
        children: Sequence[CreateJobArgument],
    ) -> Job: ...


class DatabaseJobQueue:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_job_with_children(
        self,
        parent: CreateJobArgument,
        children: Sequence[CreateJobArgument],
    ) -> Job:
        """Persist the parent and its children in one flush."""

        parent_status = JobStatus.WAITING_CHILDREN if children else JobStatus.PENDING
        parent_job = Job(type=parent.type, payload=dict(parent.payload), status=parent_status.value)
        parent_job.children = [
            Job(type=child.type, payload=dict(child.payload), status=JobStatus.PENDING.value)
            for child in children
        ]

        self._session.add(parent_job)
        await self._session.flush()

        logger.info(
            "Queued job graph",
            extra={"job_id": parent_job.id, "job_type": parent.type, "children": len(children)},
        )
        return parent_job

    async def claim_pending_jobs(self, *, batch_size: int = 10) -> list[Job]:
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.PENDING.value)
            .order_by(Job.created_at, Job.id)
            .limit(batch_size)
        )
        jobs = list(await self._session.scalars(stmt))

        now = datetime.now(timezone.utc)
        for job in jobs:
            job.status = JobStatus.RUNNING.value
            job.started_at = now
        await self._session.flush()
        return jobs

    async def release_ready_parents(self) -> list[Job]:
        """Promote waiting parents whose children have all settled."""

        child = aliased(Job)
        unsettled_children = (
            select(child.id)
            .where(child.parent_id == Job.id)
            .where(child.status.not_in(sorted(SETTLED_JOB_STATUSES)))
        )
        stmt = (
            select(Job)
            .where(Job.status == JobStatus.WAITING_CHILDREN.value)
            .where(~unsettled_children.exists())
        )
        parents = list(await self._session.scalars(stmt))

        for parent in parents:
            parent.status = JobStatus.PENDING.value
        if parents:
            await self._session.flush()
        return parents


def mark_completed(job: Job, *, now: datetime | None = None) -> None:
    job.status = JobStatus.COMPLETED.value
    job.finished_at = now or datetime.now(timezone.utc)
    job.last_error = None


def mark_failed(job: Job, error: BaseException, *, now: datetime | None = None) -> None:
    job.status = JobStatus.FAILED.value
    job.finished_at = now or datetime.now(timezone.utc)
    job.last_error = str(error)


__all__ = ["DatabaseJobQueue", "JobQueue", "mark_completed", "mark_failed"]
