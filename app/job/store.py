"""
app/job/store.py

Job Persistence Helpers

Loading and committing the Job aggregate under optimistic concurrency.
Every job flush is `UPDATE ... WHERE id = :id AND version = :expected`; a lost
race surfaces from SQLAlchemy as StaleDataError and is translated here into
ConcurrencyConflictError. `persist_with_retry` re-loads and re-applies a
mutation after such a loss, which is how results of external calls that must
not be repeated (payouts, refunds) get recorded.
"""

import logging
from collections.abc import Callable
from typing import TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import ConcurrencyConflictError, NotFoundError
from app.job.models import Job

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def get_job_or_404(db: AsyncSession, job_id: UUID) -> Job:
    """Fetch a job with fresh column values and children, or raise 404."""
    job = await db.get(Job, job_id, populate_existing=True)
    if not job:
        logger.warning(f"[JOB] Job not found: job_id={job_id}")
        raise NotFoundError("Job not found", details={"job_id": str(job_id)})
    return job


async def commit_job(db: AsyncSession, job_id: UUID) -> None:
    """Commit pending job changes; a version mismatch becomes ConcurrencyConflictError."""
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        logger.warning(f"[JOB] Concurrent modification detected on job {job_id}: {e}")
        raise ConcurrencyConflictError(
            "Job was modified concurrently; re-fetch and retry",
            details={"job_id": str(job_id)},
        ) from e


async def persist_with_retry(
    db: AsyncSession,
    job_id: UUID,
    apply: Callable[[Job], T],
    attempts: int,
) -> tuple[Job, T]:
    """
    Load the job, apply `apply`, commit; on a version conflict start over.

    Domain errors raised by `apply` propagate immediately. After `attempts`
    conflicts the last ConcurrencyConflictError is raised.
    """
    attempt = 0
    while True:
        attempt += 1
        job = await get_job_or_404(db, job_id)
        result = apply(job)
        try:
            await commit_job(db, job_id)
        except ConcurrencyConflictError:
            logger.info(f"[JOB] Persist attempt {attempt}/{attempts} lost a race on job {job_id}")
            if attempt >= attempts:
                raise
            continue
        return job, result
