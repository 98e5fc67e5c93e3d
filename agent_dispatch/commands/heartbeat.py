from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobLease, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent
from agent_dispatch.domain.errors import LeaseNotFoundError, LeaseExpiredError, JobNotFoundError
from agent_dispatch.utils.timeutil import utcnow, as_utc


async def heartbeat(
    session: AsyncSession,
    job_id: str,
    lease_token: UUID,
    extend_seconds: int = 60
) -> datetime:
    """
    Renews the lease for a job.
    Throws if the lease is gone, the token does not match, or it already expired.
    Returns the new expires_at.
    """
    now = utcnow()

    stmt = select(JobLease).where(
        JobLease.job_id == job_id,
        JobLease.lease_token == lease_token
    )
    lease = (await session.execute(stmt)).scalar_one_or_none()

    if not lease:
        raise LeaseNotFoundError(f"Lease for job {job_id} not found or token mismatch")

    expires_at = as_utc(lease.expires_at)
    if expires_at < now:
        # Already swept (or about to be); renewal would resurrect a stalled job
        raise LeaseExpiredError(f"Lease for job {job_id} expired at {expires_at}")

    new_expires_at = now + timedelta(seconds=extend_seconds)
    lease.last_heartbeat_at = now
    lease.expires_at = new_expires_at

    await session.flush()
    return new_expires_at


async def update_progress(
    session: AsyncSession,
    job_id: str,
    progress: int,
    lease_token: Optional[UUID] = None
) -> Job:
    """Sets coarse-grained progress (0-100) on an active job."""
    job = (await session.execute(select(Job).where(Job.id == job_id))).scalar_one_or_none()
    if not job:
        raise JobNotFoundError(job_id)

    if job.state != JobState.ACTIVE:
        return job

    if lease_token:
        lease_stmt = select(JobLease).where(
            JobLease.job_id == job_id,
            JobLease.lease_token == lease_token
        )
        if (await session.execute(lease_stmt)).scalar_one_or_none() is None:
            raise LeaseNotFoundError(f"Lease for job {job_id} not found or token mismatch")

    job.progress = max(0, min(100, int(progress)))
    job.updated_at = utcnow()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.PROGRESS,
        meta={"progress": job.progress}
    ))

    await session.flush()
    return job
