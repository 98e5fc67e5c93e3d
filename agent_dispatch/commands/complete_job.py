from typing import Any, Optional
from uuid import UUID

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobLease, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent
from agent_dispatch.domain.errors import JobNotFoundError, InvalidJobStateError
from agent_dispatch.api.v1.metrics import JOB_DURATION, JOB_COMPLETE_TOTAL, JOBS_ACTIVE
from agent_dispatch.utils.timeutil import utcnow, as_utc


async def complete_job(
    session: AsyncSession,
    job_id: str,
    result_data: Any,
    lease_token: Optional[UUID] = None
) -> Job:
    """
    Marks a job as COMPLETED and saves its result.
    Verifies the lease if a token is given, then releases it.
    """
    now = utcnow()

    job = (await session.execute(select(Job).where(Job.id == job_id))).scalar_one_or_none()

    if not job:
        raise JobNotFoundError(job_id)

    if job.state != JobState.ACTIVE:
        if job.state == JobState.COMPLETED:
            return job
        raise InvalidJobStateError(job.state, JobState.COMPLETED)

    lease_obj: Optional[JobLease] = None
    if lease_token:
        lease_stmt = select(JobLease).where(
            JobLease.job_id == job_id,
            JobLease.lease_token == lease_token
        )
        lease_obj = (await session.execute(lease_stmt)).scalar_one_or_none()
        if not lease_obj:
            # Expired and requeued by the reaper, or claimed by someone else
            raise InvalidJobStateError("lease invalid or lost", JobState.COMPLETED)

    job.state = JobState.COMPLETED
    job.progress = 100
    job.result = result_data
    job.error = None
    job.finished_on = now
    job.updated_at = now

    if lease_obj:
        await session.delete(lease_obj)
    else:
        await session.execute(delete(JobLease).where(JobLease.job_id == job_id))

    processed_on = as_utc(job.processed_on)
    if processed_on:
        duration = (now - processed_on).total_seconds()
        if duration > 0:
            JOB_DURATION.observe(duration)

    JOB_COMPLETE_TOTAL.labels(queue=job.queue).inc()
    JOBS_ACTIVE.labels(queue=job.queue).dec()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.COMPLETED,
        timestamp=now,
        meta={"lease_token": str(lease_token) if lease_token else None}
    ))

    await session.flush()
    return job
