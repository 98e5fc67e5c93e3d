from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobLease, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent
from agent_dispatch.domain.retry import backoff_delay
from agent_dispatch.domain.errors import JobNotFoundError, InvalidJobStateError
from agent_dispatch.api.v1.metrics import JOB_FAILURES, QUEUE_DEPTH, JOBS_ACTIVE
from agent_dispatch.settings import settings
from agent_dispatch.utils.timeutil import utcnow


async def fail_job(
    session: AsyncSession,
    job_id: str,
    error: str,
    lease_token: Optional[UUID] = None,
    retryable: bool = True
) -> Job:
    """
    Records a failed attempt.

    With attempts left the job goes back to DELAYED, claimable again after an
    exponential backoff. Once the attempt budget is spent (or the failure is
    not retryable) the job is terminally FAILED and kept for inspection.
    """
    now = utcnow()

    job = (await session.execute(select(Job).where(Job.id == job_id))).scalar_one_or_none()

    if not job:
        raise JobNotFoundError(job_id)

    if job.state != JobState.ACTIVE:
        raise InvalidJobStateError(job.state, JobState.FAILED)

    if lease_token:
        lease_stmt = select(JobLease).where(
            JobLease.job_id == job_id,
            JobLease.lease_token == lease_token
        )
        if (await session.execute(lease_stmt)).scalar_one_or_none() is None:
            raise InvalidJobStateError("lease invalid or lost", JobState.FAILED)

    job.attempts += 1
    job.error = error
    job.updated_at = now

    meta = {
        "error": error,
        "attempts": job.attempts,
        "max": job.max_attempts,
        "lease_token": str(lease_token) if lease_token else None
    }

    if not retryable or job.attempts >= job.max_attempts:
        job.state = JobState.FAILED
        job.finished_on = now
        job.result = None
        JOB_FAILURES.labels(queue=job.queue, kind="final").inc()
        next_event = JobEvent.FAILED
    else:
        delay = backoff_delay(
            job.attempts,
            base_delay_seconds=settings.QUEUE_BACKOFF_BASE_SECONDS,
            max_delay_seconds=settings.QUEUE_BACKOFF_MAX_SECONDS,
            jitter=settings.QUEUE_BACKOFF_JITTER
        )
        job.state = JobState.DELAYED
        job.available_at = now + timedelta(seconds=delay)
        job.progress = 0
        meta["delay_seconds"] = delay
        JOB_FAILURES.labels(queue=job.queue, kind="retryable").inc()
        QUEUE_DEPTH.labels(queue=job.queue).inc()
        next_event = JobEvent.RETRIED

    JOBS_ACTIVE.labels(queue=job.queue).dec()

    await session.execute(delete(JobLease).where(JobLease.job_id == job_id))

    session.add(JobEventLog(
        job_id=job.id,
        event_type=next_event,
        timestamp=now,
        meta=meta
    ))

    await session.flush()
    return job
