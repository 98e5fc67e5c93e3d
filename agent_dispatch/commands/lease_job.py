import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

from croniter import croniter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobLease, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent, CLAIMABLE_STATES
from agent_dispatch.api.v1.metrics import QUEUE_DEPTH, JOBS_ACTIVE, JOB_START_DELAY
from agent_dispatch.settings import settings
from agent_dispatch.utils.timeutil import utcnow, as_utc

logger = logging.getLogger(__name__)

# Progress reported as soon as a worker claims a job
CLAIM_PROGRESS = 10


async def lease_job(
    session: AsyncSession,
    queue: str,
    worker_id: str,
    lease_duration: Optional[int] = None
) -> Optional[tuple[Job, JobLease]]:
    """
    Atomically claims the next claimable job on `queue` for the given worker.

    Order is priority rank (critical first), then available_at, so jobs of
    the same priority come out FIFO. Priority is a weighting only: a running
    job is never preempted.
    """
    duration = lease_duration if lease_duration is not None else settings.DEFAULT_LEASE_TIMEOUT_SECONDS
    now = utcnow()
    expires_at = now + timedelta(seconds=duration)
    lease_token = uuid4()

    stmt = _build_claim_query(queue, now)
    found_job = (await session.execute(stmt)).scalar_one_or_none()

    if not found_job:
        return None

    job = found_job
    job.state = JobState.ACTIVE
    job.progress = CLAIM_PROGRESS
    job.processed_on = now
    job.updated_at = now
    job.error = None

    lease = JobLease(
        job_id=job.id,
        worker_id=worker_id,
        lease_token=lease_token,
        expires_at=expires_at,
        last_heartbeat_at=now
    )
    session.add(lease)

    # Metrics
    QUEUE_DEPTH.labels(queue=queue).dec()
    JOBS_ACTIVE.labels(queue=queue).inc()
    available_at = as_utc(job.available_at)
    if available_at:
        delay = (now - available_at).total_seconds()
        if delay >= 0:
            JOB_START_DELAY.observe(delay)

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.ACTIVE,
        timestamp=now,
        meta={
            "worker_id": worker_id,
            "lease_token": str(lease_token),
            "attempt": job.attempts + 1,
            "expires_at": str(expires_at)
        }
    ))

    # Recurring job: the next occurrence is persisted before this one runs
    if job.cron_schedule:
        await _handle_cron_recurrence(session, job, now)

    await session.flush()

    return job, lease


def _build_claim_query(queue: str, now: datetime):
    return select(Job).where(
        Job.queue == queue,
        Job.state.in_(CLAIMABLE_STATES),
        Job.available_at <= now
    ).order_by(
        Job.priority_rank.desc(),
        Job.available_at.asc(),
        Job.created_at.asc()
    ).with_for_update(skip_locked=True).limit(1)


async def _handle_cron_recurrence(session: AsyncSession, job: Job, now: datetime):
    base_time = as_utc(job.available_at) or now
    if base_time < now:
        base_time = now
    next_run = croniter(job.cron_schedule, base_time).get_next(datetime)

    next_job = Job(
        queue=job.queue,
        name=job.name,
        payload=job.payload,
        priority=job.priority,
        priority_rank=job.priority_rank,
        max_attempts=job.max_attempts,
        state=JobState.DELAYED,
        available_at=next_run,
        cron_schedule=job.cron_schedule
    )
    session.add(next_job)
    # The running occurrence no longer owns the schedule
    job.cron_schedule = None
    QUEUE_DEPTH.labels(queue=job.queue).inc()
    logger.info("Scheduled next %s occurrence at %s", job.name, next_run.isoformat())
