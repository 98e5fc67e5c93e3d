from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobLease, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent
from agent_dispatch.api.v1.metrics import JOB_STALLED_TOTAL, JOBS_ACTIVE, QUEUE_DEPTH
from agent_dispatch.utils.timeutil import utcnow


async def requeue_stalled_jobs(session: AsyncSession, limit: int = 100, queue: Optional[str] = None) -> int:
    """
    Finds expired leases, removes them, and returns their jobs to the queue.
    A stall counts as a failed attempt, so a job that keeps crashing its
    worker still ends up FAILED once its attempt budget is spent.
    Returns number of jobs recovered.
    """
    now = utcnow()

    stmt = select(JobLease).where(
        JobLease.expires_at < now
    ).limit(limit).with_for_update(skip_locked=True)

    expired_leases = (await session.execute(stmt)).scalars().all()

    count = 0
    for lease in expired_leases:
        job = (await session.execute(
            select(Job).where(Job.id == lease.job_id).with_for_update()
        )).scalar_one()

        if queue and job.queue != queue:
            continue
        count += 1

        job.attempts += 1
        job.error = "Job stalled: worker lease expired"
        job.updated_at = now

        if job.attempts >= job.max_attempts:
            job.state = JobState.FAILED
            job.finished_on = now
            event_type = JobEvent.FAILED
        else:
            job.state = JobState.WAITING
            job.available_at = now
            job.progress = 0
            event_type = JobEvent.STALLED
            QUEUE_DEPTH.labels(queue=job.queue).inc()

        JOBS_ACTIVE.labels(queue=job.queue).dec()
        JOB_STALLED_TOTAL.labels(queue=job.queue).inc()

        await session.delete(lease)

        session.add(JobEventLog(
            job_id=job.id,
            event_type=event_type,
            timestamp=now,
            meta={"reason": "lease_expired", "worker_id": lease.worker_id}
        ))

    await session.flush()
    return count
