from datetime import datetime
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent, Priority
from agent_dispatch.api.v1.metrics import QUEUE_DEPTH, JOB_ENQUEUED_TOTAL
from agent_dispatch.utils.timeutil import utcnow


async def enqueue_job(
    session: AsyncSession,
    queue: str,
    name: str,
    payload: dict[str, Any],
    priority: Priority = Priority.MEDIUM,
    max_attempts: int = 3,
    available_at: Optional[datetime] = None,
    cron_schedule: Optional[str] = None,
) -> Job:
    """
    Appends a job to `queue`. The job is WAITING when it is claimable now,
    DELAYED when `available_at` lies in the future.
    Never runs the job; the caller commits.
    """
    now = utcnow()
    priority = Priority(priority)
    state = JobState.DELAYED if available_at and available_at > now else JobState.WAITING

    job = Job(
        queue=queue,
        name=name,
        payload=payload,
        priority=priority,
        priority_rank=priority.rank,
        state=state,
        progress=0,
        max_attempts=max_attempts,
        available_at=available_at or now,
        cron_schedule=cron_schedule,
        created_at=now,
        updated_at=now,
    )
    session.add(job)
    await session.flush()

    session.add(JobEventLog(
        job_id=job.id,
        event_type=JobEvent.CREATED,
        timestamp=now,
        meta={"priority": str(priority), "state": str(state)}
    ))

    QUEUE_DEPTH.labels(queue=queue).inc()
    JOB_ENQUEUED_TOTAL.labels(queue=queue, priority=str(priority)).inc()

    await session.flush()
    return job
