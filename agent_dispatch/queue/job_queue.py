import logging
from datetime import datetime
from typing import Any, Optional

from croniter import croniter
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_dispatch.commands.enqueue_job import enqueue_job
from agent_dispatch.db.models import Job
from agent_dispatch.domain.models import JobSnapshot
from agent_dispatch.domain.states import JobState, Priority, CLAIMABLE_STATES
from agent_dispatch.settings import Settings, settings as default_settings
from agent_dispatch.utils.timeutil import isoformat, utcnow

logger = logging.getLogger(__name__)


class JobQueue:
    """
    Durable job queue backed by the `jobs` table.

    One instance per queue name. Enqueue never runs the job; a worker pool
    (agent_worker) claims it later.
    """

    def __init__(
        self,
        name: str,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings = default_settings
    ):
        self.name = name
        self.session_factory = session_factory
        self.max_attempts = settings.QUEUE_MAX_ATTEMPTS

    async def enqueue(
        self,
        task_type: str,
        payload: dict[str, Any],
        priority: Priority | str = Priority.MEDIUM,
        available_at: Optional[datetime] = None,
        cron_schedule: Optional[str] = None,
    ) -> Optional[str]:
        """
        Adds a WAITING job and returns its id.
        Returns None (and logs) when the backing database is unreachable.
        """
        try:
            async with self.session_factory() as session:
                job = await enqueue_job(
                    session,
                    queue=self.name,
                    name=task_type,
                    payload=payload,
                    priority=Priority(priority),
                    max_attempts=self.max_attempts,
                    available_at=available_at,
                    cron_schedule=cron_schedule,
                )
                await session.commit()
                logger.info("Enqueued %s job %s on %s (priority=%s)", task_type, job.id, self.name, priority)
                return job.id
        except SQLAlchemyError as e:
            logger.error("Queue %s unavailable, dropping %s job: %s", self.name, task_type, e)
            return None

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        async with self.session_factory() as session:
            job = await session.get(Job, job_id)
            if not job or job.queue != self.name:
                return None
            return snapshot(job)

    async def counts(self) -> dict[str, int]:
        async with self.session_factory() as session:
            rows = (await session.execute(
                select(Job.state, func.count(Job.id))
                .where(Job.queue == self.name)
                .group_by(Job.state)
            )).all()
        counts = {str(state): 0 for state in JobState}
        for state, count in rows:
            counts[str(state)] = count
        return counts

    async def ensure_recurring(
        self,
        task_type: str,
        cron_schedule: str,
        payload: Optional[dict[str, Any]] = None,
        priority: Priority = Priority.LOW,
    ) -> Optional[str]:
        """
        Makes sure exactly one pending occurrence of a recurring job exists.
        Safe to call on every startup: the schedule lives in the table.
        """
        async with self.session_factory() as session:
            existing = await session.scalar(
                select(Job.id).where(
                    Job.queue == self.name,
                    Job.name == task_type,
                    Job.cron_schedule == cron_schedule,
                    Job.state.in_(CLAIMABLE_STATES)
                ).limit(1)
            )
        if existing:
            return existing

        first_run = croniter(cron_schedule, utcnow()).get_next(datetime)
        return await self.enqueue(
            task_type,
            payload or {},
            priority=priority,
            available_at=first_run,
            cron_schedule=cron_schedule,
        )


def snapshot(job: Job) -> JobSnapshot:
    return JobSnapshot(
        id=job.id,
        name=job.name,
        state=str(job.state),
        progress=job.progress,
        result=job.result if job.state == JobState.COMPLETED else None,
        error=job.error if job.state != JobState.COMPLETED else None,
        processed_on=isoformat(job.processed_on),
        finished_on=isoformat(job.finished_on),
        attempts=job.attempts,
        priority=str(job.priority),
    )


def build_queue(
    name: str,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings = default_settings
) -> Optional[JobQueue]:
    """Returns None when queueing is disabled; callers treat the queue as optional."""
    if not settings.QUEUE_ENABLED:
        logger.warning("Queue %s disabled (QUEUE_ENABLED=false); background jobs are no-ops", name)
        return None
    return JobQueue(name, session_factory, settings)
