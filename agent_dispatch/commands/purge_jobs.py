from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job, JobEventLog
from agent_dispatch.domain.states import JobState
from agent_dispatch.api.v1.metrics import JOB_PURGED_TOTAL


async def purge_finished_jobs(
    session: AsyncSession,
    queue: str,
    keep_completed: int = 100,
    keep_failed: int = 50
) -> int:
    """
    Retention sweep: keeps only the newest `keep_completed` COMPLETED and
    `keep_failed` FAILED jobs of a queue. Purged ids are indistinguishable
    from ids that never existed.
    """
    removed = 0
    for state, keep in ((JobState.COMPLETED, keep_completed), (JobState.FAILED, keep_failed)):
        stale_ids = (await session.execute(
            select(Job.id)
            .where(Job.queue == queue, Job.state == state)
            .order_by(Job.finished_on.desc(), Job.created_at.desc())
            .offset(keep)
        )).scalars().all()

        if not stale_ids:
            continue

        # Bulk delete bypasses ON DELETE CASCADE on SQLite; events go explicitly
        await session.execute(delete(JobEventLog).where(JobEventLog.job_id.in_(stale_ids)))
        await session.execute(delete(Job).where(Job.id.in_(stale_ids)))
        removed += len(stale_ids)

    if removed:
        JOB_PURGED_TOTAL.labels(queue=queue).inc(removed)

    await session.flush()
    return removed
