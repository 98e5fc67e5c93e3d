import logging

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.api.v1.metrics import QUEUE_DEPTH, JOBS_ACTIVE
from agent_dispatch.commands.age_priorities import age_priorities
from agent_dispatch.commands.purge_jobs import purge_finished_jobs
from agent_dispatch.commands.requeue_stalled import requeue_stalled_jobs
from agent_dispatch.db.models import Job
from agent_dispatch.domain.states import JobState, QueueName, CLAIMABLE_STATES
from agent_dispatch.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)


async def run_leader_tasks(session: AsyncSession, settings: Settings = default_settings) -> dict[str, int]:
    """
    Periodic maintenance, run by one instance at a time:
    1. Requeue jobs whose worker lease expired (stalled)
    2. Age the priority of long-waiting jobs so low priority work is not starved
    3. Purge terminal jobs beyond the retention window, per queue
    """
    stalled = await requeue_stalled_jobs(session)
    if stalled:
        logger.warning(f"Requeued {stalled} stalled job(s)")

    aged = await age_priorities(session, settings.QUEUE_PRIORITY_AGING_SECONDS)
    if aged:
        logger.info(f"Aged priority of {aged} waiting job(s)")

    purged = 0
    for queue in QueueName:
        purged += await purge_finished_jobs(
            session,
            queue,
            keep_completed=settings.QUEUE_KEEP_COMPLETED,
            keep_failed=settings.QUEUE_KEEP_FAILED,
        )
    if purged:
        logger.info(f"Purged {purged} finished job(s)")

    await session.commit()
    return {"stalled": stalled, "aged": aged, "purged": purged}


async def run_metrics_tasks(session: AsyncSession) -> None:
    """
    Resets queue gauges from the table on every instance, so /metrics stays
    correct even when jobs are moved by another process.
    """
    rows = (await session.execute(
        select(Job.queue, Job.state, func.count(Job.id))
        .where(Job.state.in_((*CLAIMABLE_STATES, JobState.ACTIVE)))
        .group_by(Job.queue, Job.state)
    )).all()

    depth = {str(q): 0 for q in QueueName}
    active = {str(q): 0 for q in QueueName}
    for queue, state, count in rows:
        if state == JobState.ACTIVE:
            active[queue] = active.get(queue, 0) + count
        else:
            depth[queue] = depth.get(queue, 0) + count

    for queue, count in depth.items():
        QUEUE_DEPTH.labels(queue=queue).set(count)
    for queue, count in active.items():
        JOBS_ACTIVE.labels(queue=queue).set(count)
