from datetime import timedelta

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Job
from agent_dispatch.domain.states import Priority, CLAIMABLE_STATES
from agent_dispatch.utils.timeutil import utcnow

MAX_RANK = Priority.CRITICAL.rank


async def age_priorities(session: AsyncSession, step_seconds: int) -> int:
    """
    Priority aging: a claimable job climbs one rank for every `step_seconds`
    it has been waiting, so a job at rank r is bumped once it is older than
    (r + 1) * step_seconds. Ranks are capped at critical.

    Only `priority_rank` moves; `priority` keeps the value it was enqueued
    with. Returns the number of rank bumps applied.
    """
    if step_seconds <= 0:
        return 0

    now = utcnow()
    bumped = 0
    # Lowest rank first, so a long-waiting job can catch up in a single sweep
    for rank in range(0, MAX_RANK):
        cutoff = now - timedelta(seconds=step_seconds * (rank + 1))
        result = await session.execute(
            update(Job)
            .where(
                Job.state.in_(CLAIMABLE_STATES),
                Job.priority_rank == rank,
                Job.created_at < cutoff,
            )
            .values(priority_rank=rank + 1)
            .execution_options(synchronize_session=False)
        )
        bumped += result.rowcount or 0

    await session.flush()
    return bumped
