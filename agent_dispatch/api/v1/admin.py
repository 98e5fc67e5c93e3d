from typing import Optional

from fastapi import APIRouter

from agent_dispatch.api.deps import DbSession
from agent_dispatch.api.v1.schemas import PurgeRequest
from agent_dispatch.auth.security import AdminUser
from agent_dispatch.commands.purge_jobs import purge_finished_jobs
from agent_dispatch.commands.requeue_stalled import requeue_stalled_jobs
from agent_dispatch.domain.states import QueueName
from agent_dispatch.settings import settings

router = APIRouter()


@router.post("/requeue-stalled")
async def trigger_requeue_stalled(session: DbSession, user: AdminUser):
    count = await requeue_stalled_jobs(session)
    await session.commit()
    return {"requeued_count": count}


@router.post("/purge")
async def trigger_purge(session: DbSession, user: AdminUser, body: Optional[PurgeRequest] = None):
    body = body or PurgeRequest()
    removed = {}
    for queue in QueueName:
        removed[str(queue)] = await purge_finished_jobs(
            session,
            queue,
            keep_completed=body.keep_completed if body.keep_completed is not None else settings.QUEUE_KEEP_COMPLETED,
            keep_failed=body.keep_failed if body.keep_failed is not None else settings.QUEUE_KEEP_FAILED,
        )
    await session.commit()
    return {"purged": removed}
