"""
The one place where a route chooses between running a task in-request and
handing it to the queue.
"""
import logging
from typing import Any, Callable, Optional

from fastapi.responses import JSONResponse

from agent_dispatch.domain.models import AgentTask
from agent_dispatch.orchestrator.base import BaseOrchestrator
from agent_dispatch.queue.helpers import priority_for
from agent_dispatch.queue.job_queue import JobQueue

logger = logging.getLogger(__name__)

QUEUE_UNAVAILABLE = "Background processing is unavailable"


def error_response(status_code: int, error: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def envelope(field: str) -> Callable[[Any], dict[str, Any]]:
    """`{success: true, <field>: data}`"""
    return lambda data: {"success": True, field: data}


def merged(data: dict[str, Any]) -> dict[str, Any]:
    return {"success": True, **data}


def raw(data: Any) -> Any:
    return data


async def dispatch(
    orchestrator: BaseOrchestrator,
    queue: Optional[JobQueue],
    task_type: str,
    payload: dict[str, Any],
    run_async: bool,
    render: Callable[[Any], Any] = raw,
) -> Any:
    """
    async -> enqueue and return `{success, jobId, message}` (503 if the queue is unavailable).
    sync  -> run the orchestrator now; success is passed through `render`, failure is a 500.
    """
    if run_async:
        if queue is None:
            return error_response(503, QUEUE_UNAVAILABLE)
        job_id = await queue.enqueue(task_type, payload, priority=priority_for(task_type))
        if job_id is None:
            return error_response(503, QUEUE_UNAVAILABLE)
        return {"success": True, "jobId": job_id, "message": f"{task_type} queued for processing"}

    result = await orchestrator.execute(AgentTask(type=task_type, data=payload))
    if not result.success:
        return error_response(500, result.error)
    return render(result.data)


async def job_status(queue: Optional[JobQueue], job_id: str) -> Any:
    if queue is None:
        return error_response(503, QUEUE_UNAVAILABLE)
    job = await queue.get_job(job_id)
    # Purged and never-existing ids look the same
    if job is None:
        return error_response(404, "Job not found")
    return {"success": True, "job": job.to_dict()}
