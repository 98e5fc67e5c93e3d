import asyncio
import json
import logging

import click

from agent_dispatch.domain.states import LegalTaskType, MarketplaceTaskType, Priority, QueueName
from agent_dispatch.settings import settings


def _configure_logging():
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


TASK_TYPES = {
    QueueName.LEGAL: [t.value for t in LegalTaskType],
    QueueName.MARKETPLACE: [t.value for t in MarketplaceTaskType],
}


def _orchestrator_for(queue: str, session_factory, llm):
    from agent_dispatch.orchestrator.legal import LegalOrchestrator
    from agent_dispatch.orchestrator.marketplace import MarketplaceOrchestrator

    if queue == QueueName.LEGAL:
        return LegalOrchestrator(session_factory, llm)
    return MarketplaceOrchestrator(session_factory, llm)


@click.group(help="agent-dispatch: legal and marketplace agent job queue")
def cli():
    _configure_logging()


# ---------- Schema ----------
@cli.command("init-db", help="Create all tables")
def init_db_cmd():
    from agent_dispatch.db.session import create_schema, engine

    asyncio.run(create_schema(engine))
    click.secho("Schema created.", fg="green")


# ---------- API ----------
@cli.command("serve", help="Run the HTTP API")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
def serve_cmd(host, port):
    import uvicorn

    uvicorn.run("agent_dispatch.main:app", host=host, port=port, log_level=settings.LOG_LEVEL.lower())


# ---------- Workers ----------
@cli.command("worker", help="Run a worker pool for one queue")
@click.option("--queue", type=click.Choice([q.value for q in QueueName]), required=True)
@click.option("--concurrency", type=int, default=None, help="Max jobs in flight (default: WORKER_CONCURRENCY)")
@click.option("--rate-limit", type=int, default=None, help="Max job starts per window (default: WORKER_RATE_LIMIT)")
@click.option("--worker-id", default=None, help="Stable worker id (default: host + random suffix)")
def worker_cmd(queue, concurrency, rate_limit, worker_id):
    from agent_dispatch.agents.llm import LLMClient
    from agent_dispatch.db.session import AsyncSessionLocal
    from agent_worker.runner import WorkerRunner

    async def main():
        llm = LLMClient.from_settings(settings)
        runner = WorkerRunner(
            queue,
            _orchestrator_for(queue, AsyncSessionLocal, llm),
            AsyncSessionLocal,
            worker_id=worker_id,
            concurrency=concurrency,
            rate_limit=rate_limit,
        )
        try:
            await runner.run()
        finally:
            await llm.close()

    click.secho(f"Starting worker on {queue}. Press Ctrl+C to stop…", fg="cyan")
    asyncio.run(main())
    click.secho("Worker stopped.", fg="yellow")


# ---------- Jobs ----------
@cli.command("enqueue", help="Add a task to a queue")
@click.argument("task_type", type=click.Choice([t for types in TASK_TYPES.values() for t in types]))
@click.option("--queue", type=click.Choice([q.value for q in QueueName]), required=True)
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default=Priority.MEDIUM.value, show_default=True)
@click.option("--payload", default="{}", help="JSON object passed to the agent")
def enqueue_cmd(task_type, queue, priority, payload):
    from agent_dispatch.db.session import AsyncSessionLocal
    from agent_dispatch.queue.job_queue import build_queue

    if task_type not in TASK_TYPES[queue]:
        raise click.BadParameter(f"{task_type!r} does not run on the {queue} queue", param_hint="TASK_TYPE")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise click.ClickException(f"--payload is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise click.ClickException("--payload must be a JSON object")

    job_queue = build_queue(queue, AsyncSessionLocal)
    if job_queue is None:
        raise click.ClickException("Queueing is disabled (QUEUE_ENABLED=false)")

    job_id = asyncio.run(job_queue.enqueue(task_type, data, priority=priority))
    if job_id is None:
        raise click.ClickException("Queue unavailable; job not enqueued")
    click.secho(f"Enqueued {task_type} -> {job_id} (priority={priority})", fg="green")


@cli.command("status", help="Show a job's state")
@click.argument("job_id")
@click.option("--queue", type=click.Choice([q.value for q in QueueName]), required=True)
def status_cmd(job_id, queue):
    from agent_dispatch.db.session import AsyncSessionLocal
    from agent_dispatch.queue.job_queue import JobQueue

    job = asyncio.run(JobQueue(queue, AsyncSessionLocal).get_job(job_id))
    if job is None:
        raise click.ClickException(f"Job {job_id} not found")
    click.echo(json.dumps(job.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    cli()
