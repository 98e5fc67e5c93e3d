from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from agent_dispatch.commands.age_priorities import age_priorities
from agent_dispatch.commands.complete_job import complete_job
from agent_dispatch.commands.fail_job import fail_job
from agent_dispatch.commands.heartbeat import heartbeat
from agent_dispatch.commands.lease_job import lease_job, CLAIM_PROGRESS
from agent_dispatch.commands.purge_jobs import purge_finished_jobs
from agent_dispatch.commands.requeue_stalled import requeue_stalled_jobs
from agent_dispatch.db.models import Job, JobLease, JobEventLog
from agent_dispatch.domain.states import JobState, JobEvent, Priority, QueueName
from agent_dispatch.queue.job_queue import JobQueue, build_queue
from agent_dispatch.settings import Settings
from agent_dispatch.utils.timeutil import as_utc

QUEUE = QueueName.MARKETPLACE


async def _lease(session_factory, worker_id="w1"):
    async with session_factory() as session:
        leased = await lease_job(session, QUEUE, worker_id)
        await session.commit()
        return leased


async def _make_claimable(session_factory, job_id):
    async with session_factory() as session:
        await session.execute(
            update(Job).where(Job.id == job_id).values(available_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        await session.commit()


async def test_enqueue_creates_waiting_job(marketplace_queue):
    job_id = await marketplace_queue.enqueue("transaction-health", {}, priority=Priority.HIGH)

    job = await marketplace_queue.get_job(job_id)
    assert job.state == "waiting"
    assert job.progress == 0
    assert job.priority == "high"
    assert job.result is None and job.error is None


async def test_enqueue_in_future_is_delayed(marketplace_queue):
    later = datetime.now(timezone.utc) + timedelta(hours=1)
    job_id = await marketplace_queue.enqueue("transaction-health", {}, available_at=later)

    assert (await marketplace_queue.get_job(job_id)).state == "delayed"


async def test_get_job_is_scoped_to_its_queue(marketplace_queue, legal_queue):
    job_id = await marketplace_queue.enqueue("transaction-health", {})

    assert await legal_queue.get_job(job_id) is None
    assert await marketplace_queue.get_job("no-such-id") is None


async def test_lease_claims_by_priority_then_fifo(marketplace_queue, session_factory):
    low = await marketplace_queue.enqueue("transaction-health", {"n": 1}, priority=Priority.LOW)
    first_high = await marketplace_queue.enqueue("transaction-health", {"n": 2}, priority=Priority.HIGH)
    second_high = await marketplace_queue.enqueue("transaction-health", {"n": 3}, priority=Priority.HIGH)

    order = []
    for _ in range(3):
        job, _lease_row = await _lease(session_factory)
        order.append(job.id)

    assert order == [first_high, second_high, low]
    assert await _lease(session_factory) is None


async def test_lease_sets_active_progress_and_lease(marketplace_queue, session_factory):
    job_id = await marketplace_queue.enqueue("transaction-health", {})

    job, lease = await _lease(session_factory, worker_id="worker-a")

    assert job.id == job_id
    assert job.state == JobState.ACTIVE
    assert job.progress == CLAIM_PROGRESS
    assert job.processed_on is not None
    assert lease.worker_id == "worker-a"


async def test_complete_stores_result(marketplace_queue, session_factory):
    job_id = await marketplace_queue.enqueue("transaction-health", {})
    _, lease = await _lease(session_factory)

    async with session_factory() as session:
        await complete_job(session, job_id, {"healthScore": 100}, lease.lease_token)
        await session.commit()

    snap = await marketplace_queue.get_job(job_id)
    assert snap.state == "completed"
    assert snap.progress == 100
    assert snap.result == {"healthScore": 100}
    assert snap.error is None
    assert snap.finished_on is not None

    async with session_factory() as session:
        assert await session.get(JobLease, job_id) is None


async def test_failures_back_off_exponentially_then_fail_terminally(marketplace_queue, session_factory):
    job_id = await marketplace_queue.enqueue("fraud-check", {})

    for attempt in (1, 2):
        _, lease = await _lease(session_factory)
        async with session_factory() as session:
            job = await fail_job(session, job_id, "boom", lease.lease_token)
            await session.commit()
        assert job.state == JobState.DELAYED
        assert job.attempts == attempt
        assert as_utc(job.available_at) > datetime.now(timezone.utc)
        await _make_claimable(session_factory, job_id)

    _, lease = await _lease(session_factory)
    async with session_factory() as session:
        job = await fail_job(session, job_id, "boom", lease.lease_token)
        await session.commit()

    assert job.state == JobState.FAILED
    assert job.attempts == 3

    async with session_factory() as session:
        retries = (await session.execute(
            select(JobEventLog)
            .where(JobEventLog.job_id == job_id, JobEventLog.event_type == JobEvent.RETRIED)
            .order_by(JobEventLog.id)
        )).scalars().all()
    delays = [e.meta["delay_seconds"] for e in retries]
    assert len(delays) == 2
    assert delays[1] >= 2 * delays[0]

    snap = await marketplace_queue.get_job(job_id)
    assert snap.state == "failed"
    assert snap.error == "boom"
    assert snap.result is None


async def test_non_retryable_failure_is_terminal_on_first_attempt(marketplace_queue, session_factory):
    job_id = await marketplace_queue.enqueue("no-such-task", {})
    _, lease = await _lease(session_factory)

    async with session_factory() as session:
        job = await fail_job(session, job_id, "Unknown task type", lease.lease_token, retryable=False)
        await session.commit()

    assert job.state == JobState.FAILED
    assert job.attempts == 1


async def test_heartbeat_extends_lease(marketplace_queue, session_factory):
    await marketplace_queue.enqueue("transaction-health", {})
    job, lease = await _lease(session_factory)
    before = as_utc(lease.expires_at)

    async with session_factory() as session:
        new_expiry = await heartbeat(session, job.id, lease.lease_token, extend_seconds=600)
        await session.commit()

    assert new_expiry > before


async def test_expired_lease_is_requeued_and_counts_an_attempt(marketplace_queue, session_factory):
    job_id = await marketplace_queue.enqueue("transaction-health", {})
    await _lease(session_factory)

    async with session_factory() as session:
        await session.execute(
            update(JobLease).where(JobLease.job_id == job_id)
            .values(expires_at=datetime.now(timezone.utc) - timedelta(seconds=5))
        )
        await session.commit()

    async with session_factory() as session:
        assert await requeue_stalled_jobs(session) == 1
        await session.commit()

    snap = await marketplace_queue.get_job(job_id)
    assert snap.state == "waiting"
    assert snap.attempts == 1


async def test_claiming_recurring_job_schedules_next_occurrence(marketplace_queue, session_factory):
    await marketplace_queue.ensure_recurring("maintenance-sweep", "0 3 * * *")
    async with session_factory() as session:
        job = (await session.execute(select(Job).where(Job.name == "maintenance-sweep"))).scalar_one()
    await _make_claimable(session_factory, job.id)

    claimed, _ = await _lease(session_factory)
    assert claimed.id == job.id

    async with session_factory() as session:
        pending = (await session.execute(
            select(Job).where(Job.name == "maintenance-sweep", Job.state == JobState.DELAYED)
        )).scalars().all()
    assert len(pending) == 1
    assert pending[0].cron_schedule == "0 3 * * *"
    assert as_utc(pending[0].available_at) > datetime.now(timezone.utc)


async def test_ensure_recurring_is_idempotent(marketplace_queue, session_factory):
    first = await marketplace_queue.ensure_recurring("maintenance-sweep", "0 3 * * *")
    second = await marketplace_queue.ensure_recurring("maintenance-sweep", "0 3 * * *")

    assert first == second
    counts = await marketplace_queue.counts()
    assert counts["delayed"] == 1


async def test_purge_keeps_newest_terminal_jobs(marketplace_queue, session_factory):
    ids = [await marketplace_queue.enqueue("transaction-health", {"n": n}) for n in range(4)]
    for _ in ids:
        job, lease = await _lease(session_factory)
        async with session_factory() as session:
            await complete_job(session, job.id, {}, lease.lease_token)
            await session.commit()

    async with session_factory() as session:
        removed = await purge_finished_jobs(session, QUEUE, keep_completed=2, keep_failed=0)
        await session.commit()

    assert removed == 2
    counts = await marketplace_queue.counts()
    assert counts["completed"] == 2

    async with session_factory() as session:
        event_job_ids = set((await session.execute(select(JobEventLog.job_id))).scalars().all())
    survivors = {i for i in ids if await marketplace_queue.get_job(i) is not None}
    assert len(survivors) == 2
    assert event_job_ids == survivors


def test_build_queue_returns_none_when_disabled(session_factory):
    assert build_queue(QUEUE, session_factory, Settings(QUEUE_ENABLED=False)) is None
    assert isinstance(build_queue(QUEUE, session_factory, Settings(QUEUE_ENABLED=True)), JobQueue)


async def _backdate(session_factory, job_id, seconds):
    async with session_factory() as session:
        await session.execute(
            update(Job).where(Job.id == job_id)
            .values(created_at=datetime.now(timezone.utc) - timedelta(seconds=seconds))
        )
        await session.commit()


async def test_aging_lifts_long_waiting_jobs_one_rank_per_step(marketplace_queue, session_factory):
    stale_low = await marketplace_queue.enqueue("transaction-health", {}, priority=Priority.LOW)
    recent_medium = await marketplace_queue.enqueue("transaction-health", {}, priority=Priority.MEDIUM)
    fresh_low = await marketplace_queue.enqueue("transaction-health", {}, priority=Priority.LOW)
    await _backdate(session_factory, stale_low, 600)
    await _backdate(session_factory, recent_medium, 90)

    async with session_factory() as session:
        bumped = await age_priorities(session, step_seconds=60)
        await session.commit()

    async with session_factory() as session:
        jobs = {j.id: j for j in (await session.execute(select(Job))).scalars().all()}
    assert bumped == 3
    assert jobs[stale_low].priority_rank == Priority.CRITICAL.rank
    assert jobs[stale_low].priority == Priority.LOW
    assert jobs[recent_medium].priority_rank == Priority.MEDIUM.rank
    assert jobs[fresh_low].priority_rank == Priority.LOW.rank


async def test_aging_disabled_with_zero_step(marketplace_queue, session_factory):
    job_id = await marketplace_queue.enqueue("transaction-health", {}, priority=Priority.LOW)
    await _backdate(session_factory, job_id, 3600)

    async with session_factory() as session:
        assert await age_priorities(session, step_seconds=0) == 0
