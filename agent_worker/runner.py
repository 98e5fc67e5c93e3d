import asyncio
import logging
import signal
import socket
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID, uuid4

from pyrate_limiter import Duration, Limiter, Rate
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_dispatch.commands.complete_job import complete_job
from agent_dispatch.commands.fail_job import fail_job
from agent_dispatch.commands.heartbeat import heartbeat, update_progress
from agent_dispatch.commands.lease_job import lease_job
from agent_dispatch.domain.errors import JobError, LeaseError, TaskFailedError
from agent_dispatch.domain.models import AgentTask
from agent_dispatch.domain.states import JobState
from agent_dispatch.orchestrator.base import BaseOrchestrator
from agent_dispatch.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Progress while the orchestrator is running the task
DISPATCHED_PROGRESS = 50


@dataclass
class ClaimedJob:
    id: str
    name: str
    payload: dict[str, Any]
    lease_token: UUID
    attempt: int


class WorkerRunner:
    """
    Pulls jobs from one queue and runs them through an orchestrator.

    At most `concurrency` jobs run at once, and job starts are capped by a
    rate limiter (`rate_limit` per `rate_window` seconds). `stop()` stops
    claiming; jobs already running are allowed to finish.
    """

    def __init__(
        self,
        queue_name: str,
        orchestrator: BaseOrchestrator,
        session_factory: async_sessionmaker[AsyncSession],
        worker_id: Optional[str] = None,
        concurrency: Optional[int] = None,
        rate_limit: Optional[int] = None,
        rate_window: Optional[int] = None,
        settings: Settings = default_settings,
    ):
        self.queue_name = queue_name
        self.orchestrator = orchestrator
        self.session_factory = session_factory
        self.worker_id = worker_id or f"{socket.gethostname()}-{uuid4().hex[:8]}"
        self.concurrency = concurrency or settings.WORKER_CONCURRENCY
        self.poll_interval = settings.WORKER_POLL_INTERVAL_SECONDS
        self.heartbeat_interval = settings.WORKER_HEARTBEAT_SECONDS
        self.lease_seconds = settings.DEFAULT_LEASE_TIMEOUT_SECONDS

        rate = Rate(
            rate_limit or settings.WORKER_RATE_LIMIT,
            Duration.SECOND * (rate_window or settings.WORKER_RATE_WINDOW_SECONDS),
        )
        self.limiter = Limiter(rate, raise_when_fail=False)

        self.running = False
        self._shutdown_event = asyncio.Event()
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self._in_flight: set[asyncio.Task] = set()

    async def run(self):
        self.running = True
        self._shutdown_event.clear()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                # Windows, or not on the main thread
                pass

        logger.info(
            f"Worker {self.worker_id} started on {self.queue_name} "
            f"(concurrency={self.concurrency})"
        )

        try:
            while self.running:
                await self._semaphore.acquire()
                try:
                    await self._wait_for_rate_slot()
                    claimed = await self.claim() if self.running else None
                except Exception as e:
                    self._semaphore.release()
                    logger.exception("Error claiming job for worker %s: %s", self.worker_id, e)
                    await self._idle(5.0)
                    continue

                if not claimed:
                    self._semaphore.release()
                    await self._idle(self.poll_interval)
                    continue

                task = asyncio.create_task(self._run_and_release(claimed))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
        finally:
            if self._in_flight:
                logger.info(f"Waiting for {len(self._in_flight)} in-flight job(s) to finish")
                await asyncio.gather(*self._in_flight, return_exceptions=True)
            logger.info("Worker runner stopped")

    def stop(self):
        logger.info("Shutdown signal received")
        self.running = False
        self._shutdown_event.set()

    async def _idle(self, timeout: float):
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    async def _wait_for_rate_slot(self):
        while not self.limiter.try_acquire(self.queue_name):
            await asyncio.sleep(0.05)

    async def _run_and_release(self, claimed: ClaimedJob):
        try:
            await self.process_job(claimed)
        except Exception as e:
            logger.exception("Unhandled error processing job %s: %s", claimed.id, e)
        finally:
            self._semaphore.release()

    async def claim(self) -> Optional[ClaimedJob]:
        async with self.session_factory() as session:
            leased = await lease_job(session, self.queue_name, self.worker_id, self.lease_seconds)
            if not leased:
                return None
            job, lease = leased
            claimed = ClaimedJob(
                id=job.id,
                name=job.name,
                payload=dict(job.payload or {}),
                lease_token=lease.lease_token,
                attempt=job.attempts + 1,
            )
            await session.commit()

        logger.info(f"Leased job {claimed.id} ({claimed.name}, attempt {claimed.attempt})")
        return claimed

    async def run_once(self) -> Optional[str]:
        """Claims and processes a single job. Returns its id, or None if nothing was claimable."""
        claimed = await self.claim()
        if not claimed:
            return None
        await self.process_job(claimed)
        return claimed.id

    async def drain(self, max_jobs: int = 1000) -> int:
        """Processes claimable jobs one by one until none are left."""
        processed = 0
        while processed < max_jobs and await self.run_once():
            processed += 1
        return processed

    async def process_job(self, claimed: ClaimedJob):
        heartbeat_task = asyncio.create_task(self._heartbeat_loop(claimed))

        try:
            async with self.session_factory() as session:
                await update_progress(session, claimed.id, DISPATCHED_PROGRESS, claimed.lease_token)
                await session.commit()

            result = await self.orchestrator.execute(AgentTask(type=claimed.name, data=claimed.payload))
            # A business failure is handled exactly like a thrown error
            if not result.success:
                raise TaskFailedError(result.error or "Task failed", retryable=result.retryable)

            async with self.session_factory() as session:
                await complete_job(session, claimed.id, result.data, claimed.lease_token)
                await session.commit()
            logger.info(f"Job {claimed.id} ({claimed.name}) completed")

        except TaskFailedError as e:
            logger.error(f"Job {claimed.id} ({claimed.name}) failed: {e}")
            try:
                async with self.session_factory() as session:
                    job = await fail_job(session, claimed.id, str(e), claimed.lease_token, retryable=e.retryable)
                    await session.commit()
                if job.state == JobState.FAILED:
                    logger.error(f"Job {claimed.id} failed permanently after {job.attempts} attempt(s)")
            except JobError as report_error:
                logger.error(f"Failed to record failure for job {claimed.id}: {report_error}")

        except JobError as e:
            # Lease lost (stalled and requeued) or job gone; the result is dropped
            logger.error(f"Job {claimed.id} could not be completed: {e}")

        finally:
            heartbeat_task.cancel()
            try:
                await heartbeat_task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                # The job outcome is already recorded
                logger.error(f"Heartbeat task for {claimed.id} ended with an error: {e}")

    async def _heartbeat_loop(self, claimed: ClaimedJob):
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                async with self.session_factory() as session:
                    await heartbeat(session, claimed.id, claimed.lease_token, self.lease_seconds)
                    await session.commit()
                logger.debug(f"Heartbeat sent for {claimed.id}")
            except LeaseError as e:
                logger.warning(f"Heartbeat failed for {claimed.id}: {e}")
                break
            except SQLAlchemyError as e:
                # Transient database error; the lease is still ours until it expires
                logger.warning(f"Heartbeat for {claimed.id} not recorded, retrying: {e}")
