import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_dispatch.api.v1.metrics import LEADER_STATUS
from agent_dispatch.scheduler.ticker import run_leader_tasks, run_metrics_tasks
from agent_dispatch.settings import Settings, settings as default_settings
from agent_dispatch.utils.locking import try_advisory_lock

logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Background maintenance loop. Every instance refreshes gauges; only the
    holder of the advisory lock requeues stalled jobs and purges old ones.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval: Optional[float] = None,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.interval = interval if interval is not None else settings.SCHEDULER_INTERVAL_SECONDS
        self.settings = settings
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._is_leader = False

    @property
    def is_leader(self) -> bool:
        return self._is_leader

    async def start(self):
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Scheduler service started.")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        LEADER_STATUS.set(0)
        logger.info("Scheduler service stopped.")

    async def tick(self, session: AsyncSession) -> None:
        # Session-level lock: re-acquiring on the same connection is a no-op
        is_leader = await try_advisory_lock(session)

        if is_leader:
            if not self._is_leader:
                logger.info("Acquired leadership. Running maintenance.")
                self._is_leader = True
            LEADER_STATUS.set(1)
            await run_leader_tasks(session, self.settings)
        else:
            if self._is_leader:
                logger.info("Lost leadership. Maintenance paused.")
                self._is_leader = False
            LEADER_STATUS.set(0)

        await run_metrics_tasks(session)

    async def _loop(self):
        session = None
        try:
            while self._running:
                try:
                    if not session:
                        session = self.session_factory()
                    await self.tick(session)
                except Exception as e:
                    logger.error(f"Error in scheduler ticker: {e}", exc_info=True)
                    self._is_leader = False
                    LEADER_STATUS.set(0)

                    # Drop the connection (and any lock) and reconnect next tick
                    if session:
                        await session.close()
                        session = None

                await asyncio.sleep(self.interval)
        finally:
            if session:
                await session.close()
