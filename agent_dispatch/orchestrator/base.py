import logging
import time
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_dispatch.agents.llm import LLMClient
from agent_dispatch.api.v1.metrics import TASK_DISPATCH_TOTAL, TASK_DISPATCH_DURATION
from agent_dispatch.domain.errors import AgentError, UnknownTaskTypeError
from agent_dispatch.domain.models import AgentTask, TaskResult
from agent_dispatch.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


def require(data: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if data.get(k) in (None, "")]
    if missing:
        raise AgentError(f"Missing required field(s): {', '.join(missing)}")


class BaseOrchestrator:
    """
    Routes an AgentTask to the agent service registered for its type.

    `execute` never raises: every outcome, including an unknown type or an
    agent exception, comes back as a TaskResult. Both the HTTP sync path and
    the worker call it, so the two execution modes share one code path.
    """

    domain: str = "base"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        llm: Optional[LLMClient] = None,
        settings: Settings = default_settings,
    ):
        self.session_factory = session_factory
        self.llm = llm or LLMClient.from_settings(settings)
        self.settings = settings
        self._handlers: dict[str, Handler] = self.dispatch_table()

    def dispatch_table(self) -> dict[str, Handler]:
        raise NotImplementedError

    def supports(self, task_type: str) -> bool:
        return task_type in self._handlers

    @property
    def task_types(self) -> list[str]:
        return sorted(self._handlers)

    async def call(self, fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Runs one agent call in its own session, so calls can be gathered concurrently."""
        async with self.session_factory() as session:
            return await fn(session, *args, **kwargs)

    async def execute(self, task: AgentTask) -> TaskResult:
        handler = self._handlers.get(task.type)
        if handler is None:
            error = UnknownTaskTypeError(task.type, self.domain)
            logger.error(f"[{self.domain}] {error}")
            TASK_DISPATCH_TOTAL.labels(domain=self.domain, type="unknown", outcome="rejected").inc()
            return TaskResult.fail(str(error), retryable=False)

        start = time.perf_counter()
        try:
            result = TaskResult.ok(await handler(task.data))
        except AgentError as e:
            result = TaskResult.fail(str(e))
        except Exception as e:
            logger.error(f"[{self.domain}] {task.type} raised: {e}", exc_info=True)
            result = TaskResult.fail(str(e) or e.__class__.__name__)
        duration = time.perf_counter() - start

        outcome = "success" if result.success else "failure"
        TASK_DISPATCH_TOTAL.labels(domain=self.domain, type=task.type, outcome=outcome).inc()
        TASK_DISPATCH_DURATION.labels(domain=self.domain, type=task.type).observe(duration)
        logger.info(
            "[%s] dispatched type=%s duration_ms=%d outcome=%s%s",
            self.domain, task.type, duration * 1000, outcome,
            "" if result.success else f" error={result.error}",
        )
        return result
