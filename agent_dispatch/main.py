import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_dispatch.agents.llm import LLMClient
from agent_dispatch.api.v1.admin import router as admin_router
from agent_dispatch.api.v1.legal import router as legal_router
from agent_dispatch.api.v1.marketplace import router as marketplace_router
from agent_dispatch.api.v1.metrics import router as metrics_router
from agent_dispatch.auth.security import AuthError
from agent_dispatch.db.session import AsyncSessionLocal, create_schema
from agent_dispatch.domain.states import MarketplaceTaskType, QueueName
from agent_dispatch.orchestrator.legal import LegalOrchestrator
from agent_dispatch.orchestrator.marketplace import MarketplaceOrchestrator
from agent_dispatch.queue.job_queue import build_queue
from agent_dispatch.scheduler.service import SchedulerService
from agent_dispatch.settings import Settings, settings as default_settings

logger = logging.getLogger("uvicorn")


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    llm: Optional[LLMClient] = None,
    settings: Settings = default_settings,
) -> FastAPI:
    """
    Builds the API. Everything stateful (session factory, LLM client, queues,
    orchestrators) hangs off `app.state`, so tests can swap any of it.
    """
    session_factory = session_factory or AsyncSessionLocal
    llm = llm or LLMClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if settings.CREATE_SCHEMA_ON_STARTUP:
            await create_schema(session_factory.kw["bind"])

        # Durable daily maintenance: the next occurrence lives in the jobs table
        if app.state.marketplace_queue is not None:
            job_id = await app.state.marketplace_queue.ensure_recurring(
                MarketplaceTaskType.MAINTENANCE_SWEEP,
                settings.MAINTENANCE_CRON,
            )
            logger.info(f"Maintenance sweep scheduled ({settings.MAINTENANCE_CRON}), job {job_id}")

        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = SchedulerService(session_factory, settings=settings)
            await scheduler.start()

        yield

        # Shutdown
        if scheduler:
            await scheduler.stop()
        await llm.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )

    app.state.session_factory = session_factory
    app.state.llm = llm
    app.state.legal_queue = build_queue(QueueName.LEGAL, session_factory, settings)
    app.state.marketplace_queue = build_queue(QueueName.MARKETPLACE, session_factory, settings)
    app.state.legal_orchestrator = LegalOrchestrator(session_factory, llm, settings)
    app.state.marketplace_orchestrator = MarketplaceOrchestrator(session_factory, llm, settings)

    app.include_router(legal_router, prefix="/api/legal/agents", tags=["legal"])
    app.include_router(marketplace_router, prefix="/api/marketplace-agents", tags=["marketplace"])
    app.include_router(admin_router, prefix="/api/admin", tags=["admin"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Validation failed", "details": details},
        )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "queues": {
                str(QueueName.LEGAL): app.state.legal_queue is not None,
                str(QueueName.MARKETPLACE): app.state.marketplace_queue is not None,
            },
        }

    return app


app = create_app()
