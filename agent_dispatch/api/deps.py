from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.orchestrator.legal import LegalOrchestrator
from agent_dispatch.orchestrator.marketplace import MarketplaceOrchestrator
from agent_dispatch.queue.job_queue import JobQueue


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    async with request.app.state.session_factory() as session:
        yield session


def get_legal_orchestrator(request: Request) -> LegalOrchestrator:
    return request.app.state.legal_orchestrator


def get_marketplace_orchestrator(request: Request) -> MarketplaceOrchestrator:
    return request.app.state.marketplace_orchestrator


def get_legal_queue(request: Request) -> Optional[JobQueue]:
    return request.app.state.legal_queue


def get_marketplace_queue(request: Request) -> Optional[JobQueue]:
    return request.app.state.marketplace_queue


# Dependency for DB session
DbSession = Annotated[AsyncSession, Depends(get_db_session)]

LegalOrchestratorDep = Annotated[LegalOrchestrator, Depends(get_legal_orchestrator)]
MarketplaceOrchestratorDep = Annotated[MarketplaceOrchestrator, Depends(get_marketplace_orchestrator)]

# None when queueing is disabled
LegalQueueDep = Annotated[Optional[JobQueue], Depends(get_legal_queue)]
MarketplaceQueueDep = Annotated[Optional[JobQueue], Depends(get_marketplace_queue)]
