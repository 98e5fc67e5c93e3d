from fastapi import APIRouter, Query

from agent_dispatch.api.deps import LegalOrchestratorDep, LegalQueueDep
from agent_dispatch.api.dual_mode import dispatch, envelope, merged, job_status
from agent_dispatch.api.v1.schemas import (
    ReviewDocumentRequest,
    AssistContractRequest,
    CheckComplianceRequest,
    CompareDocumentsRequest,
    SuggestClausesRequest,
    AutoFillRequest,
    NegotiateRequest,
    OptimizeWorkflowRequest,
)
from agent_dispatch.auth.security import CurrentUser
from agent_dispatch.domain.states import LegalTaskType

router = APIRouter()


@router.post("/review-document")
async def review_document(
    body: ReviewDocumentRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.REVIEW_DOCUMENT,
        body.payload(userId=user.id), body.run_async, envelope("review"),
    )


@router.post("/assist-contract")
async def assist_contract(
    body: AssistContractRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.ASSIST_CONTRACT,
        body.payload(userId=user.id), body.run_async, envelope("assistance"),
    )


@router.post("/check-compliance")
async def check_compliance(
    body: CheckComplianceRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.CHECK_COMPLIANCE,
        body.payload(userId=user.id), body.run_async, envelope("compliance"),
    )


@router.post("/compare-documents")
async def compare_documents(
    body: CompareDocumentsRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.COMPARE_TEMPLATES,
        body.payload(), body.run_async, envelope("comparison"),
    )


@router.post("/suggest-clauses")
async def suggest_clauses(
    body: SuggestClausesRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.SUGGEST_CLAUSES,
        body.payload(), body.run_async, envelope("suggestions"),
    )


@router.post("/auto-fill")
async def auto_fill(
    body: AutoFillRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.AUTO_FILL,
        body.payload(userId=user.id), body.run_async, envelope("result"),
    )


@router.post("/negotiate")
async def negotiate(
    body: NegotiateRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.NEGOTIATE,
        body.payload(), body.run_async, envelope("advice"),
    )


@router.post("/optimize-workflow")
async def optimize_workflow(
    body: OptimizeWorkflowRequest,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.OPTIMIZE_WORKFLOW,
        body.payload(), body.run_async, envelope("optimization"),
    )


@router.get("/template-quality/{template_id}")
async def template_quality(
    template_id: int,
    user: CurrentUser,
    orchestrator: LegalOrchestratorDep,
    queue: LegalQueueDep,
    run_async: bool = Query(False, alias="async"),
):
    return await dispatch(
        orchestrator, queue, LegalTaskType.SCORE_TEMPLATE,
        {"templateId": template_id, "userId": user.id}, run_async, merged,
    )


@router.get("/job-status/{job_id}")
async def get_job_status(job_id: str, user: CurrentUser, queue: LegalQueueDep):
    return await job_status(queue, job_id)
