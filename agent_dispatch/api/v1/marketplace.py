from typing import Annotated, Literal, Optional

from fastapi import APIRouter, Query

from agent_dispatch.api.deps import MarketplaceOrchestratorDep, MarketplaceQueueDep
from agent_dispatch.api.dual_mode import dispatch, job_status
from agent_dispatch.api.v1.schemas import (
    FraudCheckRequest,
    OptimizePriceRequest,
    AnalyzeReviewsRequest,
    AnalyzeReviewTextRequest,
    QAReviewRequest,
    ProcessRefundRequest,
)
from agent_dispatch.auth.security import AdminUser, CurrentUser, ensure_owner_or_admin
from agent_dispatch.domain.states import MarketplaceTaskType

router = APIRouter()

AsyncFlag = Annotated[bool, Query(alias="async")]


@router.post("/fraud-check")
async def fraud_check(
    body: FraudCheckRequest,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.FRAUD_CHECK,
        body.payload(userId=user.id), body.run_async,
    )


@router.post("/optimize-price")
async def optimize_price(
    body: OptimizePriceRequest,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.PRICE_OPTIMIZE,
        body.payload(), body.run_async,
    )


@router.post("/analyze-reviews/{product_id}")
async def analyze_reviews(
    product_id: int,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    body: Optional[AnalyzeReviewsRequest] = None,
):
    body = body or AnalyzeReviewsRequest()
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.ANALYZE_REVIEWS,
        body.payload(productId=product_id), body.run_async,
    )


@router.post("/analyze-review-text")
async def analyze_review_text(
    body: AnalyzeReviewTextRequest,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.ANALYZE_REVIEWS,
        body.payload(), body.run_async,
    )


@router.post("/qa-review/{product_id}")
async def qa_review(
    product_id: int,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    body: Optional[QAReviewRequest] = None,
):
    body = body or QAReviewRequest()
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.QA_REVIEW,
        body.payload(productId=product_id), body.run_async,
    )


@router.get("/recommendations/{user_id}")
async def recommendations(
    user_id: int,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    category: Optional[str] = None,
    limit: int = Query(10, ge=1, le=50),
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.RECOMMENDATIONS,
        {"userId": user_id, "category": category, "limit": limit}, run_async,
    )


@router.get("/recommendations/similar/{product_id}")
async def similar_products(
    product_id: int,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    limit: int = Query(6, ge=1, le=50),
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.SIMILAR_PRODUCTS,
        {"productId": product_id, "limit": limit}, run_async,
    )


@router.get("/bundle-suggestions/{product_id}")
async def bundle_suggestions(
    product_id: int,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.BUNDLE_SUGGESTIONS,
        {"productId": product_id}, run_async,
    )


@router.get("/seller-insights/{seller_id}")
async def seller_insights(
    seller_id: int,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    period: Literal["day", "week", "month", "quarter"] = "month",
    run_async: AsyncFlag = False,
):
    ensure_owner_or_admin(user, seller_id)
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.SELLER_SUPPORT,
        {"sellerId": seller_id, "period": period}, run_async,
    )


@router.get("/transaction-status/{order_id}")
async def transaction_status(
    order_id: int,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.TRANSACTION_TRACKING,
        {"orderId": order_id}, run_async,
    )


@router.post("/process-refund")
async def process_refund(
    body: ProcessRefundRequest,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.PROCESS_REFUND,
        body.payload(), body.run_async,
    )


@router.get("/qa-queue")
async def qa_queue(
    user: AdminUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(orchestrator, queue, MarketplaceTaskType.QA_QUEUE, {}, run_async)


@router.get("/transaction-health")
async def transaction_health(
    user: AdminUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(orchestrator, queue, MarketplaceTaskType.TRANSACTION_HEALTH, {}, run_async)


@router.get("/inventory-check")
async def inventory_check(
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    low_stock_threshold: int = Query(5, alias="lowStockThreshold", ge=0),
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.INVENTORY_CHECK,
        {"sellerId": user.id, "lowStockThreshold": low_stock_threshold}, run_async,
    )


@router.get("/listing-quality/{product_id}")
async def listing_quality(
    product_id: int,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.LISTING_QUALITY,
        {"productId": product_id}, run_async,
    )


@router.get("/settlement-status")
async def settlement_status(
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.SETTLEMENT_STATUS,
        {"sellerId": user.id}, run_async,
    )


@router.get("/dead-stock")
async def dead_stock(
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    threshold: Optional[int] = Query(None, ge=1),
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.DEAD_STOCK,
        {"sellerId": user.id, "thresholdDays": threshold}, run_async,
    )


@router.get("/bulk-pricing/{seller_id}")
async def bulk_pricing(
    seller_id: int,
    user: CurrentUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    ensure_owner_or_admin(user, seller_id)
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.BULK_PRICING,
        {"sellerId": seller_id}, run_async,
    )


@router.get("/seller-behavior/{seller_id}")
async def seller_behavior(
    seller_id: int,
    user: AdminUser,
    orchestrator: MarketplaceOrchestratorDep,
    queue: MarketplaceQueueDep,
    run_async: AsyncFlag = False,
):
    return await dispatch(
        orchestrator, queue, MarketplaceTaskType.SELLER_BEHAVIOR,
        {"sellerId": seller_id}, run_async,
    )


@router.get("/job-status/{job_id}")
async def get_job_status(job_id: str, user: CurrentUser, queue: MarketplaceQueueDep):
    return await job_status(queue, job_id)
