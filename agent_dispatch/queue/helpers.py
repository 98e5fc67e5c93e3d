"""
Fire-and-forget enqueue helpers used by other parts of the platform.

Each takes the (optional) queue handle; with queueing disabled they return
None without raising, so callers never need to branch on configuration.
"""
from typing import Any, Optional

from agent_dispatch.domain.states import LegalTaskType, MarketplaceTaskType, Priority
from agent_dispatch.queue.job_queue import JobQueue

# Default priority per task type when enqueued in the background
TASK_PRIORITY: dict[str, Priority] = {
    MarketplaceTaskType.FRAUD_CHECK: Priority.CRITICAL,
    MarketplaceTaskType.PROCESS_REFUND: Priority.HIGH,
    MarketplaceTaskType.TRANSACTION_TRACKING: Priority.HIGH,
    MarketplaceTaskType.QA_REVIEW: Priority.HIGH,
    MarketplaceTaskType.INVENTORY_CHECK: Priority.MEDIUM,
    MarketplaceTaskType.ANALYZE_REVIEWS: Priority.MEDIUM,
    MarketplaceTaskType.PRICE_OPTIMIZE: Priority.LOW,
    MarketplaceTaskType.RECOMMENDATIONS: Priority.LOW,
    MarketplaceTaskType.SELLER_SUPPORT: Priority.LOW,
    MarketplaceTaskType.MAINTENANCE_SWEEP: Priority.LOW,
}


def priority_for(task_type: str) -> Priority:
    return TASK_PRIORITY.get(task_type, Priority.MEDIUM)


async def _enqueue(queue: Optional[JobQueue], task_type: str, data: dict[str, Any]) -> Optional[str]:
    if queue is None:
        return None
    return await queue.enqueue(task_type, data, priority=priority_for(task_type))


async def queue_fraud_check(queue: Optional[JobQueue], data: dict[str, Any]) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.FRAUD_CHECK, data)


async def queue_price_optimization(queue: Optional[JobQueue], product_id: int, **options: Any) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.PRICE_OPTIMIZE, {"productId": product_id, **options})


async def queue_recommendations(queue: Optional[JobQueue], user_id: int, **options: Any) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.RECOMMENDATIONS, {"userId": user_id, **options})


async def queue_review_analysis(queue: Optional[JobQueue], product_id: int) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.ANALYZE_REVIEWS, {"productId": product_id})


async def queue_inventory_check(queue: Optional[JobQueue], seller_id: int) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.INVENTORY_CHECK, {"sellerId": seller_id})


async def queue_seller_support(queue: Optional[JobQueue], seller_id: int, period: str = "month") -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.SELLER_SUPPORT, {"sellerId": seller_id, "period": period})


async def queue_transaction_tracking(queue: Optional[JobQueue], order_id: int) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.TRANSACTION_TRACKING, {"orderId": order_id})


async def queue_qa_review(queue: Optional[JobQueue], product_id: int, auto_approve: bool = False) -> Optional[str]:
    return await _enqueue(queue, MarketplaceTaskType.QA_REVIEW, {"productId": product_id, "autoApprove": auto_approve})


async def queue_document_review(queue: Optional[JobQueue], data: dict[str, Any]) -> Optional[str]:
    return await _enqueue(queue, LegalTaskType.REVIEW_DOCUMENT, data)
