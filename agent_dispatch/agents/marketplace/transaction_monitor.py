import logging
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Product, Purchase, FraudCheck
from agent_dispatch.domain.errors import AgentError, NotFoundError
from agent_dispatch.utils.timeutil import utcnow, as_utc

logger = logging.getLogger(__name__)

AUTO_REFUND_WINDOW_DAYS = 14
HEALTH_WINDOW = timedelta(days=30)
SETTLEMENT_DELAY_DAYS = 7
PLATFORM_FEE_RATE = 0.05

# status -> expected days until delivered
_DELIVERY_DAYS = {"pending": 5, "processing": 3, "shipped": 2, "completed": 0, "delivered": 0}


async def _get_purchase(session: AsyncSession, purchase_id: int) -> Purchase:
    purchase = await session.get(Purchase, purchase_id)
    if not purchase:
        raise NotFoundError(f"Purchase {purchase_id} not found")
    return purchase


async def order_status(session: AsyncSession, purchase_id: int) -> dict[str, Any]:
    purchase = await _get_purchase(session, purchase_id)
    return {
        "orderId": purchase.id,
        "status": purchase.status,
        "refundStatus": purchase.refund_status,
        "amount": purchase.amount,
        "purchasedAt": as_utc(purchase.created_at).isoformat(),
        "daysSincePurchase": (utcnow() - as_utc(purchase.created_at)).days,
    }


async def predict_delivery(session: AsyncSession, purchase_id: int) -> dict[str, Any]:
    purchase = await _get_purchase(session, purchase_id)
    days = _DELIVERY_DAYS.get(purchase.status, 5)
    eta = as_utc(purchase.created_at) + timedelta(days=days)
    return {
        "orderId": purchase.id,
        "estimatedDelivery": eta.isoformat(),
        "late": days > 0 and eta < utcnow(),
        "confidence": "high" if days == 0 else "medium",
    }


async def chargeback_risk(session: AsyncSession, purchase_id: int) -> dict[str, Any]:
    purchase = await _get_purchase(session, purchase_id)

    factors = []
    score = 0
    if purchase.amount >= 500:
        factors.append("high_value")
        score += 25
    if purchase.refund_status == "requested":
        factors.append("refund_requested")
        score += 30

    latest_check = await session.scalar(
        select(FraudCheck)
        .where(FraudCheck.user_id == purchase.buyer_id, FraudCheck.product_id == purchase.product_id)
        .order_by(FraudCheck.id.desc())
        .limit(1)
    )
    if latest_check and latest_check.decision != "approve":
        factors.append("fraud_flagged")
        score += 35

    score = min(100, score)
    level = "high" if score >= 60 else "medium" if score >= 30 else "low"
    return {"orderId": purchase.id, "riskLevel": level, "riskScore": score, "factors": factors}


async def process_refund(
    session: AsyncSession,
    purchase_id: int,
    reason: str,
    amount: Optional[float] = None,
    auto_approved: bool = False,
) -> dict[str, Any]:
    purchase = await _get_purchase(session, purchase_id)

    if purchase.refund_status == "refunded":
        raise AgentError(f"Purchase {purchase_id} already refunded")

    days_since = (utcnow() - as_utc(purchase.created_at)).days
    if days_since > AUTO_REFUND_WINDOW_DAYS and not auto_approved:
        raise AgentError("Refund requires manual approval - outside automatic refund window")

    refund_amount = min(amount, purchase.amount) if amount else purchase.amount
    purchase.refund_status = "refunded"
    purchase.refund_amount = refund_amount
    await session.commit()

    logger.info("Refunded purchase %s (%.2f): %s", purchase_id, refund_amount, reason)
    return {
        "orderId": purchase_id,
        "refunded": True,
        "refundAmount": refund_amount,
        "reason": reason,
        "message": "Refund processed successfully",
    }


async def transaction_health(session: AsyncSession) -> dict[str, Any]:
    since = utcnow() - HEALTH_WINDOW
    purchases = (await session.execute(
        select(Purchase).where(Purchase.created_at >= since)
    )).scalars().all()

    total = len(purchases)
    refunded = sum(1 for p in purchases if p.refund_status == "refunded")
    disputed = sum(1 for p in purchases if p.status == "disputed")
    successful = total - refunded - disputed

    refund_rate = refunded / total if total else 0.0
    health = max(0, min(100, round(100 - refund_rate * 200 - (disputed / total * 100 if total else 0))))

    return {
        "totalTransactions": total,
        "successfulTransactions": successful,
        "refundedTransactions": refunded,
        "disputedTransactions": disputed,
        "refundRate": round(refund_rate, 3),
        "healthScore": health,
    }


async def settlement_status(session: AsyncSession, seller_id: int) -> dict[str, Any]:
    """
    Seller payouts: a sale settles SETTLEMENT_DELAY_DAYS after purchase, minus
    the platform fee. Refunded sales are excluded.
    """
    now = utcnow()
    settled_before = now - timedelta(days=SETTLEMENT_DELAY_DAYS)
    purchases = (await session.execute(
        select(Purchase)
        .join(Product, Product.id == Purchase.product_id)
        .where(
            Product.seller_id == seller_id,
            or_(Purchase.refund_status.is_(None), Purchase.refund_status != "refunded"),
        )
        .order_by(Purchase.id)
    )).scalars().all()

    pending = available = 0.0
    transactions = []
    for purchase in purchases:
        fee = round(purchase.amount * PLATFORM_FEE_RATE, 2)
        payout = round(purchase.amount - fee, 2)
        settled = as_utc(purchase.created_at) <= settled_before
        if settled:
            available += payout
        else:
            pending += payout
        transactions.append({
            "purchaseId": purchase.id,
            "amount": purchase.amount,
            "platformFee": fee,
            "sellerPayout": payout,
            "settledAt": settled_before.isoformat() if settled else None,
        })

    return {
        "sellerId": seller_id,
        "pendingAmount": round(pending, 2),
        "availableAmount": round(available, 2),
        "nextPayoutDate": (now + timedelta(days=SETTLEMENT_DELAY_DAYS)).isoformat() if pending else None,
        "transactions": transactions,
    }
