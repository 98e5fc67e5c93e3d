from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import FraudCheck, Product, Purchase, User
from agent_dispatch.domain.errors import NotFoundError
from agent_dispatch.utils.timeutil import utcnow, as_utc

# signal -> weight; the risk score is the capped sum of the signals that fire
SIGNAL_WEIGHTS = {
    "new_account": 20,
    "amount_mismatch": 25,
    "high_amount": 15,
    "purchase_velocity": 25,
    "refund_history": 20,
    "shared_ip": 20,
    "self_purchase": 30,
}

NEW_ACCOUNT_DAYS = 7
HIGH_AMOUNT = 1000.0
VELOCITY_WINDOW = timedelta(hours=1)
VELOCITY_LIMIT = 3
SHARED_IP_WINDOW = timedelta(hours=24)
SHARED_IP_BUYERS = 3


def decide(risk_score: int, block_threshold: int, review_threshold: int) -> str:
    if risk_score >= block_threshold:
        return "block"
    if risk_score >= review_threshold:
        return "review"
    return "approve"


async def analyze_purchase(
    session: AsyncSession,
    user_id: int,
    product_id: int,
    amount: float,
    ip_address: Optional[str] = None,
    block_threshold: int = 70,
    review_threshold: int = 40,
) -> dict[str, Any]:
    """
    Scores a prospective purchase and appends the assessment to `fraud_checks`.

    Returns riskScore (0-100), decision (approve|review|block) and the list of
    signals that contributed.
    """
    user = await session.get(User, user_id)
    product = await session.get(Product, product_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    now = utcnow()
    signals: list[str] = []

    if now - as_utc(user.created_at) < timedelta(days=NEW_ACCOUNT_DAYS):
        signals.append("new_account")

    if product.price and abs(amount - product.price) > product.price * 0.5:
        signals.append("amount_mismatch")
    if amount >= HIGH_AMOUNT:
        signals.append("high_amount")

    if product.seller_id == user_id:
        signals.append("self_purchase")

    recent = await session.scalar(
        select(func.count(Purchase.id)).where(
            Purchase.buyer_id == user_id,
            Purchase.created_at >= now - VELOCITY_WINDOW,
        )
    )
    if (recent or 0) >= VELOCITY_LIMIT:
        signals.append("purchase_velocity")

    refunds = await session.scalar(
        select(func.count(Purchase.id)).where(
            Purchase.buyer_id == user_id,
            Purchase.refund_status == "refunded",
        )
    )
    if (refunds or 0) >= 2:
        signals.append("refund_history")

    if ip_address:
        buyers = await session.scalar(
            select(func.count(func.distinct(Purchase.buyer_id))).where(
                Purchase.ip_address == ip_address,
                Purchase.buyer_id != user_id,
                Purchase.created_at >= now - SHARED_IP_WINDOW,
            )
        )
        if (buyers or 0) >= SHARED_IP_BUYERS:
            signals.append("shared_ip")

    risk_score = min(100, sum(SIGNAL_WEIGHTS[s] for s in signals))
    decision = decide(risk_score, block_threshold, review_threshold)

    check = FraudCheck(
        user_id=user_id,
        product_id=product_id,
        amount=amount,
        risk_score=risk_score,
        decision=decision,
        signals=signals,
    )
    session.add(check)
    await session.commit()

    return {
        "checkId": check.id,
        "userId": user_id,
        "productId": product_id,
        "amount": amount,
        "riskScore": risk_score,
        "decision": decision,
        "signals": signals,
        "requiresReview": decision == "review",
        "blocked": decision == "block",
    }


async def check_seller_behavior(session: AsyncSession, seller_id: int) -> dict[str, Any]:
    seller = await session.get(User, seller_id)
    if not seller:
        raise NotFoundError(f"Seller {seller_id} not found")

    stmt = (
        select(Purchase.refund_status, func.count(Purchase.id))
        .join(Product, Product.id == Purchase.product_id)
        .where(Product.seller_id == seller_id)
        .group_by(Purchase.refund_status)
    )
    counts = {status: n for status, n in (await session.execute(stmt)).all()}
    total = sum(counts.values())
    refunded = counts.get("refunded", 0)
    refund_rate = refunded / total if total else 0.0

    flagged = await session.scalar(
        select(func.count(FraudCheck.id))
        .join(Product, Product.id == FraudCheck.product_id)
        .where(Product.seller_id == seller_id, FraudCheck.decision != "approve")
    )

    flags = []
    if refund_rate > 0.2:
        flags.append("high_refund_rate")
    if (flagged or 0) >= 3:
        flags.append("repeated_fraud_flags")

    return {
        "sellerId": seller_id,
        "totalSales": total,
        "refundRate": round(refund_rate, 3),
        "flaggedPurchases": flagged or 0,
        "flags": flags,
        "suspicious": bool(flags),
    }
