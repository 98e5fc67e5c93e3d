from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Product
from agent_dispatch.domain.errors import NotFoundError

PROHIBITED_TERMS = ("counterfeit", "replica", "pirated", "cracked", "stolen")

MIN_TITLE_LENGTH = 10
MIN_DESCRIPTION_WORDS = 20

APPROVE_THRESHOLD = 80
REJECT_THRESHOLD = 40

QUEUE_STATUSES = ("pending_review", "flagged")


def _check(name: str, passed: bool, weight: int, message: str) -> dict[str, Any]:
    return {"check": name, "passed": passed, "weight": weight, "message": None if passed else message}


async def _has_duplicate_title(session: AsyncSession, product: Product) -> bool:
    stmt = select(Product.id).where(
        Product.id != product.id,
        Product.title == product.title,
    ).limit(1)
    return (await session.scalar(stmt)) is not None


async def review_listing(session: AsyncSession, product_id: int) -> dict[str, Any]:
    product = await session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    text = f"{product.title} {product.description}".lower()
    prohibited = [t for t in PROHIBITED_TERMS if t in text]

    checks = [
        _check("content_policy", not prohibited, 35, f"Prohibited terms: {', '.join(prohibited)}"),
        _check("title", len(product.title) >= MIN_TITLE_LENGTH, 10, "Title is too short"),
        _check("description", len(product.description.split()) >= MIN_DESCRIPTION_WORDS, 20,
               "Description is too short"),
        _check("media", bool(product.media_urls), 15, "No images or media attached"),
        _check("pricing", product.price > 0, 10, "Price must be positive"),
        _check("duplicate", not await _has_duplicate_title(session, product), 10,
               "Another listing has the same title"),
    ]
    score = sum(c["weight"] for c in checks if c["passed"])

    if prohibited or score < REJECT_THRESHOLD:
        recommendation = "reject"
    elif score >= APPROVE_THRESHOLD:
        recommendation = "approve"
    else:
        recommendation = "manual_review"

    return {
        "productId": product_id,
        "score": score,
        "recommendation": recommendation,
        "checks": checks,
        "issues": [c["message"] for c in checks if not c["passed"]],
    }


async def auto_approve_product(session: AsyncSession, product_id: int) -> dict[str, Any]:
    """Approves the listing when its QA review says so; otherwise flags it."""
    review = await review_listing(session, product_id)
    product = await session.get(Product, product_id)

    approved = review["recommendation"] == "approve"
    product.status = "active" if approved else "flagged"
    await session.commit()

    return {
        "productId": product_id,
        "approved": approved,
        "status": product.status,
        "review": review,
    }


async def qa_queue(session: AsyncSession, limit: int = 50) -> list[dict[str, Any]]:
    stmt = (
        select(Product)
        .where(Product.status.in_(QUEUE_STATUSES))
        .order_by(Product.created_at, Product.id)
        .limit(limit)
    )
    products = (await session.execute(stmt)).scalars().all()
    return [
        {
            "productId": p.id,
            "title": p.title,
            "sellerId": p.seller_id,
            "status": p.status,
            # Flagged listings jump the queue
            "priority": "high" if p.status == "flagged" else "normal",
        }
        for p in products
    ]
