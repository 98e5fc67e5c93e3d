from collections import Counter
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Product, Purchase, ProductReview


async def _trending(session: AsyncSession, exclude: set[int], category: Optional[str], limit: int) -> list[dict[str, Any]]:
    stmt = (
        select(Product, func.count(Purchase.id).label("sales"))
        .outerjoin(Purchase, Purchase.product_id == Product.id)
        .where(Product.status == "active")
        .group_by(Product.id)
        .order_by(func.count(Purchase.id).desc(), Product.id)
    )
    if category:
        stmt = stmt.where(Product.category == category)

    out = []
    for product, sales in (await session.execute(stmt)).all():
        if product.id in exclude:
            continue
        out.append({
            "productId": product.id,
            "title": product.title,
            "price": product.price,
            "score": float(sales),
            "reason": "trending",
        })
        if len(out) >= limit:
            break
    return out


async def personalized_recommendations(
    session: AsyncSession,
    user_id: int,
    category: Optional[str] = None,
    limit: int = 10,
    exclude_owned: bool = True,
) -> dict[str, Any]:
    """
    Content-based picks from the user's purchased categories and tags, topped up
    with trending products (also the cold-start answer for users with no history).
    """
    owned_stmt = (
        select(Product)
        .join(Purchase, Purchase.product_id == Product.id)
        .where(Purchase.buyer_id == user_id)
    )
    owned = (await session.execute(owned_stmt)).scalars().unique().all()
    owned_ids = {p.id for p in owned} if exclude_owned else set()

    if not owned:
        items = await _trending(session, owned_ids, category, limit)
        return {"userId": user_id, "strategy": "cold_start", "recommendations": items}

    category_weight = Counter(p.category for p in owned if p.category)
    tag_weight = Counter(t for p in owned for t in (p.tags or []))

    stmt = select(Product).where(Product.status == "active")
    if category:
        stmt = stmt.where(Product.category == category)
    candidates = (await session.execute(stmt)).scalars().all()

    scored = []
    for product in candidates:
        if product.id in owned_ids:
            continue
        score = 2.0 * category_weight.get(product.category, 0) + sum(tag_weight.get(t, 0) for t in product.tags or [])
        if score > 0:
            scored.append({
                "productId": product.id,
                "title": product.title,
                "price": product.price,
                "score": score,
                "reason": "similar_to_purchases",
            })
    scored.sort(key=lambda r: (-r["score"], r["productId"]))
    items = scored[:limit]

    if len(items) < limit:
        seen = owned_ids | {r["productId"] for r in items}
        items += await _trending(session, seen, category, limit - len(items))

    return {"userId": user_id, "strategy": "content_based", "recommendations": items}


async def similar_products(session: AsyncSession, product_id: int, limit: int = 6) -> list[dict[str, Any]]:
    """
    Active products in the same category, scored from 50 by shared tags (+15
    each), price closeness (up to +20) and average rating (+4 per star), capped at 100.
    """
    source = await session.get(Product, product_id)
    if not source:
        return []

    stmt = (
        select(Product, func.avg(ProductReview.rating).label("rating"))
        .outerjoin(ProductReview, ProductReview.product_id == Product.id)
        .where(
            Product.category == source.category,
            Product.status == "active",
            Product.id != product_id,
        )
        .group_by(Product.id)
        .limit(limit * 2)
    )

    source_tags = set(source.tags or [])
    scored = []
    for product, rating in (await session.execute(stmt)).all():
        score = 50.0
        score += 15 * len(source_tags.intersection(product.tags or []))
        avg_price = (product.price + source.price) / 2
        if avg_price:
            score += (1 - min(abs(product.price - source.price) / avg_price, 1)) * 20
        score += float(rating or 0) * 4
        scored.append({
            "productId": product.id,
            "title": product.title,
            "price": product.price,
            "score": round(min(score, 100.0), 1),
            "reason": f"Similar {product.category} product",
        })

    scored.sort(key=lambda r: (-r["score"], r["productId"]))
    return scored[:limit]


async def bundle_suggestions(session: AsyncSession, product_id: int, limit: int = 5) -> list[dict[str, Any]]:
    """Products most often bought by the buyers of `product_id`."""
    buyers = select(Purchase.buyer_id).where(Purchase.product_id == product_id)
    stmt = (
        select(Product, func.count(Purchase.id).label("times"))
        .join(Purchase, Purchase.product_id == Product.id)
        .where(
            Purchase.buyer_id.in_(buyers),
            Product.id != product_id,
            Product.status == "active",
        )
        .group_by(Product.id)
        .order_by(func.count(Purchase.id).desc(), Product.id)
        .limit(limit)
    )
    return [
        {
            "productId": product.id,
            "title": product.title,
            "price": product.price,
            "score": 100 - index * 10,
            "reason": f"Frequently bought together ({times} times)",
        }
        for index, (product, times) in enumerate((await session.execute(stmt)).all())
    ]
