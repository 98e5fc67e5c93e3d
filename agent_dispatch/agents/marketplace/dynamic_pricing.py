from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Product, Purchase
from agent_dispatch.domain.errors import NotFoundError
from agent_dispatch.utils.timeutil import utcnow

DEMAND_WINDOW = timedelta(days=30)

# Adjustments are fractions of the current price
MAX_INCREASE = 0.25
MAX_DECREASE = 0.30


async def _recommend(
    session: AsyncSession,
    product: Product,
    consider_competitors: bool = True,
    consider_demand: bool = True,
    consider_inventory: bool = True,
    target_margin: Optional[float] = None,
) -> dict[str, Any]:
    product_id = product.id
    current = product.price or 0.0
    adjustment = 0.0
    factors: list[dict[str, Any]] = []

    if consider_demand:
        sales = await session.scalar(
            select(func.count(Purchase.id)).where(
                Purchase.product_id == product_id,
                Purchase.created_at >= utcnow() - DEMAND_WINDOW,
            )
        ) or 0
        if sales >= 20:
            delta = 0.10
        elif sales >= 5:
            delta = 0.05
        elif sales == 0:
            delta = -0.10
        else:
            delta = 0.0
        adjustment += delta
        factors.append({"factor": "demand", "sales30d": sales, "adjustment": delta})

    if consider_inventory:
        if product.inventory <= 5:
            delta = 0.05
        elif product.inventory >= 100:
            delta = -0.05
        else:
            delta = 0.0
        adjustment += delta
        factors.append({"factor": "inventory", "inventory": product.inventory, "adjustment": delta})

    if consider_competitors and product.category:
        peer_avg = await session.scalar(
            select(func.avg(Product.price)).where(
                Product.category == product.category,
                Product.id != product_id,
            )
        )
        if peer_avg:
            # Move a third of the way towards the category average
            delta = (peer_avg - current) / current / 3 if current else 0.0
            adjustment += delta
            factors.append({"factor": "competitors", "categoryAverage": round(peer_avg, 2), "adjustment": round(delta, 3)})

    adjustment = max(-MAX_DECREASE, min(MAX_INCREASE, adjustment))
    recommended = round(current * (1 + adjustment), 2)

    if target_margin is not None and product.cost:
        floor = round(product.cost * (1 + target_margin), 2)
        if recommended < floor:
            recommended = floor
            factors.append({"factor": "target_margin", "floor": floor})

    return {
        "productId": product_id,
        "currentPrice": current,
        "recommendedPrice": recommended,
        "changePercent": round((recommended - current) / current * 100, 1) if current else 0.0,
        "factors": factors,
    }


async def optimize_price(
    session: AsyncSession,
    product_id: int,
    consider_competitors: bool = True,
    consider_demand: bool = True,
    consider_inventory: bool = True,
    target_margin: Optional[float] = None,
) -> dict[str, Any]:
    """
    Recommends a price from demand, stock and category peers and stores it on the
    product (last write wins). The listed price itself is never changed.
    """
    product = await session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    recommendation = await _recommend(
        session, product,
        consider_competitors=consider_competitors,
        consider_demand=consider_demand,
        consider_inventory=consider_inventory,
        target_margin=target_margin,
    )
    product.recommended_price = recommendation["recommendedPrice"]
    await session.commit()
    return recommendation


async def bulk_pricing(session: AsyncSession, seller_id: int) -> dict[str, Any]:
    """Price recommendations for every active listing of a seller. Nothing is stored."""
    products = (await session.execute(
        select(Product).where(Product.seller_id == seller_id, Product.status == "active").order_by(Product.id)
    )).scalars().all()

    recommendations = [await _recommend(session, product) for product in products]
    changes = [r for r in recommendations if r["recommendedPrice"] != r["currentPrice"]]
    return {
        "sellerId": seller_id,
        "productCount": len(products),
        "priceChanges": len(changes),
        "recommendations": recommendations,
    }
