from datetime import timedelta
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Product, Purchase
from agent_dispatch.utils.timeutil import utcnow, as_utc, isoformat

SALES_WINDOW_DAYS = 30
LOW_STOCK_DAYS = 7
DEAD_STOCK_DAYS = 90


async def inventory_check(session: AsyncSession, seller_id: int, low_stock_threshold: int = 5) -> dict[str, Any]:
    """Stock alerts and restock suggestions for one seller's active listings."""
    now = utcnow()
    sales_stmt = (
        select(Purchase.product_id, func.count(Purchase.id))
        .join(Product, Product.id == Purchase.product_id)
        .where(Product.seller_id == seller_id, Purchase.created_at >= now - timedelta(days=SALES_WINDOW_DAYS))
        .group_by(Purchase.product_id)
    )
    sales = dict((await session.execute(sales_stmt)).all())

    products = (await session.execute(
        select(Product).where(Product.seller_id == seller_id).order_by(Product.id)
    )).scalars().all()

    alerts = []
    restock = []
    for product in products:
        daily_rate = sales.get(product.id, 0) / SALES_WINDOW_DAYS
        days_left = product.inventory / daily_rate if daily_rate else None

        if product.inventory == 0:
            alerts.append({"productId": product.id, "type": "out_of_stock", "severity": "critical"})
        elif product.inventory <= low_stock_threshold or (days_left is not None and days_left < LOW_STOCK_DAYS):
            alerts.append({"productId": product.id, "type": "low_stock", "severity": "warning",
                           "inventory": product.inventory})
        elif daily_rate == 0 and product.inventory > 0:
            alerts.append({"productId": product.id, "type": "no_recent_sales", "severity": "info",
                           "inventory": product.inventory})

        if daily_rate and (days_left is None or days_left < LOW_STOCK_DAYS * 2):
            restock.append({
                "productId": product.id,
                "suggestedQuantity": max(1, round(daily_rate * DEAD_STOCK_DAYS / 3) - product.inventory),
            })

    return {
        "sellerId": seller_id,
        "productCount": len(products),
        "totalUnits": sum(p.inventory for p in products),
        "alerts": alerts,
        "restockRecommendations": restock,
    }


async def dead_stock(session: AsyncSession, seller_id: int, threshold_days: int = DEAD_STOCK_DAYS) -> dict[str, Any]:
    """Stocked listings with no sale in the last `threshold_days`, with the value they tie up."""
    since = utcnow() - timedelta(days=threshold_days)
    last_sale = (
        select(Purchase.product_id, func.max(Purchase.created_at).label("last_sale"))
        .group_by(Purchase.product_id)
        .subquery()
    )
    rows = (await session.execute(
        select(Product, last_sale.c.last_sale)
        .outerjoin(last_sale, last_sale.c.product_id == Product.id)
        .where(Product.seller_id == seller_id, Product.inventory > 0)
        .order_by(Product.id)
    )).all()

    items = []
    for product, last_sold in rows:
        if last_sold is not None and as_utc(last_sold) >= since:
            continue
        items.append({
            "productId": product.id,
            "title": product.title,
            "inventory": product.inventory,
            "tiedUpValue": round(product.inventory * product.price, 2),
            "lastSaleAt": isoformat(last_sold),
        })

    return {
        "sellerId": seller_id,
        "thresholdDays": threshold_days,
        "deadStock": items,
        "totalTiedUpValue": round(sum(i["tiedUpValue"] for i in items), 2),
    }
