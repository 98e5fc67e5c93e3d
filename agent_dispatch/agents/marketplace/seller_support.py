from datetime import timedelta
from typing import Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.db.models import Product, Purchase, ProductReview, User
from agent_dispatch.domain.errors import NotFoundError
from agent_dispatch.utils.timeutil import utcnow

PERIOD_DAYS = {"day": 1, "week": 7, "month": 30, "quarter": 90}


async def _sales_between(session: AsyncSession, seller_id: int, start, end) -> tuple[int, float]:
    stmt = (
        select(func.count(Purchase.id), func.coalesce(func.sum(Purchase.amount), 0.0))
        .join(Product, Product.id == Purchase.product_id)
        .where(
            Product.seller_id == seller_id,
            Purchase.created_at >= start,
            Purchase.created_at < end,
            Purchase.refund_status.is_(None),
        )
    )
    count, revenue = (await session.execute(stmt)).one()
    return count, float(revenue)


async def seller_performance(session: AsyncSession, seller_id: int, period: str = "month") -> dict[str, Any]:
    if not await session.get(User, seller_id):
        raise NotFoundError(f"Seller {seller_id} not found")

    days = PERIOD_DAYS.get(period, 30)
    now = utcnow()
    sales, revenue = await _sales_between(session, seller_id, now - timedelta(days=days), now)
    prev_sales, prev_revenue = await _sales_between(
        session, seller_id, now - timedelta(days=2 * days), now - timedelta(days=days)
    )

    avg_rating = await session.scalar(
        select(func.avg(ProductReview.rating))
        .join(Product, Product.id == ProductReview.product_id)
        .where(Product.seller_id == seller_id)
    )

    top_stmt = (
        select(Product.id, Product.title, func.count(Purchase.id).label("sales"))
        .join(Purchase, Purchase.product_id == Product.id)
        .where(Product.seller_id == seller_id)
        .group_by(Product.id, Product.title)
        .order_by(func.count(Purchase.id).desc())
        .limit(5)
    )
    top = [{"productId": pid, "title": title, "sales": n} for pid, title, n in (await session.execute(top_stmt)).all()]

    growth = round((revenue - prev_revenue) / prev_revenue * 100, 1) if prev_revenue else None

    return {
        "sellerId": seller_id,
        "period": period,
        "sales": sales,
        "revenue": round(revenue, 2),
        "previousRevenue": round(prev_revenue, 2),
        "revenueGrowthPercent": growth,
        "averageRating": round(float(avg_rating), 2) if avg_rating is not None else None,
        "topProducts": top,
    }


async def forecast_revenue(session: AsyncSession, seller_id: int, months: int = 3) -> dict[str, Any]:
    """Naive forecast: average of the last three 30-day windows, projected flat."""
    now = utcnow()
    windows = []
    for i in range(3):
        end = now - timedelta(days=30 * i)
        _, revenue = await _sales_between(session, seller_id, end - timedelta(days=30), end)
        windows.append(revenue)

    if not any(windows):
        return {
            "sellerId": seller_id,
            "forecast": [0.0] * months,
            "confidence": "low",
            "trend": "flat",
        }

    avg = sum(windows) / len(windows)
    # windows[0] is the most recent
    if windows[0] > windows[-1] * 1.1:
        trend = "up"
    elif windows[0] < windows[-1] * 0.9:
        trend = "down"
    else:
        trend = "flat"

    return {
        "sellerId": seller_id,
        "forecast": [round(avg, 2)] * months,
        "confidence": "medium" if all(windows) else "low",
        "trend": trend,
    }


def _title_score(title: str) -> int:
    score = 50
    if len(title) >= 20:
        score += 20
    if len(title) >= 40:
        score += 10
    if len(title) > 80:
        score -= 20
    if any(c.isdigit() for c in title):
        score += 10
    capitalized = [w for w in title.split(" ") if len(w) > 3 and w[0] == w[0].upper()]
    score += min(len(capitalized) * 5, 20)
    return min(score, 100)


def _description_score(description: str) -> int:
    score = 50
    for length, bonus in ((100, 15), (300, 20), (500, 15)):
        if len(description) >= length:
            score += bonus
    if any(mark in description for mark in ("•", "-", "*")):
        score += 10
    if len([p for p in description.split("\n") if p.strip()]) >= 2:
        score += 10
    return min(score, 100)


def _image_score(media_urls: list[str]) -> int:
    count = len(media_urls)
    if count == 0:
        return 0
    score = 40
    if count >= 3:
        score += 30
    if count >= 5:
        score += 20
    if count > 10:
        score -= 10
    return min(score, 100)


async def _pricing_score(session: AsyncSession, product: Product) -> int:
    prices = (await session.execute(
        select(Product.price)
        .where(Product.category == product.category, Product.status == "active", Product.id != product.id)
        .limit(20)
    )).scalars().all()
    if not prices:
        return 70

    avg_price = sum(prices) / len(prices)
    if not avg_price:
        return 70
    diff = abs(product.price - avg_price) / avg_price
    if diff < 0.1:
        return 100
    if diff < 0.2:
        return 80
    if diff < 0.4:
        return 60
    return 40


LISTING_ADVICE = {
    "titleQuality": ("Title could be more descriptive",
                     "Add relevant keywords and make title more compelling"),
    "descriptionQuality": ("Description lacks detail",
                           "Expand description with features, benefits, and usage instructions"),
    "imageQuality": ("Insufficient or low-quality images",
                     "Add high-resolution product images (minimum 3 recommended)"),
    "pricingCompetitiveness": ("Pricing not competitive",
                               "Review pricing against similar products"),
}


async def score_listing_quality(session: AsyncSession, product_id: int) -> dict[str, Any]:
    """Seller-facing listing score: the mean of five 0-100 sub-scores, plus advice below 60."""
    product = await session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    scores = {
        "titleQuality": _title_score(product.title or ""),
        "descriptionQuality": _description_score(product.description or ""),
        "imageQuality": _image_score(product.media_urls or []),
        "pricingCompetitiveness": await _pricing_score(session, product),
        "categoryAccuracy": 80 if product.category else 0,
    }

    issues, improvements = [], []
    for key, (issue, improvement) in LISTING_ADVICE.items():
        if scores[key] < 60:
            issues.append(issue)
            improvements.append(improvement)

    return {
        "productId": product_id,
        "productTitle": product.title,
        "overallScore": round(sum(scores.values()) / len(scores), 1),
        "scores": scores,
        "issues": issues,
        "improvements": improvements,
    }
