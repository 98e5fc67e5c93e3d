import re
from collections import Counter
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agent_dispatch.agents.llm import LLMClient, extract_json
from agent_dispatch.db.models import Product, ProductReview
from agent_dispatch.domain.errors import NotFoundError

POSITIVE_WORDS = frozenset({
    "great", "excellent", "love", "amazing", "perfect", "good", "helpful",
    "recommend", "beautiful", "fantastic", "easy", "worth",
})
NEGATIVE_WORDS = frozenset({
    "bad", "terrible", "awful", "broken", "waste", "poor", "disappointed",
    "refund", "scam", "useless", "hate", "worst",
})
_WORD = re.compile(r"[a-z']+")


def text_sentiment(text: str) -> float:
    """Lexicon polarity in [-1, 1]."""
    words = _WORD.findall(text.lower())
    pos = sum(1 for w in words if w in POSITIVE_WORDS)
    neg = sum(1 for w in words if w in NEGATIVE_WORDS)
    if pos + neg == 0:
        return 0.0
    return round((pos - neg) / (pos + neg), 3)


def _label(score: float) -> str:
    if score > 0.2:
        return "positive"
    if score < -0.2:
        return "negative"
    return "neutral"


async def _load_reviews(session: AsyncSession, product_id: int) -> list[ProductReview]:
    if not await session.get(Product, product_id):
        raise NotFoundError(f"Product {product_id} not found")
    stmt = select(ProductReview).where(ProductReview.product_id == product_id).order_by(ProductReview.id)
    return list((await session.execute(stmt)).scalars().all())


async def analyze_product_reviews(session: AsyncSession, product_id: int) -> dict[str, Any]:
    reviews = await _load_reviews(session, product_id)
    if not reviews:
        return {
            "productId": product_id,
            "reviewCount": 0,
            "averageRating": None,
            "sentiment": "neutral",
            "sentimentScore": 0.0,
            "ratingDistribution": {},
        }

    scores = [text_sentiment(r.text) for r in reviews]
    # Blend star rating (mapped to [-1, 1]) with text polarity
    blended = sum(((r.rating - 3) / 2 + s) / 2 for r, s in zip(reviews, scores)) / len(reviews)
    distribution = Counter(str(r.rating) for r in reviews)

    return {
        "productId": product_id,
        "reviewCount": len(reviews),
        "averageRating": round(sum(r.rating for r in reviews) / len(reviews), 2),
        "sentiment": _label(blended),
        "sentimentScore": round(blended, 3),
        "ratingDistribution": dict(sorted(distribution.items())),
    }


async def detect_fake_reviews(session: AsyncSession, product_id: int) -> dict[str, Any]:
    reviews = await _load_reviews(session, product_id)
    text_counts = Counter(r.text.strip().lower() for r in reviews if r.text.strip())
    per_user = Counter(r.user_id for r in reviews)

    suspicious = []
    for review in reviews:
        reasons = []
        if not review.verified_purchase:
            reasons.append("unverified_purchase")
        if review.text.strip() and text_counts[review.text.strip().lower()] > 1:
            reasons.append("duplicate_text")
        if per_user[review.user_id] > 1:
            reasons.append("multiple_reviews_same_user")
        if review.rating in (1, 5) and len(review.text.split()) < 4:
            reasons.append("extreme_rating_short_text")
        # One weak signal alone is common for honest reviews
        if len(reasons) >= 2:
            suspicious.append({"reviewId": review.id, "reasons": reasons})

    return {
        "productId": product_id,
        "totalReviews": len(reviews),
        "suspiciousCount": len(suspicious),
        "suspiciousReviews": suspicious,
        "authenticityScore": round(100 * (1 - len(suspicious) / len(reviews))) if reviews else 100,
    }


async def rank_review_helpfulness(session: AsyncSession, product_id: int) -> list[dict[str, Any]]:
    reviews = await _load_reviews(session, product_id)

    ranked = []
    for review in reviews:
        length_score = min(len(review.text.split()), 100) / 100
        score = review.helpful_votes * 2 + length_score * 10 + (5 if review.verified_purchase else 0)
        ranked.append({"reviewId": review.id, "rating": review.rating, "helpfulnessScore": round(score, 2)})

    ranked.sort(key=lambda r: r["helpfulnessScore"], reverse=True)
    return ranked


async def analyze_review_text(llm: LLMClient, review_text: str) -> dict[str, Any]:
    score = text_sentiment(review_text)
    default = {"topics": [], "summary": None}
    parsed = extract_json(
        await llm.complete(
            f"Extract the main topics of this product review:\n{review_text[:2000]}\n"
            'Return JSON: {"topics": ["string"], "summary": "string"}',
            system_prompt="You analyze marketplace product reviews.",
        ),
        default,
        context="review text analysis",
    )
    return {
        "sentiment": _label(score),
        "sentimentScore": score,
        "wordCount": len(review_text.split()),
        "topics": parsed.get("topics") or [],
        "summary": parsed.get("summary"),
    }
