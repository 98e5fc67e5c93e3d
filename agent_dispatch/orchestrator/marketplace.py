import asyncio
import logging
from typing import Any

from agent_dispatch.agents.marketplace import (
    dynamic_pricing,
    fraud_detection,
    inventory,
    quality_assurance,
    recommendations,
    review_analyzer,
    seller_support,
    transaction_monitor,
)
from agent_dispatch.domain.errors import AgentError
from agent_dispatch.domain.states import MarketplaceTaskType
from agent_dispatch.orchestrator.base import BaseOrchestrator, Handler, require

logger = logging.getLogger(__name__)

HELPFUL_REVIEWS_LIMIT = 10


class MarketplaceOrchestrator(BaseOrchestrator):
    domain = "marketplace"

    def dispatch_table(self) -> dict[str, Handler]:
        return {
            MarketplaceTaskType.FRAUD_CHECK: self.fraud_check,
            MarketplaceTaskType.PRICE_OPTIMIZE: self.optimize_price,
            MarketplaceTaskType.RECOMMENDATIONS: self.recommendations,
            MarketplaceTaskType.ANALYZE_REVIEWS: self.analyze_reviews,
            MarketplaceTaskType.INVENTORY_CHECK: self.inventory_check,
            MarketplaceTaskType.SELLER_SUPPORT: self.seller_support,
            MarketplaceTaskType.TRANSACTION_TRACKING: self.transaction_tracking,
            MarketplaceTaskType.PROCESS_REFUND: self.process_refund,
            MarketplaceTaskType.QA_REVIEW: self.qa_review,
            MarketplaceTaskType.QA_QUEUE: self.qa_queue,
            MarketplaceTaskType.TRANSACTION_HEALTH: self.transaction_health,
            MarketplaceTaskType.MAINTENANCE_SWEEP: self.maintenance_sweep,
            MarketplaceTaskType.SELLER_BEHAVIOR: self.seller_behavior,
            MarketplaceTaskType.SIMILAR_PRODUCTS: self.similar_products,
            MarketplaceTaskType.BUNDLE_SUGGESTIONS: self.bundle_suggestions,
            MarketplaceTaskType.LISTING_QUALITY: self.listing_quality,
            MarketplaceTaskType.SETTLEMENT_STATUS: self.settlement_status,
            MarketplaceTaskType.BULK_PRICING: self.bulk_pricing,
            MarketplaceTaskType.DEAD_STOCK: self.dead_stock,
        }

    async def fraud_check(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "userId", "productId", "amount")
        result = await self.call(
            fraud_detection.analyze_purchase,
            int(data["userId"]),
            int(data["productId"]),
            float(data["amount"]),
            ip_address=data.get("ipAddress"),
            block_threshold=self.settings.FRAUD_BLOCK_THRESHOLD,
            review_threshold=self.settings.FRAUD_REVIEW_THRESHOLD,
        )
        if result["riskScore"] >= self.settings.FRAUD_BLOCK_THRESHOLD:
            logger.warning(
                f"High fraud risk: user={result['userId']} product={result['productId']} "
                f"score={result['riskScore']} signals={result['signals']}"
            )
        return result

    async def optimize_price(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "productId")
        return await self.call(
            dynamic_pricing.optimize_price,
            int(data["productId"]),
            consider_competitors=data.get("considerCompetitors", True),
            consider_demand=data.get("considerDemand", True),
            consider_inventory=data.get("considerInventory", True),
            target_margin=data.get("targetMargin"),
        )

    async def bulk_pricing(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "sellerId")
        return await self.call(dynamic_pricing.bulk_pricing, int(data["sellerId"]))

    async def recommendations(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "userId")
        return await self.call(
            recommendations.personalized_recommendations,
            int(data["userId"]),
            category=data.get("category"),
            limit=int(data.get("limit") or 10),
        )

    async def analyze_reviews(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        productId -> sentiment, fake detection and helpfulness fanned out concurrently.
        reviewText -> a single text analysis. Both -> the product analysis plus `textAnalysis`.
        """
        product_id = data.get("productId")
        review_text = data.get("reviewText")
        if not product_id and not review_text:
            raise AgentError("analyze-reviews requires productId or reviewText")

        if not product_id:
            return await review_analyzer.analyze_review_text(self.llm, review_text)

        calls = [
            self.call(review_analyzer.analyze_product_reviews, int(product_id)),
            self.call(review_analyzer.detect_fake_reviews, int(product_id)),
            self.call(review_analyzer.rank_review_helpfulness, int(product_id)),
        ]
        if review_text:
            calls.append(review_analyzer.analyze_review_text(self.llm, review_text))
        results = await asyncio.gather(*calls)

        merged = {
            "sentiment": results[0],
            "fakeDetection": results[1],
            "helpfulness": results[2][:HELPFUL_REVIEWS_LIMIT],
        }
        if review_text:
            merged["textAnalysis"] = results[3]
        return merged

    async def inventory_check(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "sellerId")
        return await self.call(
            inventory.inventory_check,
            int(data["sellerId"]),
            low_stock_threshold=int(data.get("lowStockThreshold") or 5),
        )

    async def seller_support(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "sellerId")
        seller_id = int(data["sellerId"])
        performance, forecast = await asyncio.gather(
            self.call(seller_support.seller_performance, seller_id, period=data.get("period") or "month"),
            self.call(seller_support.forecast_revenue, seller_id),
        )
        return {"performance": performance, "forecast": forecast}

    async def transaction_tracking(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "orderId")
        order_id = int(data["orderId"])
        status, prediction, risk = await asyncio.gather(
            self.call(transaction_monitor.order_status, order_id),
            self.call(transaction_monitor.predict_delivery, order_id),
            self.call(transaction_monitor.chargeback_risk, order_id),
        )
        return {"status": status, "deliveryPrediction": prediction, "chargebackRisk": risk}

    async def process_refund(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "purchaseId", "reason")
        return await self.call(
            transaction_monitor.process_refund,
            int(data["purchaseId"]),
            data["reason"],
            amount=data.get("amount"),
            auto_approved=bool(data.get("autoApproved")),
        )

    async def qa_review(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "productId")
        fn = quality_assurance.auto_approve_product if data.get("autoApprove") else quality_assurance.review_listing
        return await self.call(fn, int(data["productId"]))

    async def qa_queue(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        return await self.call(quality_assurance.qa_queue, limit=int(data.get("limit") or 50))

    async def transaction_health(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.call(transaction_monitor.transaction_health)

    async def maintenance_sweep(self, data: dict[str, Any]) -> dict[str, Any]:
        health, pending = await asyncio.gather(
            self.call(transaction_monitor.transaction_health),
            self.call(quality_assurance.qa_queue),
        )
        logger.info(f"Maintenance sweep: health={health['healthScore']} qa_pending={len(pending)}")
        return {
            "transactionHealth": health,
            "qaQueue": {"pending": len(pending), "items": pending},
        }

    async def seller_behavior(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "sellerId")
        result = await self.call(fraud_detection.check_seller_behavior, int(data["sellerId"]))
        if result["suspicious"]:
            logger.warning(f"Suspicious seller behavior: seller={result['sellerId']} flags={result['flags']}")
        return result

    async def similar_products(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        require(data, "productId")
        return await self.call(
            recommendations.similar_products,
            int(data["productId"]),
            limit=int(data.get("limit") or 6),
        )

    async def bundle_suggestions(self, data: dict[str, Any]) -> list[dict[str, Any]]:
        require(data, "productId")
        return await self.call(recommendations.bundle_suggestions, int(data["productId"]))

    async def listing_quality(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "productId")
        return await self.call(seller_support.score_listing_quality, int(data["productId"]))

    async def settlement_status(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "sellerId")
        return await self.call(transaction_monitor.settlement_status, int(data["sellerId"]))

    async def dead_stock(self, data: dict[str, Any]) -> dict[str, Any]:
        require(data, "sellerId")
        return await self.call(
            inventory.dead_stock,
            int(data["sellerId"]),
            threshold_days=int(data.get("thresholdDays") or inventory.DEAD_STOCK_DAYS),
        )
