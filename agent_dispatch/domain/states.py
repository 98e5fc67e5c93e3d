from enum import StrEnum, auto


class JobState(StrEnum):
    WAITING = auto()    # Enqueued, claimable now
    DELAYED = auto()    # Claimable once available_at passes (retry backoff, cron)
    ACTIVE = auto()     # Claimed by a worker
    COMPLETED = auto()  # Finished with a result
    FAILED = auto()     # Attempts exhausted (or non-retryable)


CLAIMABLE_STATES = (JobState.WAITING, JobState.DELAYED)
TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED)


class JobEvent(StrEnum):
    CREATED = auto()
    ACTIVE = auto()
    PROGRESS = auto()
    COMPLETED = auto()
    FAILED = auto()
    RETRIED = auto()
    STALLED = auto()


class Priority(StrEnum):
    LOW = auto()
    MEDIUM = auto()
    HIGH = auto()
    CRITICAL = auto()

    @property
    def rank(self) -> int:
        # Higher rank is claimed first
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.LOW: 0,
    Priority.MEDIUM: 1,
    Priority.HIGH: 2,
    Priority.CRITICAL: 3,
}


class QueueName(StrEnum):
    LEGAL = "legal-agents"
    MARKETPLACE = "marketplace-agents"


class LegalTaskType(StrEnum):
    REVIEW_DOCUMENT = "review-document"
    ASSIST_CONTRACT = "assist-contract"
    CHECK_COMPLIANCE = "check-compliance"
    COMPARE_TEMPLATES = "compare-templates"
    SCORE_TEMPLATE = "score-template"
    SUGGEST_CLAUSES = "suggest-clauses"
    AUTO_FILL = "auto-fill"
    NEGOTIATE = "negotiate"
    OPTIMIZE_WORKFLOW = "optimize-workflow"


class MarketplaceTaskType(StrEnum):
    FRAUD_CHECK = "fraud-check"
    PRICE_OPTIMIZE = "price-optimize"
    RECOMMENDATIONS = "recommendations"
    ANALYZE_REVIEWS = "analyze-reviews"
    INVENTORY_CHECK = "inventory-check"
    SELLER_SUPPORT = "seller-support"
    TRANSACTION_TRACKING = "transaction-tracking"
    PROCESS_REFUND = "process-refund"
    QA_REVIEW = "qa-review"
    QA_QUEUE = "qa-queue"
    TRANSACTION_HEALTH = "transaction-health"
    MAINTENANCE_SWEEP = "maintenance-sweep"
    SELLER_BEHAVIOR = "seller-behavior"
    SIMILAR_PRODUCTS = "similar-products"
    BUNDLE_SUGGESTIONS = "bundle-suggestions"
    LISTING_QUALITY = "listing-quality"
    SETTLEMENT_STATUS = "settlement-status"
    BULK_PRICING = "bulk-pricing"
    DEAD_STOCK = "dead-stock"
