import logging

import pytest

from agent_dispatch.domain.models import AgentTask
from agent_dispatch.domain.states import LegalTaskType, MarketplaceTaskType
from agent_dispatch.orchestrator.base import BaseOrchestrator


def test_dispatch_tables_cover_every_task_type(legal_orchestrator, marketplace_orchestrator):
    assert set(legal_orchestrator.task_types) == {str(t) for t in LegalTaskType}
    assert set(marketplace_orchestrator.task_types) == {str(t) for t in MarketplaceTaskType}
    assert legal_orchestrator.supports("review-document")
    assert not legal_orchestrator.supports("fraud-check")


async def test_unknown_task_type_is_a_non_retryable_failure(marketplace_orchestrator):
    result = await marketplace_orchestrator.execute(AgentTask(type="launch-rockets", data={}))

    assert result.success is False
    assert result.retryable is False
    assert "launch-rockets" in result.error
    assert result.data is None


async def test_tasks_are_not_routed_across_domains(legal_orchestrator):
    result = await legal_orchestrator.execute(AgentTask(type="fraud-check", data={"userId": 1}))

    assert result.success is False
    assert result.retryable is False


async def test_missing_fields_become_a_failure(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(type="fraud-check", data={"userId": seed["buyer"]}))

    assert result.success is False
    assert result.retryable is True
    assert result.error == "Missing required field(s): productId, amount"


async def test_agent_exceptions_never_escape(session_factory, llm, test_settings):
    class Exploding(BaseOrchestrator):
        domain = "test"

        def dispatch_table(self):
            return {"explode": self.explode}

        async def explode(self, data):
            raise RuntimeError("kaboom")

    orchestrator = Exploding(session_factory, llm, test_settings)
    result = await orchestrator.execute(AgentTask(type="explode"))

    assert result.success is False
    assert result.error == "kaboom"
    assert result.retryable is True
    body = result.to_dict()
    assert body["success"] is False and "data" not in body


async def test_review_document_through_orchestrator(legal_orchestrator, seed):
    result = await legal_orchestrator.execute(AgentTask(
        type="review-document",
        data={"content": "Sample waiver text", "category": "waiver", "userId": seed["buyer"]},
    ))

    assert result.success is True
    assert result.data["overallScore"] == 40
    assert result.data["riskScore"] == 50


async def test_review_document_without_source_fails(legal_orchestrator, seed):
    result = await legal_orchestrator.execute(AgentTask(type="review-document", data={"category": "waiver"}))

    assert result.success is False
    assert result.error == "Must provide documentId, instanceId, or content"


async def test_auto_fill_resolves_template_content(legal_orchestrator, seed):
    result = await legal_orchestrator.execute(AgentTask(
        type="auto-fill",
        data={"documentId": seed["waiver"], "userId": seed["buyer"], "providedValues": {"event_name": "Milonga"}},
    ))

    assert result.success is True
    assert result.data["variables"]["participant_name"] == "Bea Buyer"
    assert result.data["variables"]["event_name"] == "Milonga"
    assert result.data["missingVariables"] == ["event_date"]


async def test_optimize_workflow_orders_witness_last(legal_orchestrator):
    result = await legal_orchestrator.execute(AgentTask(
        type="optimize-workflow",
        data={
            "documentType": "waiver",
            "signers": [{"role": "witness"}, {"role": "participant"}, {"role": "organizer"}],
        },
    ))

    assert result.success is True
    assert result.data["recommendedFlow"] == "sequential"
    assert [s["role"] for s in result.data["signers"]] == ["participant", "organizer", "witness"]


async def test_high_risk_fraud_check_logs_warning(marketplace_orchestrator, seed, caplog):
    with caplog.at_level(logging.WARNING, logger="agent_dispatch.orchestrator.marketplace"):
        result = await marketplace_orchestrator.execute(AgentTask(
            type="fraud-check",
            data={"userId": seed["seller"], "productId": seed["shoes"], "amount": 1500},
        ))

    assert result.success is True
    assert result.data["decision"] == "block"
    assert any("High fraud risk" in r.getMessage() for r in caplog.records)


async def test_low_risk_fraud_check_does_not_warn(marketplace_orchestrator, seed, caplog):
    with caplog.at_level(logging.WARNING, logger="agent_dispatch.orchestrator.marketplace"):
        result = await marketplace_orchestrator.execute(AgentTask(
            type="fraud-check",
            data={"userId": seed["buyer"], "productId": seed["shoes"], "amount": 100},
        ))

    assert result.data["decision"] == "approve"
    assert not any("High fraud risk" in r.getMessage() for r in caplog.records)


async def test_analyze_reviews_for_product_fans_out(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(
        type="analyze-reviews", data={"productId": seed["shoes"]},
    ))

    assert result.success is True
    assert set(result.data) == {"sentiment", "fakeDetection", "helpfulness"}
    assert result.data["sentiment"]["reviewCount"] == 4
    assert result.data["fakeDetection"]["suspiciousCount"] == 2


async def test_analyze_reviews_with_text_adds_text_analysis(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(
        type="analyze-reviews", data={"productId": seed["shoes"], "reviewText": "Excellent shoes"},
    ))

    assert result.data["textAnalysis"]["sentiment"] == "positive"


async def test_analyze_reviews_text_only(marketplace_orchestrator):
    result = await marketplace_orchestrator.execute(AgentTask(
        type="analyze-reviews", data={"reviewText": "Terrible stitching"},
    ))

    assert result.success is True
    assert result.data["sentiment"] == "negative"
    assert result.data["wordCount"] == 2


async def test_analyze_reviews_requires_a_source(marketplace_orchestrator):
    result = await marketplace_orchestrator.execute(AgentTask(type="analyze-reviews", data={}))

    assert result.success is False
    assert "productId or reviewText" in result.error


async def test_transaction_tracking_combines_three_views(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(
        type="transaction-tracking", data={"orderId": seed["purchase"]},
    ))

    assert result.success is True
    assert result.data["status"]["orderId"] == seed["purchase"]
    assert result.data["deliveryPrediction"]["confidence"] == "high"
    assert result.data["chargebackRisk"]["riskLevel"] == "low"


async def test_seller_support_for_unknown_seller_fails(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(type="seller-support", data={"sellerId": 9999}))

    assert result.success is False
    assert result.error == "Seller 9999 not found"


async def test_inventory_check_flags_low_stock(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(
        type="inventory-check", data={"sellerId": seed["seller"]},
    ))

    alerts = {a["productId"]: a["type"] for a in result.data["alerts"]}
    assert alerts[seed["shoes"]] == "low_stock"
    assert alerts[seed["boots"]] == "no_recent_sales"
    assert seed["skirt"] not in alerts


async def test_maintenance_sweep(marketplace_orchestrator, seed):
    result = await marketplace_orchestrator.execute(AgentTask(type="maintenance-sweep"))

    assert result.success is True
    assert result.data["transactionHealth"]["totalTransactions"] == 2
    assert result.data["qaQueue"]["pending"] == 1
    assert result.data["qaQueue"]["items"][0]["productId"] == seed["skirt"]


@pytest.mark.parametrize("task_type", ["qa-queue", "transaction-health"])
async def test_tasks_without_payload(marketplace_orchestrator, seed, task_type):
    result = await marketplace_orchestrator.execute(AgentTask(type=task_type))
    assert result.success is True
