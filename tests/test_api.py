from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import update

from agent_dispatch.db.models import Job
from agent_dispatch.domain.models import TaskResult
from agent_dispatch.domain.states import QueueName
from agent_dispatch.main import create_app
from agent_dispatch.settings import Settings
from agent_worker.runner import WorkerRunner

from conftest import auth

LEGAL = "/api/legal/agents"
MARKET = "/api/marketplace-agents"

SAMPLE_REVIEW = {"content": "Sample waiver text", "category": "waiver"}


def _without_timestamp(review: dict) -> dict:
    return {k: v for k, v in review.items() if k != "reviewedAt"}


async def _drain(app, queue_name) -> int:
    orchestrator = (
        app.state.legal_orchestrator if queue_name == QueueName.LEGAL else app.state.marketplace_orchestrator
    )
    worker = WorkerRunner(queue_name, orchestrator, app.state.session_factory, worker_id="api-test")
    return await worker.drain()


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["queues"] == {"legal-agents": True, "marketplace-agents": True}


# ---------- Legal: sync / async ----------

async def test_review_document_sync(client):
    resp = await client.post(f"{LEGAL}/review-document", json={**SAMPLE_REVIEW, "async": False}, headers=auth("buyer"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["review"]["overallScore"] == 40
    assert body["review"]["riskScore"] == 50


async def test_review_document_async_matches_sync(client, app):
    sync = (await client.post(f"{LEGAL}/review-document", json=SAMPLE_REVIEW, headers=auth("buyer"))).json()

    resp = await client.post(f"{LEGAL}/review-document", json={**SAMPLE_REVIEW, "async": True}, headers=auth("buyer"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    job_id = body["jobId"]
    assert body["message"] == "review-document queued for processing"

    pending = (await client.get(f"{LEGAL}/job-status/{job_id}", headers=auth("buyer"))).json()
    assert pending["job"]["state"] == "waiting"
    assert pending["job"]["result"] is None

    assert await _drain(app, QueueName.LEGAL) == 1

    resp = await client.get(f"{LEGAL}/job-status/{job_id}", headers=auth("buyer"))
    assert resp.status_code == 200
    job = resp.json()["job"]
    assert job["state"] == "completed"
    assert job["progress"] == 100
    assert job["error"] is None
    assert _without_timestamp(job["result"]) == _without_timestamp(sync["review"])


async def test_compare_template_with_itself(client, seed):
    payload = {"templateIdA": seed["waiver"], "templateIdB": seed["waiver"]}
    resp = await client.post(f"{LEGAL}/compare-documents", json=payload, headers=auth("buyer"))

    assert resp.status_code == 200
    comparison = resp.json()["comparison"]
    assert comparison["differences"] == []
    assert "near-identical" in comparison["recommendation"]


async def test_business_failure_is_500(client):
    payload = {"templateIdA": 9999, "templateIdB": 9998}
    resp = await client.post(f"{LEGAL}/compare-documents", json=payload, headers=auth("buyer"))

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "One or both templates not found"}


async def test_template_quality_merges_result(client, seed):
    resp = await client.get(f"{LEGAL}/template-quality/{seed['waiver']}", headers=auth("buyer"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["qualityScore"] == body["review"]["overallScore"]


async def test_optimize_workflow_route(client):
    payload = {"documentType": "waiver", "signers": [{"role": "participant", "email": "p@example.com"}]}
    resp = await client.post(f"{LEGAL}/optimize-workflow", json=payload, headers=auth("buyer"))

    assert resp.status_code == 200
    optimization = resp.json()["optimization"]
    assert optimization["recommendedFlow"] == "parallel"
    assert optimization["signers"][0]["email"] == "p@example.com"


# ---------- Validation and auth ----------

async def test_missing_document_source_is_400(client):
    resp = await client.post(f"{LEGAL}/review-document", json={"category": "waiver"}, headers=auth("buyer"))

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Validation failed"
    assert body["details"]


async def test_invalid_field_type_is_400(client):
    resp = await client.post(
        f"{MARKET}/fraud-check", json={"productId": "shoes", "amount": -1}, headers=auth("buyer")
    )

    assert resp.status_code == 400
    locs = {tuple(d["loc"]) for d in resp.json()["details"]}
    assert ("body", "productId") in locs
    assert ("body", "amount") in locs


async def test_legal_routes_require_an_api_key(client):
    resp = await client.post(f"{LEGAL}/review-document", json=SAMPLE_REVIEW)
    assert resp.status_code == 401
    assert resp.json() == {"message": "Authentication required"}

    resp = await client.post(f"{LEGAL}/review-document", json=SAMPLE_REVIEW, headers={"X-API-Key": "bogus"})
    assert resp.status_code == 401


async def test_seller_insights_denied_before_dispatch(client, app, seed):
    calls = []

    class RecordingOrchestrator:
        async def execute(self, task):
            calls.append(task)
            return TaskResult.ok({})

    app.state.marketplace_orchestrator = RecordingOrchestrator()

    resp = await client.get(f"{MARKET}/seller-insights/{seed['seller']}", headers=auth("buyer"))

    assert resp.status_code == 403
    assert resp.json() == {"message": "Unauthorized"}
    assert calls == []

    resp = await client.get(f"{MARKET}/seller-insights/{seed['seller']}", headers=auth("seller"))
    assert resp.status_code == 200
    assert [t.type for t in calls] == ["seller-support"]


async def test_seller_insights_for_owner(client, seed):
    resp = await client.get(f"{MARKET}/seller-insights/{seed['seller']}?period=week", headers=auth("seller"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["performance"]["period"] == "week"
    assert body["forecast"]["sellerId"] == seed["seller"]


@pytest.mark.parametrize("path", ["/qa-queue", "/transaction-health"])
async def test_admin_routes(client, path):
    assert (await client.get(f"{MARKET}{path}", headers=auth("buyer"))).status_code == 403
    assert (await client.get(f"{MARKET}{path}")).status_code == 401
    assert (await client.get(f"{MARKET}{path}", headers=auth("admin"))).status_code == 200


async def test_admin_requeue_and_purge(client):
    assert (await client.post("/api/admin/requeue-stalled", headers=auth("seller"))).status_code == 403

    resp = await client.post("/api/admin/requeue-stalled", headers=auth("admin"))
    assert resp.json() == {"requeued_count": 0}

    resp = await client.post("/api/admin/purge", json={"keep_completed": 0}, headers=auth("admin"))
    assert resp.status_code == 200
    assert resp.json()["purged"] == {"legal-agents": 0, "marketplace-agents": 0}


# ---------- Marketplace ----------

async def test_fraud_check_uses_caller_as_buyer(client, seed):
    resp = await client.post(
        f"{MARKET}/fraud-check", json={"productId": seed["shoes"], "amount": 100}, headers=auth("buyer")
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == seed["buyer"]
    assert body["decision"] == "approve"


async def test_fraud_check_async_is_critical_priority(client, app, seed):
    resp = await client.post(
        f"{MARKET}/fraud-check",
        json={"productId": seed["shoes"], "amount": 100, "async": True},
        headers=auth("buyer"),
    )
    job_id = resp.json()["jobId"]

    job = (await client.get(f"{MARKET}/job-status/{job_id}", headers=auth("buyer"))).json()["job"]
    assert job["priority"] == "critical"
    assert job["name"] == "fraud-check"


async def test_analyze_reviews_without_body(client, seed):
    resp = await client.post(f"{MARKET}/analyze-reviews/{seed['shoes']}")

    assert resp.status_code == 200
    assert resp.json()["sentiment"]["reviewCount"] == 4


async def test_analyze_review_text(client):
    resp = await client.post(f"{MARKET}/analyze-review-text", json={"reviewText": "I love these, excellent"})

    assert resp.status_code == 200
    assert resp.json()["sentiment"] == "positive"


async def test_recommendations_cold_start(client, seed):
    resp = await client.get(f"{MARKET}/recommendations/{seed['newbie']}?limit=2")

    body = resp.json()
    assert body["strategy"] == "cold_start"
    assert len(body["recommendations"]) == 2


async def test_recommendations_exclude_owned(client, seed):
    resp = await client.get(f"{MARKET}/recommendations/{seed['buyer']}")

    body = resp.json()
    assert body["strategy"] == "content_based"
    ids = [r["productId"] for r in body["recommendations"]]
    assert seed["shoes"] not in ids
    assert ids[0] == seed["boots"]


async def test_transaction_status(client, seed):
    resp = await client.get(f"{MARKET}/transaction-status/{seed['purchase']}")

    assert resp.status_code == 200
    assert resp.json()["status"]["status"] == "completed"


async def test_refunding_twice_is_500(client, seed):
    payload = {"purchaseId": seed["refunded_purchase"], "reason": "Changed my mind"}
    resp = await client.post(f"{MARKET}/process-refund", json=payload, headers=auth("buyer"))

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": f"Purchase {seed['refunded_purchase']} already refunded"}


async def test_inventory_check_is_scoped_to_caller(client, seed):
    resp = await client.get(f"{MARKET}/inventory-check?lowStockThreshold=2", headers=auth("seller"))

    body = resp.json()
    assert body["sellerId"] == seed["seller"]
    assert body["productCount"] == 3


async def test_qa_review_with_auto_approve(client, seed):
    resp = await client.post(f"{MARKET}/qa-review/{seed['shoes']}", json={"autoApprove": True}, headers=auth("seller"))

    assert resp.status_code == 200
    assert resp.json()["status"] == "active"


# ---------- Job status ----------

async def test_unknown_job_is_404(client):
    resp = await client.get(f"{LEGAL}/job-status/does-not-exist", headers=auth("buyer"))

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Job not found"}


async def test_job_ids_are_scoped_to_their_queue(client):
    resp = await client.post(f"{LEGAL}/review-document", json={**SAMPLE_REVIEW, "async": True}, headers=auth("buyer"))
    job_id = resp.json()["jobId"]

    assert (await client.get(f"{MARKET}/job-status/{job_id}", headers=auth("buyer"))).status_code == 404


async def test_failed_job_reports_error(client, app, seed):
    resp = await client.post(
        f"{MARKET}/process-refund",
        json={"purchaseId": seed["refunded_purchase"], "reason": "Again", "async": True},
        headers=auth("buyer"),
    )
    job_id = resp.json()["jobId"]

    # Business failures are retried like errors; reset the backoff between attempts
    for _ in range(3):
        await _drain(app, QueueName.MARKETPLACE)
        async with app.state.session_factory() as session:
            await session.execute(
                update(Job).where(Job.id == job_id)
                .values(available_at=datetime.now(timezone.utc) - timedelta(seconds=1))
            )
            await session.commit()

    job = (await client.get(f"{MARKET}/job-status/{job_id}", headers=auth("buyer"))).json()["job"]
    assert job["state"] == "failed"
    assert job["attempts"] == 3
    assert job["result"] is None
    assert "already refunded" in job["error"]


# ---------- Queue disabled ----------

@pytest.fixture
async def no_queue_client(session_factory, llm, seed):
    app = create_app(session_factory=session_factory, llm=llm, settings=Settings(
        QUEUE_ENABLED=False, SCHEDULER_ENABLED=False, CREATE_SCHEMA_ON_STARTUP=False,
    ))
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def test_async_without_queue_is_503(no_queue_client):
    resp = await no_queue_client.post(
        f"{LEGAL}/review-document", json={**SAMPLE_REVIEW, "async": True}, headers=auth("buyer")
    )

    assert resp.status_code == 503
    assert resp.json() == {"success": False, "error": "Background processing is unavailable"}


async def test_sync_without_queue_still_works(no_queue_client):
    resp = await no_queue_client.post(f"{LEGAL}/review-document", json=SAMPLE_REVIEW, headers=auth("buyer"))
    assert resp.status_code == 200


async def test_job_status_without_queue_is_503(no_queue_client):
    assert (await no_queue_client.get(f"{MARKET}/job-status/abc", headers=auth("buyer"))).status_code == 503


async def test_marketplace_job_status_requires_auth(client):
    resp = await client.get(f"{MARKET}/job-status/anything")

    assert resp.status_code == 401
    assert resp.json() == {"message": "Authentication required"}


async def test_seller_behavior_is_admin_only(client, seed):
    path = f"{MARKET}/seller-behavior/{seed['seller']}"
    assert (await client.get(path, headers=auth("seller"))).status_code == 403

    resp = await client.get(path, headers=auth("admin"))
    assert resp.status_code == 200
    assert resp.json()["flags"] == ["high_refund_rate"]


async def test_bulk_pricing_checks_ownership_before_dispatch(client, app, seed):
    calls = []

    class RecordingOrchestrator:
        async def execute(self, task):
            calls.append(task)
            return TaskResult.ok({})

    app.state.marketplace_orchestrator = RecordingOrchestrator()

    resp = await client.get(f"{MARKET}/bulk-pricing/{seed['seller']}", headers=auth("buyer"))
    assert resp.status_code == 403
    assert calls == []

    resp = await client.get(f"{MARKET}/bulk-pricing/{seed['seller']}", headers=auth("admin"))
    assert resp.status_code == 200
    assert [(t.type, t.data) for t in calls] == [("bulk-pricing", {"sellerId": seed["seller"]})]


async def test_bulk_pricing_for_owner(client, seed):
    resp = await client.get(f"{MARKET}/bulk-pricing/{seed['seller']}", headers=auth("seller"))

    assert resp.status_code == 200
    assert resp.json()["productCount"] == 2


async def test_similar_products_and_bundles(client, seed):
    similar = (await client.get(f"{MARKET}/recommendations/similar/{seed['shoes']}?limit=3")).json()
    bundles = (await client.get(f"{MARKET}/bundle-suggestions/{seed['shoes']}")).json()

    assert [s["productId"] for s in similar] == [seed["boots"]]
    # The only co-purchase is the skirt, which is not listed yet
    assert bundles == []


async def test_listing_quality_requires_auth(client, seed):
    path = f"{MARKET}/listing-quality/{seed['shoes']}"
    assert (await client.get(path)).status_code == 401

    resp = await client.get(path, headers=auth("seller"))
    assert resp.status_code == 200
    assert resp.json()["overallScore"] == 66.0


async def test_settlement_status_is_for_the_caller(client, seed):
    resp = await client.get(f"{MARKET}/settlement-status", headers=auth("seller"))

    body = resp.json()
    assert body["sellerId"] == seed["seller"]
    assert body["pendingAmount"] == 95.0


async def test_dead_stock_threshold(client, seed):
    default = (await client.get(f"{MARKET}/dead-stock", headers=auth("seller"))).json()
    strict = (await client.get(f"{MARKET}/dead-stock?threshold=1", headers=auth("seller"))).json()

    assert default["thresholdDays"] == 90
    assert len(default["deadStock"]) == 1
    assert strict["thresholdDays"] == 1
    assert len(strict["deadStock"]) == 3


async def test_dead_stock_async(client, app, seed):
    resp = await client.get(f"{MARKET}/dead-stock?async=true", headers=auth("seller"))
    job_id = resp.json()["jobId"]

    assert await _drain(app, QueueName.MARKETPLACE) == 1
    job = (await client.get(f"{MARKET}/job-status/{job_id}", headers=auth("seller"))).json()["job"]
    assert job["state"] == "completed"
    assert job["result"]["totalTiedUpValue"] == 1200.0
