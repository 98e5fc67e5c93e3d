import os

# Keep the module-level engine off Postgres and the app off background loops
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CREATE_SCHEMA_ON_STARTUP", "false")

from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
import pytest

from agent_dispatch.agents.llm import LLMClient
from agent_dispatch.db.models import (
    User,
    Event,
    LegalDocument,
    LegalClause,
    Product,
    Purchase,
    ProductReview,
)
from agent_dispatch.db.session import build_engine, build_session_factory, create_schema
from agent_dispatch.domain.states import QueueName
from agent_dispatch.main import create_app
from agent_dispatch.orchestrator.legal import LegalOrchestrator
from agent_dispatch.orchestrator.marketplace import MarketplaceOrchestrator
from agent_dispatch.queue.job_queue import JobQueue
from agent_dispatch.settings import Settings
from agent_worker.runner import WorkerRunner

WAIVER_TEMPLATE = (
    "Participant Waiver and Release. I, {{participant_name}}, agree to release and hold harmless "
    "the organizer of {{event_name}} on {{event_date}}. I acknowledge the assumption of risk "
    "inherent in dancing. I agree to indemnify the organizer. This waiver is governed by the laws "
    "of the organizer's home state. Signature: ________"
)

CONTRACT_TEMPLATE = (
    "Service Contract. The term of this agreement begins on the effective date. Payment of the "
    "fee is due within 30 days of invoice. Either party may terminate with notice. This contract "
    "is governed by the laws of Argentina. Signed by both parties."
)

API_KEYS = {
    "admin": "admin-key",
    "seller": "seller-key",
    "buyer": "buyer-key",
    "newbie": "newbie-key",
}


class StubLLM(LLMClient):
    """Returns canned completions (None by default, i.e. 'not configured')."""

    def __init__(self, responses: Optional[list[Optional[str]]] = None):
        super().__init__(api_url=None)
        self.responses = list(responses or [])
        self.prompts: list[str] = []

    async def complete(self, prompt, system_prompt=None):
        self.prompts.append(prompt)
        return self.responses.pop(0) if self.responses else None


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        QUEUE_ENABLED=True,
        SCHEDULER_ENABLED=False,
        CREATE_SCHEMA_ON_STARTUP=False,
        WORKER_HEARTBEAT_SECONDS=30,
    )


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
async def seed(session_factory) -> dict:
    now = datetime.now(timezone.utc)
    async with session_factory() as session:
        admin = User(name="Ada Admin", email="admin@example.com", role="admin", api_key=API_KEYS["admin"],
                     created_at=now - timedelta(days=400))
        seller = User(name="Sam Seller", email="sam@example.com", api_key=API_KEYS["seller"],
                      city="Buenos Aires", country="Argentina", created_at=now - timedelta(days=200))
        buyer = User(name="Bea Buyer", email="bea@example.com", api_key=API_KEYS["buyer"],
                     created_at=now - timedelta(days=30))
        newbie = User(name="Ned New", email="ned@example.com", api_key=API_KEYS["newbie"], created_at=now)
        session.add_all([admin, seller, buyer, newbie])
        await session.flush()

        event = Event(title="Tango Night", start_date=datetime(2026, 12, 1, 20, 0, tzinfo=timezone.utc),
                      venue_name="Salon Canning", location="Buenos Aires")
        waiver = LegalDocument(title="Dance Waiver", category="waiver", template_content=WAIVER_TEMPLATE)
        contract = LegalDocument(title="Service Contract", category="contract", template_content=CONTRACT_TEMPLATE)
        session.add_all([event, waiver, contract])

        session.add_all([
            LegalClause(category="waiver", clause_type="release_of_liability", title="Release of Liability",
                        content="Participant releases the organizer from all claims.", required=True),
            LegalClause(category="waiver", clause_type="media_release", title="Photo and Video Release",
                        content="Participant consents to being photographed."),
        ])

        shoes = Product(seller_id=seller.id, title="Tango Shoes Deluxe", category="shoes", price=100.0, cost=40.0,
                        inventory=3, tags=["tango", "shoes"], media_urls=["https://cdn.example.com/shoes.jpg"],
                        status="active",
                        description=" ".join(["Handmade leather tango shoes with suede soles"] * 4))
        skirt = Product(seller_id=seller.id, title="Practice Skirt", category="apparel", price=50.0,
                        inventory=120, tags=["tango", "apparel"], status="pending_review",
                        description="A skirt.")
        boots = Product(seller_id=seller.id, title="Dance Boots", category="shoes", price=120.0,
                        inventory=10, tags=["shoes"], status="active", description="Boots for dancing.")
        session.add_all([shoes, skirt, boots])
        await session.flush()

        first = Purchase(product_id=shoes.id, buyer_id=buyer.id, amount=100.0, status="completed",
                         created_at=now - timedelta(days=2))
        refunded = Purchase(product_id=skirt.id, buyer_id=buyer.id, amount=50.0, status="completed",
                            refund_status="refunded", refund_amount=50.0, created_at=now - timedelta(days=10))
        session.add_all([first, refunded])

        session.add_all([
            ProductReview(product_id=shoes.id, user_id=buyer.id, rating=5, verified_purchase=True, helpful_votes=4,
                          text="Excellent shoes, great grip and I love the fit. Worth every peso."),
            ProductReview(product_id=shoes.id, user_id=newbie.id, rating=5, text="Great!"),
            ProductReview(product_id=shoes.id, user_id=newbie.id, rating=5, text="Great!"),
            ProductReview(product_id=shoes.id, user_id=admin.id, rating=2, verified_purchase=True,
                          text="Poor stitching, disappointed after two milongas."),
        ])
        await session.commit()

        return {
            "admin": admin.id,
            "seller": seller.id,
            "buyer": buyer.id,
            "newbie": newbie.id,
            "event": event.id,
            "waiver": waiver.id,
            "contract": contract.id,
            "shoes": shoes.id,
            "skirt": skirt.id,
            "boots": boots.id,
            "purchase": first.id,
            "refunded_purchase": refunded.id,
        }


@pytest.fixture
def legal_orchestrator(session_factory, llm, test_settings):
    return LegalOrchestrator(session_factory, llm, test_settings)


@pytest.fixture
def marketplace_orchestrator(session_factory, llm, test_settings):
    return MarketplaceOrchestrator(session_factory, llm, test_settings)


@pytest.fixture
def legal_queue(session_factory, test_settings):
    return JobQueue(QueueName.LEGAL, session_factory, test_settings)


@pytest.fixture
def marketplace_queue(session_factory, test_settings):
    return JobQueue(QueueName.MARKETPLACE, session_factory, test_settings)


@pytest.fixture
def legal_worker(legal_orchestrator, session_factory, test_settings):
    return WorkerRunner(QueueName.LEGAL, legal_orchestrator, session_factory,
                        worker_id="test-legal", settings=test_settings)


@pytest.fixture
def marketplace_worker(marketplace_orchestrator, session_factory, test_settings):
    return WorkerRunner(QueueName.MARKETPLACE, marketplace_orchestrator, session_factory,
                        worker_id="test-marketplace", settings=test_settings)


@pytest.fixture
def app(session_factory, llm, test_settings, seed):
    return create_app(session_factory=session_factory, llm=llm, settings=test_settings)


@pytest.fixture
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


def auth(role: str) -> dict[str, str]:
    return {"X-API-Key": API_KEYS[role]}
