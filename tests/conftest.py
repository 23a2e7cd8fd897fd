import json
import os

import httpx
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# app.config reads DATABASE_URL at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("OPENROUTER_API_KEY", "")

from app.main import app
from app.billing.plans import PLAN_DEFINITIONS, PlanCatalog
from app.config import settings
from app.database import Base, get_db
from app.dependencies import configure_services
from app.errors import UpstreamError, WebhookSignatureError
from app.models import User
from app.providers.openrouter import OpenRouterClient
from app.services.config_cache import ConfigCache
from app.services.model_config_service import seed_model_configs
from app.services.settings_service import SettingsService
from app.services.usage_ledger import UsageLedger


ADMIN_KEY = "test-admin-key"

# Fixed reference time for billing tests: 2025-01-01T00:00:00Z
T0 = 1735689600
DAY = 86400


@pytest.fixture
async def test_db(tmp_path):
    """Create a fresh SQLite database file for each test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async def override_get_db():
        async with async_session() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db

    yield async_session

    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.fixture
async def db(test_db):
    async with test_db() as session:
        yield session


@pytest.fixture
async def seeded(test_db):
    """Default tier models and settings, as written on first boot."""
    async with test_db() as session:
        await seed_model_configs(session)
        await SettingsService(session).ensure_defaults()
    return test_db


@pytest.fixture
def make_user(test_db):
    """Insert a user row. Extra keyword arguments become column values."""
    async def _make(extension_user_id: str = "u1", tier: str = "free", **fields) -> User:
        async with test_db() as session:
            user = User(extension_user_id=extension_user_id, tier=tier, **fields)
            session.add(user)
            await session.commit()
            await session.refresh(user)
            return user
    return _make


@pytest.fixture
def catalog():
    """Plan catalog with readable price ids: price_<plan key>."""
    return PlanCatalog.from_settings({key: f"price_{key}" for key in PLAN_DEFINITIONS})


# =============================================================================
# Fake Stripe
# =============================================================================

class FakeGateway:
    """In-memory stand-in for StripeGateway, same method names and shapes."""

    def __init__(self):
        self.subscriptions = {}
        self.customers = {}
        self.checkout_sessions = []
        self.updates = []
        self.cancellations = []
        self.fail = {}

    def _maybe_fail(self, operation: str):
        status = self.fail.get(operation)
        if status:
            raise UpstreamError(f"Stripe {operation} failed", status_code=status, provider="stripe")

    def add_subscription(self, subscription: dict) -> dict:
        self.subscriptions[subscription["id"]] = subscription
        return subscription

    def add_customer(self, customer_id: str, email: str = None) -> dict:
        customer = {"id": customer_id, "email": email, "metadata": {}}
        self.customers[customer_id] = customer
        return customer

    async def retrieve_subscription(self, subscription_id):
        self._maybe_fail("retrieve")
        if subscription_id not in self.subscriptions:
            raise UpstreamError(f"No such subscription: '{subscription_id}'", status_code=404, provider="stripe")
        return json.loads(json.dumps(self.subscriptions[subscription_id]))

    async def update_subscription(self, subscription_id, **params):
        self._maybe_fail("update")
        self.updates.append((subscription_id, params))
        subscription = self.subscriptions[subscription_id]
        if "cancel_at_period_end" in params:
            subscription["cancel_at_period_end"] = params["cancel_at_period_end"]
        if "items" in params:
            subscription["items"]["data"][0]["price"] = {
                "id": params["items"][0]["price"],
                "unit_amount": subscription["items"]["data"][0]["price"].get("unit_amount"),
            }
        if "metadata" in params:
            subscription["metadata"] = {**subscription.get("metadata", {}), **params["metadata"]}
        return json.loads(json.dumps(subscription))

    async def cancel_subscription(self, subscription_id, prorate=False, invoice_now=False):
        self._maybe_fail("cancel")
        self.cancellations.append((subscription_id, prorate, invoice_now))
        subscription = self.subscriptions[subscription_id]
        subscription["status"] = "canceled"
        subscription["canceled_at"] = T0 + DAY
        subscription["ended_at"] = T0 + DAY
        return json.loads(json.dumps(subscription))

    async def list_subscriptions(self, customer_id, status="all"):
        self._maybe_fail("list")
        return [s for s in self.subscriptions.values() if s.get("customer") == customer_id]

    async def create_customer(self, email, metadata):
        self._maybe_fail("customer")
        customer_id = f"cus_new_{len(self.customers) + 1}"
        customer = self.add_customer(customer_id, email)
        customer["metadata"] = metadata
        return customer

    async def find_customers_by_email(self, email):
        self._maybe_fail("list")
        return [c for c in self.customers.values() if c.get("email") == email]

    async def create_checkout_session(self, params):
        self._maybe_fail("checkout")
        self.checkout_sessions.append(params)
        number = len(self.checkout_sessions)
        return {"id": f"cs_test_{number}", "url": f"https://checkout.stripe.test/cs_test_{number}"}

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise WebhookSignatureError("Webhook signature verification failed")
        return json.loads(payload)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def stripe_subscription():
    """Build a Stripe subscription object (dict form)."""
    def _build(
        subscription_id: str = "sub_1",
        customer: str = "cus_1",
        price: str = "price_managed_monthly",
        status: str = "active",
        metadata: dict = None,
        period_start: int = T0,
        period_end: int = T0 + 30 * DAY,
        trial_end: int = None,
        unit_amount: int = 2000,
        **fields,
    ) -> dict:
        subscription = {
            "id": subscription_id,
            "object": "subscription",
            "customer": customer,
            "status": status,
            "metadata": metadata or {},
            "start_date": period_start,
            "trial_end": trial_end,
            "cancel_at": None,
            "cancel_at_period_end": False,
            "canceled_at": None,
            "ended_at": None,
            "items": {"data": [{
                "id": f"si_{subscription_id}",
                "price": {"id": price, "unit_amount": unit_amount},
                "quantity": 1,
                "current_period_start": period_start,
                "current_period_end": period_end,
            }]},
        }
        subscription.update(fields)
        return subscription
    return _build


@pytest.fixture
def stripe_event():
    """Wrap a Stripe object in a webhook event body."""
    counter = {"n": 0}

    def _build(event_type: str, obj: dict, created: int = T0) -> dict:
        counter["n"] += 1
        return {
            "id": f"evt_{counter['n']}",
            "object": "event",
            "type": event_type,
            "created": created,
            "data": {"object": obj},
        }
    return _build


# =============================================================================
# Fake AI provider
# =============================================================================

class FakeProvider:
    """Chat-completions endpoint served through httpx.MockTransport."""

    def __init__(self):
        self.calls = []
        self.status_code = 200
        self.body = self.completion("Summary text", 1000, 500)

    @staticmethod
    def completion(content, prompt_tokens, completion_tokens) -> dict:
        return {
            "id": "gen-1",
            "choices": [{"message": {"role": "assistant", "content": content}}],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append({
            "url": str(request.url),
            "authorization": request.headers.get("authorization"),
            "json": json.loads(request.content),
        })
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> OpenRouterClient:
        return OpenRouterClient(
            base_url="https://openrouter.test/api/v1",
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config_cache(test_db):
    return ConfigCache(test_db, fallback_api_key="")


@pytest.fixture
def usage_ledger(test_db):
    return UsageLedger(test_db)


@pytest.fixture
def services(test_db, gateway, provider, catalog, config_cache, usage_ledger):
    """Point app.state at the test database and fakes."""
    configure_services(
        app,
        test_db,
        gateway=gateway,
        ai_client=provider.client(),
        catalog=catalog,
        config_cache=config_cache,
        usage_ledger=usage_ledger,
    )
    return app.state


@pytest.fixture
async def client(test_db, services):
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    return {"Authorization": f"Bearer {ADMIN_KEY}", "X-Admin-Email": "ops@example.com"}
