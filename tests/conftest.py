import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_TOKEN"] = "test-admin-token"
os.environ["ECOMANAGER_WEBHOOK_SECRET"] = "test-ecomanager-secret"
os.environ["MAYSTRO_WEBHOOK_SECRET"] = "test-maystro-secret"
os.environ["ENVIRONMENT"] = "test"
os.environ["SCHEDULER_ENABLED"] = "false"

import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from orderdesk.database import Base, get_db
from orderdesk.models import Agent, Order, ShippingAccount, ShippingCompany
from orderdesk.services.maystro_service import MaystroClient

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token"}


class FakeCache:
    """In-memory stand-in for the Redis client used by services."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)
            self.ttls.pop(key, None)

    def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    def expire(self, key, ttl):
        self.ttls[key] = ttl


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def client(db_session):
    from orderdesk.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return dict(ADMIN_HEADERS)


@pytest.fixture
def fake_cache():
    return FakeCache()


@pytest.fixture
def make_agent(db_session):
    def _make_agent(code, max_orders=5, online=True, role="AGENT_SUIVI", is_active=True, now=NOW):
        agent = Agent(
            id=uuid.uuid4(),
            agent_code=code,
            name=f"Agent {code}",
            role=role,
            max_orders=max_orders,
            is_active=is_active,
            last_activity_at=now - timedelta(minutes=1) if online else now - timedelta(hours=2),
        )
        db_session.add(agent)
        db_session.commit()
        return agent

    return _make_agent


@pytest.fixture
def make_order(db_session):
    counter = {"value": 0}

    def _make_order(reference=None, created_at=None, **fields):
        counter["value"] += 1
        order = Order(
            id=uuid.uuid4(),
            reference=reference or f"ORD-{counter['value']:04d}",
            store_identifier=fields.pop("store_identifier", "NATU"),
            created_at=created_at or NOW - timedelta(minutes=100 - counter["value"]),
            **fields,
        )
        db_session.add(order)
        db_session.commit()
        return order

    return _make_order


@pytest.fixture
def make_account(db_session):
    def _make_account(name="Maystro main", slug="maystro", is_active=True):
        company = db_session.query(ShippingCompany).filter(ShippingCompany.slug == slug).first()
        if company is None:
            company = ShippingCompany(id=uuid.uuid4(), name=slug.title(), slug=slug)
            db_session.add(company)
        account = ShippingAccount(
            id=uuid.uuid4(),
            name=name,
            company=company,
            credentials={"api_key": f"key-{name}"},
            is_active=is_active,
        )
        db_session.add(account)
        db_session.commit()
        return account

    return _make_account


def _maystro_payload(reference, status=41, tracking="TRK-1", uuid_value=None):
    return {
        "external_order_id": reference,
        "status": status,
        "tracking_number": tracking,
        "display_id": f"D-{reference}",
        "instance_uuid": uuid_value or f"uuid-{reference}",
    }


class MaystroStub:
    """Serves ``/api/stores/orders/`` from a dict of payloads keyed by reference."""

    def __init__(self, payloads=None, responses=None):
        self.payloads = payloads or {}
        self.responses = list(responses or [])
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        refs = [ref for ref in request.url.params.get("external_order_id", "").split(",") if ref]
        results = [self.payloads[ref] for ref in refs if ref in self.payloads]
        return httpx.Response(200, json={"list": {"results": results, "next": None, "count": len(results)}})

    payload = staticmethod(_maystro_payload)

    def requested_references(self):
        refs = []
        for request in self.requests:
            refs.extend(ref for ref in request.url.params.get("external_order_id", "").split(",") if ref)
        return refs

    def factory(self, account):
        return MaystroClient(
            api_key=account.credentials["api_key"],
            transport=httpx.MockTransport(self.handler),
            sleep_func=lambda seconds: None,
        )


@pytest.fixture
def maystro_stub():
    return MaystroStub
