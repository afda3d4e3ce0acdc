"""
Centralized Test Configuration.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, Pool

from pos_backend.app.main import app
from pos_backend.app.db.session import get_db, Base
from pos_backend.app.db.views import LedgerCapabilities, create_summary_view, get_ledger_capabilities
from pos_backend.app.core.dependencies import get_clock
from pos_backend.app.core.jwt import create_access_token
from pos_backend.app.core.reliability import cache_circuit_breaker
from pos_backend.app.domain.ledger.ledger_store import customer_locks
from pos_backend.app.models.customer import Customer
from pos_backend.app.models.enums import UserRole
from pos_backend.app.models.ledger_enums import OrderStatus, PaymentMethod, PaymentStatus
from pos_backend.app.models.order import Order
from pos_backend.app.models.user import User
import pos_backend.app.core.redis_client as redis_client_module

TEST_NOW = datetime(2026, 10, 17, 10, 30, tzinfo=timezone.utc)


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class FrozenClock:
    """Clock pinned to a fixed instant; advance() moves it forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


@pytest.fixture
def clock():
    return FrozenClock(TEST_NOW)


@pytest.fixture
async def engine(tmp_path):
    """
    File-backed SQLite per test.

    Every session gets its own connection, so concurrent requests behave like
    separate database clients.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        poolclass=NullPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def capabilities():
    """Manual aggregation path by default; see summary_view_capabilities."""
    return LedgerCapabilities(summary_view_available=False)


@pytest.fixture
async def summary_view_capabilities(engine):
    await create_summary_view(engine)
    return LedgerCapabilities(summary_view_available=True)


@pytest.fixture
def redis_mock():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(redis_mock):
    """Swap the Redis client and reset process-wide ledger state for each test."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_mock
    customer_locks.clear()
    cache_circuit_breaker.reset_state()
    yield
    redis_client_module.redis_client = original_client
    customer_locks.clear()
    cache_circuit_breaker.reset_state()


@pytest.fixture
async def client(session_factory, clock, capabilities):
    """Async client for testing."""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_ledger_capabilities] = lambda: capabilities

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@dataclass
class Tenant:
    owner: User
    manager: User
    cashier: User

    @property
    def id(self) -> int:
        return self.owner.id

    def headers(self, user: User = None) -> dict:
        user = user or self.owner
        token = create_access_token(claims={
            "sub": user.username,
            "user_id": user.id,
            "tenant_id": self.owner.id,
            "role": user.role.value,
        })
        return {"Authorization": f"Bearer {token}"}


async def _create_tenant(db_session, clock, prefix: str) -> Tenant:
    now = clock()
    owner = User(email=f"{prefix}owner@test.com", username=f"{prefix}owner", role=UserRole.ADMIN,
                 created_at=now, updated_at=now)
    db_session.add(owner)
    await db_session.flush()
    manager = User(email=f"{prefix}manager@test.com", username=f"{prefix}manager", role=UserRole.MANAGER,
                   tenant_id=owner.id, created_at=now, updated_at=now)
    cashier = User(email=f"{prefix}cashier@test.com", username=f"{prefix}cashier", role=UserRole.CASHIER,
                   tenant_id=owner.id, created_at=now, updated_at=now)
    db_session.add_all([manager, cashier])
    await db_session.commit()
    return Tenant(owner=owner, manager=manager, cashier=cashier)


@pytest.fixture
async def tenant(db_session, clock):
    return await _create_tenant(db_session, clock, "")


@pytest.fixture
async def other_tenant(db_session, clock):
    """Second restaurant for cross-tenant tests."""
    return await _create_tenant(db_session, clock, "other")


@pytest.fixture
def make_customer(db_session, clock, tenant):
    async def _make(full_name="Ali Raza", phone=None, credit_limit="0", owner=None):
        now = clock()
        customer = Customer(
            user_id=(owner or tenant).id,
            full_name=full_name,
            phone=phone,
            credit_limit=Decimal(credit_limit),
            created_at=now,
            updated_at=now,
        )
        db_session.add(customer)
        await db_session.commit()
        return customer
    return _make


@pytest.fixture
def make_order(db_session, clock, tenant):
    counter = {"n": 0}

    async def _make(
        customer=None,
        total="1000.00",
        payment_method=PaymentMethod.ACCOUNT,
        payment_status=PaymentStatus.PENDING,
        order_status=OrderStatus.PENDING,
        order_date=None,
        amount_paid="0",
        amount_due=None,
        subtotal=None,
        loyalty_discount="0",
        delivery_charges="0",
    ):
        counter["n"] += 1
        now = clock()
        order = Order(
            user_id=tenant.id,
            customer_id=customer.id if customer else None,
            order_number=f"ORD-{counter['n']:04d}",
            order_type="takeaway",
            order_date=order_date or now,
            subtotal=Decimal(subtotal) if subtotal is not None else Decimal(total),
            loyalty_discount_amount=Decimal(loyalty_discount),
            delivery_charges=Decimal(delivery_charges),
            total_amount=Decimal(total),
            amount_paid=Decimal(amount_paid),
            amount_due=Decimal(amount_due) if amount_due is not None else None,
            payment_method=payment_method,
            payment_status=payment_status,
            order_status=order_status,
            created_at=now,
            updated_at=now,
        )
        db_session.add(order)
        await db_session.commit()
        return order
    return _make
