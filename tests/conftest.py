"""
Centralized Test Configuration.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rental_engine.database import get_db
from rental_engine.exceptions import PaymentError
from rental_engine.main import app
from rental_engine.models import Base
from rental_engine.models.payment import IntentStatus
from rental_engine.redis_client import get_redis
from rental_engine.schemas.vehicle import VehicleCreate
from rental_engine.services.payment_gateway import (
    GatewayIntent,
    GatewayRefund,
    PaymentGateway,
    get_payment_gateway,
)
from rental_engine.services.payment_service import PaymentService
from rental_engine.services.reservation_service import ReservationService
from rental_engine.services.substitution_service import SubstitutionService
from rental_engine.services.upload_relay import UploadRelayService
from rental_engine.services.vehicle_service import VehicleService

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

HOST_ID = "host-1"
DRIVER_ID = "driver-1"


# Mock Redis for reliability in CI/CD
class MockRedis:
    """
    In-process stand-in for the commands the engine uses.

    Key expiry runs on a manual clock: ``advance(seconds)`` moves it forward.
    """

    def __init__(self):
        self.store = {}
        self.expires_at = {}
        self.now_ms = 0

    def advance(self, seconds):
        self.now_ms += int(seconds * 1000)

    def _alive(self, key):
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.now_ms:
            self.store.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.store

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key) if self._alive(key) else None

    async def set(self, key, value, nx=False, ex=None):
        if nx and self._alive(key):
            return None
        self.store[key] = value
        if ex:
            self.expires_at[key] = self.now_ms + ex * 1000
        else:
            self.expires_at.pop(key, None)
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                del self.store[key]
                self.expires_at.pop(key, None)
                removed += 1
        return removed

    async def exists(self, *keys):
        return sum(1 for key in keys if self._alive(key))

    async def hset(self, key, mapping=None, **kwargs):
        if not self._alive(key):
            self.store[key] = {}
        values = {**(mapping or {}), **kwargs}
        self.store[key].update(values)
        return len(values)

    async def hgetall(self, key):
        return dict(self.store[key]) if self._alive(key) else {}

    async def expire(self, key, seconds):
        return await self.pexpire(key, seconds * 1000)

    async def pexpire(self, key, milliseconds):
        if not self._alive(key):
            return False
        self.expires_at[key] = self.now_ms + milliseconds
        return True

    async def pttl(self, key):
        if not self._alive(key):
            return -2
        if key not in self.expires_at:
            return -1
        return self.expires_at[key] - self.now_ms

    async def rpush(self, key, *values):
        if not self._alive(key):
            self.store[key] = []
        self.store[key].extend(values)
        return len(self.store[key])

    async def lrange(self, key, start, end):
        if not self._alive(key):
            return []
        items = self.store[key]
        return items[start:] if end == -1 else items[start:end + 1]

    def register_script(self, script):
        async def release(keys, args):
            if self.store.get(keys[0]) == args[0]:
                return await self.delete(keys[0])
            return 0

        return release

    async def flushdb(self):
        self.store = {}
        self.expires_at = {}

    async def aclose(self):
        self.store = {}


class FakePaymentGateway(PaymentGateway):
    """Gateway double honouring idempotency keys the way the real one does."""

    def __init__(self):
        self.intents: dict[str, GatewayIntent] = {}
        self.intent_keys: dict[str, str] = {}
        self.refunds: dict[str, GatewayRefund] = {}
        self.create_calls = 0
        self.fail_with: Exception | None = None

    async def create_intent(self, amount_cents, currency, idempotency_key, metadata):
        if self.fail_with:
            raise self.fail_with
        self.create_calls += 1
        if idempotency_key in self.intent_keys:
            return self.intents[self.intent_keys[idempotency_key]]

        intent = GatewayIntent(
            intent_id=f"pi_{len(self.intents) + 1}",
            amount_cents=amount_cents,
            currency=currency,
            status=IntentStatus.REQUIRES_PAYMENT,
            client_secret=f"secret_{len(self.intents) + 1}",
            metadata=dict(metadata),
        )
        self.intents[intent.intent_id] = intent
        self.intent_keys[idempotency_key] = intent.intent_id
        return intent

    async def fetch_intent(self, intent_id):
        if self.fail_with:
            raise self.fail_with
        if intent_id not in self.intents:
            raise PaymentError("No such payment intent", details={"gateway_status": 404})
        return self.intents[intent_id]

    async def list_intents(self, reservation_id):
        if self.fail_with:
            raise self.fail_with
        return [
            i for i in self.intents.values() if i.metadata.get("reservation_id") == reservation_id
        ]

    async def cancel_intent(self, intent_id):
        if self.fail_with:
            raise self.fail_with
        intent = await self.fetch_intent(intent_id)
        if intent.status not in (IntentStatus.REQUIRES_PAYMENT, IntentStatus.PROCESSING):
            raise PaymentError(
                "Payment gateway rejected the request", details={"gateway_status": 400}
            )
        self.set_status(intent_id, IntentStatus.CANCELED)
        return self.intents[intent_id]

    async def refund(self, intent_id, amount_cents, idempotency_key):
        if self.fail_with:
            raise self.fail_with
        if idempotency_key not in self.refunds:
            self.refunds[idempotency_key] = GatewayRefund(
                refund_id=f"re_{len(self.refunds) + 1}",
                intent_id=intent_id,
                amount_cents=amount_cents,
                status="succeeded",
            )
        return self.refunds[idempotency_key]

    def set_status(self, intent_id, status):
        self.intents[intent_id] = self.intents[intent_id].model_copy(update={"status": status})

    def succeed(self, intent_id):
        self.set_status(intent_id, IntentStatus.SUCCEEDED)


@pytest.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
async def client(session_factory, redis_client, gateway):
    """Async client for testing."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return redis_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}


@pytest.fixture
def vehicle_service(db_session):
    return VehicleService(db_session)


@pytest.fixture
def reservation_service(db_session, redis_client, gateway):
    return ReservationService(db_session, redis_client, gateway)


@pytest.fixture
def payment_service(db_session, redis_client, gateway):
    return PaymentService(db_session, redis_client, gateway)


@pytest.fixture
def substitution_service(db_session, redis_client, gateway):
    return SubstitutionService(db_session, redis_client, gateway)


@pytest.fixture
def upload_relay(redis_client):
    return UploadRelayService(redis_client, ttl_seconds=900)


@pytest.fixture
def make_vehicle(vehicle_service):
    """Factory creating vehicles owned by ``HOST_ID`` unless told otherwise."""

    async def _make(
        daily_rate="50",
        weekly_rate=None,
        monthly_rate=None,
        host_id=HOST_ID,
        name="Test Car",
        timezone="UTC",
        is_available=True,
    ):
        return await vehicle_service.create_vehicle(
            host_id,
            VehicleCreate(
                name=name,
                daily_rate=Decimal(daily_rate),
                weekly_rate=Decimal(weekly_rate) if weekly_rate else None,
                monthly_rate=Decimal(monthly_rate) if monthly_rate else None,
                timezone=timezone,
                is_available=is_available,
            ),
        )

    return _make


@pytest.fixture
def make_paid_reservation(reservation_service, payment_service, gateway):
    """Factory driving a reservation to confirmed + paid."""

    async def _make(vehicle, start_date, end_date, **kwargs):
        reservation = await reservation_service.create_reservation(
            DRIVER_ID, vehicle.vehicle_id, start_date, end_date, **kwargs
        )
        await reservation_service.confirm(reservation.reservation_id, HOST_ID)
        intent = await payment_service.create_initial_intent(
            reservation.reservation_id, DRIVER_ID
        )
        gateway.succeed(intent.intent_id)
        await payment_service.confirm_payment(reservation.reservation_id, intent.intent_id)
        return await reservation_service.require_reservation(reservation.reservation_id)

    return _make
