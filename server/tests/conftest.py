"""Test configuration and fixtures."""

import os

# Settings and the engine are built at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("PROVIDER_NAME", "test")
os.environ.setdefault("PROVIDER_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("BEARER_TOKEN_SECRET", "test-bearer-secret")

import json
import time
from datetime import date, datetime, timedelta
from uuid import uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from reservation_core.core.clock import Clock
from reservation_core.core.config import settings
from reservation_core.core.database import Base, get_db
from reservation_core.core.dependencies import get_clock, get_payment_provider
from reservation_core.models import *  # noqa: F403 - Import all models
from reservation_core.models import Booking, BookingStatus
from reservation_core.schemas.booking import BookingRoomLine, CheckoutRequest
from reservation_core.schemas.common import Actor, ActorRole, Money
from reservation_core.schemas.inventory import CreateRoomTypeRequest
from reservation_core.services.booking_service import BookingService
from reservation_core.services.inventory_service import InventoryService
from reservation_core.services.payment_provider import TestProvider
from reservation_core.services.reconciliation_service import sign_payload

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

START_TIME = datetime(2026, 10, 19, 9, 0, 0)
CHECK_IN = date(2026, 12, 20)
CHECK_OUT = date(2026, 12, 23)


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START_TIME):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> datetime:
        self.current += timedelta(seconds=seconds)
        return self.current


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    """Session factory bound to the test engine, for workers."""
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    """Pinned clock starting at a fixed instant."""
    return FrozenClock()


@pytest.fixture
def provider():
    """In-memory payment provider."""
    return TestProvider()


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, clock, provider):
    """Create a test FastAPI application."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError
    from fastapi.middleware.cors import CORSMiddleware

    from reservation_core.core.exceptions import (
        ProblemDetailsException,
        generic_exception_handler,
        problem_details_handler,
        validation_exception_handler,
    )
    from reservation_core.routers import audit, booking, health, hold, inventory, metrics, payment

    # Create a simplified test app without lifespan
    app = FastAPI(
        title="Resort Reservation Core (Test)",
        description="Test version of the API",
        version="1.0.0-test",
    )

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Simplified for tests
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register API routers
    app.include_router(health.router)
    app.include_router(inventory.router)
    app.include_router(hold.router)
    app.include_router(booking.router)
    app.include_router(payment.router)
    app.include_router(audit.router)
    app.include_router(metrics.router)

    # Override database, clock and provider dependencies
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_payment_provider] = lambda: provider

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    from httpx import ASGITransport
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# Actors and tokens

@pytest.fixture
def guest():
    return Actor(id="guest-1", name="Maria Santos", role=ActorRole.GUEST)


@pytest.fixture
def other_guest():
    return Actor(id="guest-2", name="Jose Reyes", role=ActorRole.GUEST)


@pytest.fixture
def cashier():
    return Actor(id="cashier-1", name="Ana Cruz", role=ActorRole.CASHIER)


@pytest.fixture
def superadmin():
    return Actor(id="admin-1", name="Liza Tan", role=ActorRole.SUPERADMIN)


@pytest.fixture
def auth_headers():
    """Build a bearer Authorization header for an actor."""

    def build(actor: Actor) -> dict:
        token = jwt.encode(
            {"sub": actor.id, "name": actor.name, "role": actor.role.value},
            settings.bearer_token_secret,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return build


@pytest.fixture
def guest_headers(auth_headers, guest):
    return auth_headers(guest)


@pytest.fixture
def cashier_headers(auth_headers, cashier):
    return auth_headers(cashier)


@pytest.fixture
def superadmin_headers(auth_headers, superadmin):
    return auth_headers(superadmin)


@pytest.fixture
def system_headers(auth_headers):
    return auth_headers(Actor(id="paymongo-relay", name="Provider relay", role=ActorRole.SYSTEM))


# Sample data

@pytest.fixture
def sample_room_type_data():
    """Sample room type data for testing."""
    return {
        "name": "Deluxe Room",
        "total_quantity": 5,
        "price": {
            "amount": 450000,
            "currency": "PHP"
        }
    }


@pytest.fixture
def create_room_type(test_session, clock, superadmin):
    """Register a room type directly through the service."""

    async def create(name: str = "Deluxe Room", total_quantity: int = 5, price: int = 450000):
        return await InventoryService(test_session, clock).create_room_type(
            CreateRoomTypeRequest(
                name=name,
                total_quantity=total_quantity,
                price=Money(amount=price, currency="PHP"),
            ),
            superadmin,
        )

    return create


@pytest.fixture
def create_booking(test_session, guest):
    """Insert a draft booking that holds can be attached to."""

    async def create(check_in: date = CHECK_IN, check_out: date = CHECK_OUT, actor: Actor = guest):
        booking = Booking(
            id=uuid4(),
            guest_ref=actor.id,
            guest_name=actor.name,
            check_in=check_in,
            check_out=check_out,
            status=BookingStatus.DRAFT.value,
            currency="PHP",
        )
        test_session.add(booking)
        await test_session.commit()
        return booking

    return create


@pytest.fixture
def checkout(test_session, clock, guest):
    """Start checkout for one or more (room type, quantity) lines."""

    async def start(
        *lines,
        check_in: date = CHECK_IN,
        check_out: date = CHECK_OUT,
        actor: Actor = guest,
        provider_ref: str | None = None,
        lease_seconds: int | None = None,
    ):
        request = CheckoutRequest(
            check_in=check_in,
            check_out=check_out,
            rooms=[
                BookingRoomLine(room_type_id=str(room_type.id), quantity=quantity)
                for room_type, quantity in lines
            ],
            provider_ref=provider_ref,
            lease_seconds=lease_seconds,
        )
        return await BookingService(test_session, clock).checkout(request, actor)

    return start


@pytest.fixture
def signed_webhook():
    """Build a provider event body and its signature header."""

    def build(event_type: str, resource_id: str, source_id: str | None = None) -> tuple[bytes, str]:
        resource = {"id": resource_id, "type": "payment", "attributes": {}}
        if source_id:
            resource["attributes"]["source"] = {"id": source_id, "type": "gcash"}
        body = json.dumps({
            "data": {
                "id": "evt_test_1",
                "type": "event",
                "attributes": {"type": event_type, "livemode": False, "data": resource},
            }
        }).encode()
        timestamp = str(int(time.time()))
        signature = sign_payload(settings.provider_webhook_secret, timestamp, body)
        return body, f"t={timestamp},te={signature},li="

    return build
