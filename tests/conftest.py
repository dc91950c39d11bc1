"""Pytest fixtures for order engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shop4me.config import MpesaConfig, PaymentPolicy
from shop4me.models import (
    Base,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    User,
    UserRole,
)
from shop4me.providers import MpesaStubProvider
from shop4me.services.principals import Principal

# In-memory SQLite shared by every session of a test
TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FixedClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine():
    """Create test database engine with a fresh schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def policy() -> PaymentPolicy:
    return PaymentPolicy()


@pytest.fixture
def mpesa_config() -> MpesaConfig:
    return MpesaConfig(environment="stub")


@pytest.fixture
def stub_provider() -> MpesaStubProvider:
    return MpesaStubProvider()


@pytest.fixture
def order_factory(session: AsyncSession, clock: FixedClock):
    """Insert an order directly, bypassing checkout validation."""

    async def _create(**overrides) -> Order:
        values = {
            "customer_name": "Akiru Ekai",
            "customer_phone": "254712345678",
            "service_fee": Decimal("100.00"),
            "total_estimate": Decimal("1000.00"),
            "order_status": OrderStatus.DRAFT,
            "payment_status": PaymentStatus.PENDING,
            "created_at": clock(),
            "updated_at": clock(),
        }
        values.update(overrides)
        order = Order(
            items=[
                OrderItem(
                    position=0,
                    name_override="Sukuma wiki",
                    quantity=3,
                    unit_price=Decimal("300.00"),
                    estimated_price=Decimal("900.00"),
                )
            ],
            **values,
        )
        session.add(order)
        await session.commit()
        return order

    return _create


@pytest_asyncio.fixture
async def admin(session: AsyncSession) -> Principal:
    user = User(provider_id="admin-1", email="admin@shop4me.test", role=UserRole.ADMIN)
    session.add(user)
    await session.commit()
    return Principal(user_id=user.id, role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def customer(session: AsyncSession) -> Principal:
    user = User(provider_id="customer-1", email="buyer@shop4me.test", role=UserRole.CUSTOMER)
    session.add(user)
    await session.commit()
    return Principal(user_id=user.id, role=UserRole.CUSTOMER)
