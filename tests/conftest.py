"""
Pytest configuration and fixtures.

Tests run against an in-memory SQLite database and a dict-backed Redis stand-in;
the Stripe client and the e-mail notifier are mocked.
"""
import os

os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_fake_key_for_testing")

import itertools
import time
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from referral_settlement.config import Settings
from referral_settlement.core.background import BestEffortDispatcher
from referral_settlement.core.cache_invalidation import CacheInvalidationWorker
from referral_settlement.core.leaderboard import Leaderboard
from referral_settlement.core.settlement import CheckoutRequest, OrderLine, SettlementCoordinator
from referral_settlement.database.connection import build_engine, build_session_factory, init_db
from referral_settlement.database.models import Link, Order, OrderItem, Product, User
from referral_settlement.integrations.notifier import EmailNotifier
from referral_settlement.integrations.stripe_client import CheckoutSession, StripeClient


class FakeRedis:
    """In-memory stand-in for the subset of redis.asyncio.Redis the service uses."""

    def __init__(self) -> None:
        self.values: Dict[str, Any] = {}
        self.expirations: Dict[str, Optional[int]] = {}
        self.sorted_sets: Dict[str, Dict[str, float]] = {}
        self.deletions: List[Tuple[str, float]] = []
        self.fail_on: set = set()
        self.closed = False

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise ConnectionError(f"redis {operation} unavailable")

    async def get(self, key: str) -> Optional[Any]:
        self._check("get")
        return self.values.get(key)

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        self._check("set")
        self.values[key] = value
        self.expirations[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            self.deletions.append((key, time.monotonic()))
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed

    async def zincrby(self, key: str, amount: float, member: str) -> float:
        self._check("zincrby")
        scores = self.sorted_sets.setdefault(key, {})
        scores[member] = scores.get(member, 0.0) + amount
        return scores[member]

    async def zrevrangebyscore(
        self, key: str, max: Any, min: Any, withscores: bool = False
    ) -> List[Any]:
        self._check("zrevrangebyscore")
        entries = sorted(
            self.sorted_sets.get(key, {}).items(), key=lambda entry: entry[1], reverse=True
        )
        if withscores:
            return entries
        return [member for member, _ in entries]

    async def ping(self) -> bool:
        self._check("ping")
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        stripe_secret_key="sk_test_fake_key_for_testing",
        database_url="sqlite+aiosqlite://",
        redis_url="redis://localhost:6379/1",
        cache_invalidation_delay_seconds=0.05,
        cache_invalidation_drain_timeout=2.0,
        app_name="referral-settlement-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[Any, Any]:
    """In-memory database shared by every session of one test."""
    engine = build_engine(test_settings)
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: Any) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def test_db(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, Any]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(session_factory: async_sessionmaker[AsyncSession]) -> Dict[str, Any]:
    """One ambassador with a referral link, one admin and two products."""
    async with session_factory() as session:
        ambassador = User(
            first_name="Ada", last_name="Lovelace", email="ada@example.com", is_ambassador=True
        )
        admin = User(
            first_name="Grace", last_name="Hopper", email="grace@example.com", is_ambassador=False
        )
        session.add_all([ambassador, admin])
        await session.flush()

        mug = Product(
            title="Mug", description="Ceramic mug", image="https://img.test/mug.png", price=10.0
        )
        shirt = Product(title="Shirt", description="", image="", price=25.5)
        session.add_all([mug, shirt])
        await session.flush()

        session.add(Link(code="ada42", user_id=ambassador.id))
        await session.commit()

        return {
            "ambassador_id": ambassador.id,
            "admin_id": admin.id,
            "mug_id": mug.id,
            "shirt_id": shirt.id,
            "code": "ada42",
        }


@pytest.fixture
def add_order(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Insert an order with items directly, bypassing checkout."""

    async def _add_order(
        user_id: int,
        code: str,
        items: List[Tuple[float, int]],
        complete: bool = True,
        referrer_share: float = 0.1,
    ) -> int:
        async with session_factory() as session:
            order = Order(
                user_id=user_id,
                code=code,
                ambassador_email="ada@example.com",
                first_name="Buyer",
                last_name="One",
                email="buyer@example.com",
                address="1 Main St",
                city="Springfield",
                country="US",
                zip="12345",
                complete=complete,
            )
            session.add(order)
            await session.flush()
            for price, quantity in items:
                session.add(
                    OrderItem(
                        order_id=order.id,
                        product_title="Item",
                        price=price,
                        quantity=quantity,
                        ambassador_revenue=referrer_share * price * quantity,
                        admin_revenue=(1 - referrer_share) * price * quantity,
                    )
                )
            await session.commit()
            return order.id

    return _add_order


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def stripe_client() -> AsyncMock:
    """Stripe client mock handing out a new session id per call."""
    counter = itertools.count(1)
    client = AsyncMock(spec=StripeClient)

    async def _create_session(*args: Any, **kwargs: Any) -> CheckoutSession:
        session_id = f"cs_test_{next(counter)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")

    client.create_checkout_session.side_effect = _create_session
    return client


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock(spec=EmailNotifier)


@pytest.fixture
def invalidation_worker(fake_redis: FakeRedis, test_settings: Settings) -> CacheInvalidationWorker:
    """Worker that is not started, so enqueued keys stay observable."""
    return CacheInvalidationWorker(
        fake_redis, delay_seconds=test_settings.cache_invalidation_delay_seconds
    )


@pytest.fixture
def dispatcher() -> BestEffortDispatcher:
    return BestEffortDispatcher()


@pytest.fixture
def leaderboard(fake_redis: FakeRedis, test_settings: Settings) -> Leaderboard:
    return Leaderboard(fake_redis, key=test_settings.rankings_key)


@pytest.fixture
def coordinator(
    test_settings: Settings,
    stripe_client: AsyncMock,
    leaderboard: Leaderboard,
    invalidation_worker: CacheInvalidationWorker,
    notifier: AsyncMock,
    dispatcher: BestEffortDispatcher,
) -> SettlementCoordinator:
    return SettlementCoordinator(
        stripe_client=stripe_client,
        leaderboard=leaderboard,
        invalidation_worker=invalidation_worker,
        notifier=notifier,
        dispatcher=dispatcher,
        settings=test_settings,
    )


@pytest.fixture
def checkout_request() -> Callable[..., CheckoutRequest]:
    """Build a checkout request with valid buyer details."""

    def _build(code: str, products: List[Tuple[int, int]], **overrides: Any) -> CheckoutRequest:
        fields: Dict[str, Any] = {
            "first_name": "John",
            "last_name": "Doe",
            "email": "john@example.com",
            "address": "1 Main St",
            "country": "US",
            "city": "Springfield",
            "zip": "12345",
            "code": code,
            "products": [OrderLine(product_id, quantity) for product_id, quantity in products],
        }
        fields.update(overrides)
        return CheckoutRequest(**fields)

    return _build
