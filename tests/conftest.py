"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, List, Tuple
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

import lnpay.models  # noqa: F401
from lnpay.database import Base, create_session_maker
from lnpay.services.fulfillment_service import FulfillmentNotifier
from lnpay.services.invoice_service import InvoiceService
from lnpay.services.invoice_store import InvoiceStore
from lnpay.services.mock_gateway import MockGatewayService


class StepClock:
    """Deterministic clock; every reading is one step later than the last."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, tzinfo=timezone.utc),
                 step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.now
        self.now += self.step
        return value

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class RecordingNotifier(FulfillmentNotifier):
    """Collects fulfillment notifications; can be told to fail."""

    def __init__(self):
        self.calls: List[Tuple[str, str, Decimal]] = []
        self.fail = False

    async def notify_paid(self, order_id: str, invoice_id: str, amount: Decimal) -> None:
        if self.fail:
            raise RuntimeError("fulfillment backend down")
        self.calls.append((order_id, invoice_id, amount))


@pytest_asyncio.fixture(scope="function")
async def session_maker(tmp_path) -> AsyncGenerator[async_sessionmaker, None]:
    """Fresh SQLite database file per test."""
    maker = create_session_maker(f"sqlite+aiosqlite:///{tmp_path / 'lnpay.db'}")
    engine = maker.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker

    await engine.dispose()


@pytest.fixture
def store(session_maker) -> InvoiceStore:
    return InvoiceStore(session_maker)


@pytest.fixture
def gateway() -> MockGatewayService:
    return MockGatewayService()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def service(store, gateway, notifier, clock) -> InvoiceService:
    return InvoiceService(store=store, gateway=gateway, fulfillment=notifier, clock=clock)


@pytest.fixture(autouse=True)
def redis_mock():
    """Delivery cache double; empty unless a test says otherwise."""
    redis = AsyncMock()
    redis.exists.return_value = 0

    with patch("lnpay.redis.get_redis", new=AsyncMock(return_value=redis)):
        yield redis
