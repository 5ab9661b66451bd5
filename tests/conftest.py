from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.pool import StaticPool

from settlement_engine.db.models import Base
from settlement_engine.db.session import create_engine, create_sessionmaker
from settlement_engine.services.expenses import build_expense
from settlement_engine.services.notifications import NotificationRequest
from settlement_engine.services.settlement import SettlementService


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[NotificationRequest] = []

    async def send(self, requests: Sequence[NotificationRequest]) -> None:
        self.sent.extend(requests)


class BrokenNotifier:
    async def send(self, requests: Sequence[NotificationRequest]) -> None:
        raise ConnectionError("push gateway down")


class TickingClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def make_expense():
    counter = iter(range(1, 10_000))

    def _make(payer, payees, total, name=None, **kwargs):
        n = next(counter)
        return build_expense(
            name=name or f"expense {n}",
            payer=payer,
            payees=payees,
            total_amount=total,
            expense_id=kwargs.pop("expense_id", f"e{n:04d}"),
            created_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
            **kwargs,
        )

    return _make


@pytest.fixture
async def sessionmaker():
    engine = create_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(sessionmaker, notifier) -> SettlementService:
    return SettlementService(sessionmaker, notifier=notifier, clock=TickingClock())
