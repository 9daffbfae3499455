"""
Shared fixtures for the signal ingestion and dispatch tests.

Every test gets a fresh SQLite database file, a session factory bound to it,
and helpers to seed accounts, strategies, API keys and channels. Outbound HTTP
goes through ``httpx.MockTransport`` via ``RecordingTransport``.
"""
import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("INSIGHTS_ENABLED", "false")
os.environ.setdefault("OPENAI_API_KEY", "")

from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from signalrelay.core.database import Base
from signalrelay.core.metrics import metrics
from signalrelay.models import Account, ApiKey, Integration, Signal, Strategy, Trade
from signalrelay.models.base import utcnow
from signalrelay.services.dispatcher import ChannelDispatcher
from signalrelay.services.enrichment_service import EnrichmentService
from signalrelay.services.plan_service import plan_service

DISCORD_URL = "https://discord.com/api/webhooks/123456789/abcdefTOKEN"
SLACK_URL = "https://hooks.slack.com/services/T000/B000/XXXX"


# ------------------------- HTTP mocking ------------------------- #

class RecordingTransport:
    """Callable for httpx.MockTransport that records every request."""

    def __init__(self, responder: Optional[Callable[[httpx.Request], Any]] = None):
        self.requests: List[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json={"ok": True}))

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self.responder(request)

    def client_factory(self) -> Callable[[], httpx.AsyncClient]:
        return lambda: httpx.AsyncClient(transport=httpx.MockTransport(self))

    def urls(self) -> List[str]:
        return [str(r.url) for r in self.requests]


@pytest.fixture
def transport():
    return RecordingTransport()


# ------------------------- Database ------------------------- #

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'signalrelay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def reset_shared_state():
    plan_service.cache.clear()
    metrics.clear_buffer()
    yield
    plan_service.cache.clear()


# ------------------------- Seed data ------------------------- #

@pytest_asyncio.fixture
async def account(session):
    account = Account(email="trader@example.com", plan="PRO")
    session.add(account)
    await session.commit()
    return account


@pytest_asyncio.fixture
async def strategy(session, account):
    strategy = Strategy(user_id=account.id, name="SMA Crossover", secret_token="s3cret-token")
    session.add(strategy)
    await session.commit()
    return strategy


async def make_api_key(session, account, **overrides) -> ApiKey:
    values = dict(
        user_id=account.id,
        name="bot key",
        api_key="sk_live_0123456789abcdef",
        payload_mapping={},
        default_values={},
        rate_limit_per_minute=60,
        is_active=True,
    )
    values.update(overrides)
    api_key = ApiKey(**values)
    session.add(api_key)
    await session.commit()
    return api_key


async def make_channel(session, account, type="discord", config=None, **overrides) -> Integration:
    if config is None:
        config = {"webhook_url": DISCORD_URL} if type == "discord" else {}
    values = dict(
        user_id=account.id,
        name=f"{type} channel",
        type=type,
        enabled=True,
        status="active",
        config=config,
    )
    values.update(overrides)
    channel = Integration(**values)
    session.add(channel)
    await session.commit()
    return channel


async def make_signal(session, strategy, **overrides) -> Signal:
    now = utcnow()
    values = dict(
        user_id=strategy.user_id,
        strategy_id=strategy.id,
        signal_type="BUY",
        symbol="AAPL",
        price=189.5,
        signal_time=now,
        created_at=now,
        raw_payload={},
    )
    values.update(overrides)
    signal = Signal(**values)
    session.add(signal)
    await session.commit()
    return signal


async def make_closed_trades(session, strategy, pnls) -> None:
    for pnl in pnls:
        session.add(Trade(
            user_id=strategy.user_id,
            strategy_id=strategy.id,
            symbol="AAPL",
            direction="long",
            status="closed",
            entry_price=100,
            entry_time=datetime(2024, 1, 1),
            exit_price=100 + pnl,
            exit_time=datetime(2024, 1, 2),
            pnl=pnl,
        ))
    await session.commit()


@pytest.fixture
def dispatcher(session_factory, transport):
    return ChannelDispatcher(
        session_factory=session_factory,
        enrichment=EnrichmentService(insights_enabled=False),
        client_factory=transport.client_factory(),
        timeout_sec=2,
    )
