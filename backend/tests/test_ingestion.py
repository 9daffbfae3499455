import json
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from conftest import make_api_key, make_signal
from signalrelay.core.errors import RateLimitError, ValidationError
from signalrelay.core.metrics import metrics
from signalrelay.models import Signal, Strategy
from signalrelay.models.base import utcnow
from signalrelay.services.credential_resolver import FLOW_WEBHOOK, ResolvedCredential
from signalrelay.services.dispatch_queue import DispatchQueue
from signalrelay.services.duplicate_suppressor import duplicate_message
from signalrelay.services.field_mapper import MappedSignal
from signalrelay.services.ingestion_service import (
    ACCEPTED_MESSAGE,
    ALERT_DUPLICATE_MESSAGE,
    IngestionService,
)
from signalrelay.services.plan_service import PlanService
from signalrelay.services.signal_store import SignalStore

KEY = "sk_live_0123456789abcdef"


class RecordingQueue(DispatchQueue):
    """Dispatch queue that only remembers what it was given."""

    def __init__(self, fail: bool = False):
        self.submitted = []
        self.fail = fail

    async def submit(self, signal_id: int, strategy_id: int) -> None:
        if self.fail:
            raise ConnectionError("queue unavailable")
        self.submitted.append((signal_id, strategy_id))


# ------------------------- Helpers ------------------------- #

@pytest.fixture
def queue():
    return RecordingQueue()


def webhook_body(strategy, **overrides):
    body = {
        "token": "s3cret-token",
        "strategyId": strategy.id,
        "signal": "buy",
        "symbol": "aapl",
        "price": "189.5",
        "time": "2024-01-02T03:04:05Z",
    }
    body.update(overrides)
    return body


async def ingest_webhook(session_factory, body, queue=None, plans=None):
    async with session_factory() as s:
        return await IngestionService(s, dispatch_queue=queue, plans=plans).ingest_webhook(body)


async def ingest_api(session_factory, body, key=KEY, queue=None, plans=None,
                     content_type="application/json"):
    raw = body if isinstance(body, bytes) else json.dumps(body).encode()
    async with session_factory() as s:
        service = IngestionService(s, dispatch_queue=queue, plans=plans)
        return await service.ingest_api({"x-api-key": key}, {}, content_type, raw)


async def count_signals(session) -> int:
    return (await session.execute(select(func.count(Signal.id)))).scalar_one()


def event_types():
    return [e.event_type for e in metrics.get_buffer()]


# ------------------------- Webhook flow ------------------------- #

class TestWebhookIngestion:

    async def test_persists_normalized_signal(self, session, session_factory, strategy, queue):
        result = await ingest_webhook(session_factory, webhook_body(strategy, interval="1h"), queue)

        assert result.message == ACCEPTED_MESSAGE
        assert not result.duplicate
        signal = await session.get(Signal, result.signal_id)
        assert signal.signal_type == "BUY"
        assert signal.symbol == "AAPL"
        assert float(signal.price) == 189.5
        assert signal.interval == "1h"
        assert signal.api_key_id is None
        assert "token" not in signal.raw_payload
        assert signal.raw_payload["symbol"] == "aapl"
        assert queue.submitted == [(result.signal_id, strategy.id)]
        assert "accepted" in event_types()

    async def test_missing_fields(self, session, session_factory, strategy):
        body = webhook_body(strategy)
        del body["time"]
        body["price"] = ""

        with pytest.raises(ValidationError) as exc_info:
            await ingest_webhook(session_factory, body)
        assert exc_info.value.detail["missing"] == ["price", "time"]
        assert await count_signals(session) == 0

    async def test_dispatch_failure_does_not_fail_request(self, session, session_factory, strategy):
        result = await ingest_webhook(session_factory, webhook_body(strategy), RecordingQueue(fail=True))

        assert result.signal_id is not None
        assert await count_signals(session) == 1


# ------------------------- External id idempotency ------------------------- #

class TestAlertIdIdempotency:

    async def test_same_alert_id_stored_once(self, session, session_factory, strategy, queue):
        first = await ingest_webhook(session_factory, webhook_body(strategy, alertId="tv-1"), queue)
        second = await ingest_webhook(
            session_factory, webhook_body(strategy, alertId="tv-1", signal="sell"), queue
        )

        assert second.message == ALERT_DUPLICATE_MESSAGE
        assert second.duplicate_of == first.signal_id
        assert await count_signals(session) == 1
        assert queue.submitted == [(first.signal_id, strategy.id)]

    async def test_store_conflict_returns_existing(self, session_factory, strategy, queue):
        credential = ResolvedCredential(
            flow=FLOW_WEBHOOK,
            account_id=strategy.user_id,
            strategy_id=strategy.id,
            strategy_name=strategy.name,
        )
        mapped = MappedSignal(direction="BUY", symbol="AAPL", price=1.0, time=utcnow(), external_id="x-9")

        async with session_factory() as s:
            first = await SignalStore(s, queue).store(credential, mapped, {})
        async with session_factory() as s:
            second = await SignalStore(s, queue).store(credential, mapped, {})

        assert first.created
        assert not second.created
        assert second.signal_id == first.signal_id
        assert len(queue.submitted) == 1


# ------------------------- Duplicate window ------------------------- #

class TestDuplicateWindow:

    async def test_same_direction_suppressed(self, session, session_factory, strategy, queue):
        first = await ingest_webhook(session_factory, webhook_body(strategy), queue)
        second = await ingest_webhook(session_factory, webhook_body(strategy, price="190"), queue)

        assert second.message == duplicate_message("BUY")
        assert second.duplicate_of == first.signal_id
        assert await count_signals(session) == 1
        assert len(queue.submitted) == 1
        assert "duplicate" in event_types()

    async def test_entry_aliases_share_a_class(self, session, session_factory, strategy):
        first = await ingest_webhook(session_factory, webhook_body(strategy, signal="BUY"))
        second = await ingest_webhook(session_factory, webhook_body(strategy, signal="long"))

        assert second.duplicate_of == first.signal_id
        assert await count_signals(session) == 1

    async def test_opposite_direction_kept(self, session, session_factory, strategy):
        await ingest_webhook(session_factory, webhook_body(strategy, signal="BUY"))
        second = await ingest_webhook(session_factory, webhook_body(strategy, signal="SELL"))

        assert not second.duplicate
        assert await count_signals(session) == 2

    async def test_close_never_suppressed(self, session, session_factory, strategy):
        await ingest_webhook(session_factory, webhook_body(strategy, signal="CLOSE"))
        second = await ingest_webhook(session_factory, webhook_body(strategy, signal="exit"))

        assert not second.duplicate
        assert await count_signals(session) == 2

    async def test_other_symbol_kept(self, session, session_factory, strategy):
        await ingest_webhook(session_factory, webhook_body(strategy, symbol="AAPL"))
        await ingest_webhook(session_factory, webhook_body(strategy, symbol="MSFT"))
        assert await count_signals(session) == 2

    async def test_signal_outside_window_ignored(self, session, session_factory, strategy):
        await make_signal(session, strategy, created_at=utcnow() - timedelta(minutes=6))
        result = await ingest_webhook(session_factory, webhook_body(strategy))

        assert not result.duplicate
        assert await count_signals(session) == 2


# ------------------------- API key flow ------------------------- #

class TestApiIngestion:

    async def test_mapping_and_defaults_applied(self, session, session_factory, account, strategy, queue):
        await make_api_key(
            session, account,
            payload_mapping={"symbol": "data.ticker", "signal": "side"},
            default_values={"interval": "4h"},
        )
        result = await ingest_api(
            session_factory,
            {"data": {"ticker": "tsla"}, "side": "short", "price": 251.2},
            queue=queue,
        )

        assert result.processed.symbol == "TSLA"
        assert result.processed.direction == "SHORT"
        signal = await session.get(Signal, result.signal_id)
        assert signal.strategy_id == strategy.id
        assert signal.interval == "4h"
        assert signal.api_key_id is not None

    async def test_form_encoded_body(self, session, session_factory, account, strategy):
        await make_api_key(session, account)
        result = await ingest_api(
            session_factory,
            b"signal=sell&symbol=eurusd&price=1.0845",
            content_type="application/x-www-form-urlencoded",
        )
        assert result.processed.direction == "SELL"
        assert result.processed.price == 1.0845

    async def test_usage_counters_updated(self, session, session_factory, account, strategy):
        api_key = await make_api_key(session, account)
        await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 1})
        await ingest_api(session_factory, {"signal": "BUY", "symbol": "MSFT", "price": 1})

        await session.refresh(api_key)
        assert api_key.request_count == 2
        assert api_key.last_used_at is not None

    async def test_duplicate_does_not_count_usage(self, session, session_factory, account, strategy):
        api_key = await make_api_key(session, account)
        await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 1})
        result = await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 2})

        assert result.duplicate
        await session.refresh(api_key)
        assert api_key.request_count == 1


# ------------------------- Rate limiting ------------------------- #

class TestRateLimit:

    async def test_key_limit_enforced(self, session, session_factory, account, strategy):
        await make_api_key(session, account, rate_limit_per_minute=2)
        await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 1})
        await ingest_api(session_factory, {"signal": "BUY", "symbol": "MSFT", "price": 1})

        with pytest.raises(RateLimitError) as exc_info:
            await ingest_api(session_factory, {"signal": "BUY", "symbol": "NVDA", "price": 1})

        err = exc_info.value
        assert err.status_code == 429
        assert err.limit == 2
        assert err.to_dict()["retry_after"] == 60
        assert await count_signals(session) == 2
        assert "rate_limited" in event_types()

    async def test_plan_limit_caps_key_limit(self, session, session_factory, account, strategy):
        await make_api_key(session, account, rate_limit_per_minute=60)
        plans = PlanService(plan_limits={"FREE": 1, "PRO": 1, "ELITE": 1})

        await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 1}, plans=plans)
        with pytest.raises(RateLimitError) as exc_info:
            await ingest_api(session_factory, {"signal": "BUY", "symbol": "MSFT", "price": 1}, plans=plans)
        assert exc_info.value.limit == 1

    async def test_limits_are_per_credential(self, session, session_factory, account, strategy):
        await make_api_key(session, account, rate_limit_per_minute=1)
        await make_api_key(session, account, api_key="sk_live_other", rate_limit_per_minute=1)

        await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 1})
        with pytest.raises(RateLimitError):
            await ingest_api(session_factory, {"signal": "BUY", "symbol": "MSFT", "price": 1})

        result = await ingest_api(
            session_factory, {"signal": "BUY", "symbol": "MSFT", "price": 1}, key="sk_live_other"
        )
        assert result.signal_id is not None

        webhook = await ingest_webhook(session_factory, webhook_body(strategy, symbol="NVDA"))
        assert webhook.signal_id is not None

    async def test_old_signals_not_counted(self, session, session_factory, account, strategy):
        api_key = await make_api_key(session, account, rate_limit_per_minute=1)
        await make_signal(
            session, strategy, symbol="OLD", api_key_id=api_key.id,
            created_at=utcnow() - timedelta(minutes=2),
        )
        result = await ingest_api(session_factory, {"signal": "BUY", "symbol": "AAPL", "price": 1})
        assert result.signal_id is not None

    async def test_webhook_limit_is_per_strategy(self, session, session_factory, account, strategy):
        other = Strategy(user_id=account.id, name="Breakout", secret_token="other-token")
        session.add(other)
        await session.commit()
        plans = PlanService(plan_limits={"FREE": 1, "PRO": 1, "ELITE": 1})

        await ingest_webhook(session_factory, webhook_body(strategy, symbol="AAPL"), plans=plans)
        with pytest.raises(RateLimitError):
            await ingest_webhook(session_factory, webhook_body(strategy, symbol="MSFT"), plans=plans)

        result = await ingest_webhook(
            session_factory,
            webhook_body(other, token="other-token", symbol="MSFT"),
            plans=plans,
        )
        assert result.signal_id is not None
        assert await count_signals(session) == 2
