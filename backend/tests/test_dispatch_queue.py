from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from signalrelay.core.errors import NotFoundError
from signalrelay.services.dispatch_queue import (
    InProcessDispatchQueue,
    StreamDispatchQueue,
    create_dispatch_queue,
)
from signalrelay.stream_consumers.dispatch_consumer import DispatchConsumer


def summary(sent=1, total=1):
    return MagicMock(sent=sent, total=total)


# ------------------------- In-process queue ------------------------- #

class TestInProcessDispatchQueue:

    async def test_submitted_signals_are_dispatched(self):
        dispatcher = AsyncMock()
        dispatcher.dispatch.return_value = summary()
        queue = InProcessDispatchQueue(dispatcher=dispatcher, workers=2)

        await queue.submit(1, 10)
        await queue.submit(2, 10)
        await queue.join()
        await queue.stop()

        dispatched = sorted(call.args for call in dispatcher.dispatch.await_args_list)
        assert dispatched == [(1, 10), (2, 10)]

    async def test_worker_survives_failures(self):
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = [
            NotFoundError("Signal not found"),
            RuntimeError("boom"),
            summary(),
        ]
        queue = InProcessDispatchQueue(dispatcher=dispatcher, workers=1)

        for signal_id in (1, 2, 3):
            await queue.submit(signal_id, 10)
        await queue.join()
        await queue.stop()

        assert dispatcher.dispatch.await_count == 3


# ------------------------- Stream queue ------------------------- #

async def test_stream_queue_publishes_ids():
    redis = AsyncMock()
    with patch("signalrelay.services.dispatch_queue.get_async_redis", AsyncMock(return_value=redis)):
        await StreamDispatchQueue().submit(5, 9)

    redis.xadd.assert_awaited_once_with(
        "signal-dispatch",
        {"event_type": "signal_stored", "signal_id": "5", "strategy_id": "9"},
    )


def test_create_dispatch_queue():
    assert isinstance(create_dispatch_queue("stream"), StreamDispatchQueue)
    assert isinstance(create_dispatch_queue("inline"), InProcessDispatchQueue)
    with pytest.raises(ValueError):
        create_dispatch_queue("kafka")


# ------------------------- Stream consumer ------------------------- #

class TestDispatchConsumer:

    async def test_dispatches_message(self):
        dispatcher = AsyncMock()
        dispatcher.dispatch.return_value = summary(2, 3)
        consumer = DispatchConsumer(dispatcher=dispatcher)

        await consumer.process_message("1-0", {"signal_id": "42", "strategy_id": "7"})

        dispatcher.dispatch.assert_awaited_once_with(42, 7)

    async def test_invalid_message_ignored(self):
        dispatcher = AsyncMock()
        consumer = DispatchConsumer(dispatcher=dispatcher)

        await consumer.process_message("1-0", {"signal_id": "abc"})

        dispatcher.dispatch.assert_not_awaited()

    async def test_missing_signal_is_not_retried(self):
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = NotFoundError("Signal not found")
        consumer = DispatchConsumer(dispatcher=dispatcher)
        consumer.redis = AsyncMock()

        await consumer._process_with_retry("1-0", {"signal_id": "1", "strategy_id": "2"})

        dispatcher.dispatch.assert_awaited_once()
        consumer.redis.xack.assert_awaited_once_with("signal-dispatch", "alert-dispatchers", "1-0")
        consumer.redis.xadd.assert_not_awaited()

    async def test_repeated_failure_goes_to_dlq(self):
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = RuntimeError("database unavailable")
        consumer = DispatchConsumer(dispatcher=dispatcher)
        consumer.max_retries = 1
        consumer.redis = AsyncMock()

        await consumer._process_with_retry("1-0", {"signal_id": "1", "strategy_id": "2"})

        stream, entry = consumer.redis.xadd.await_args.args
        assert stream == "signal-dispatch-dlq"
        assert entry["original_id"] == "1-0"
        assert entry["error"] == "database unavailable"
        consumer.redis.xack.assert_awaited_once()
