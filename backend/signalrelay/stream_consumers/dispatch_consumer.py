import asyncio
import logging
from typing import Any, Dict, Optional

from signalrelay.core.config import settings
from signalrelay.core.errors import NotFoundError
from signalrelay.core.logging import setup_logging
from signalrelay.core.redis import ConsumerGroups, StreamNames
from signalrelay.services.dispatcher import ChannelDispatcher
from signalrelay.stream_consumers.base import BaseStreamConsumer

logger = logging.getLogger(__name__)


class DispatchConsumer(BaseStreamConsumer):
    """
    Listens for stored signals on 'signal-dispatch'.
    Runs the channel dispatcher for each one.
    """

    def __init__(self, dispatcher: Optional[ChannelDispatcher] = None):
        super().__init__(
            redis_url=settings.REDIS_URL,
            stream_name=StreamNames.SIGNAL_DISPATCH,
            consumer_group=ConsumerGroups.ALERT_DISPATCHERS,
        )
        self.dispatcher = dispatcher or ChannelDispatcher()

    async def process_message(self, message_id: str, data: Dict[str, Any]) -> None:
        # data expected: { "signal_id": "42", "strategy_id": "7" }
        try:
            signal_id = int(data["signal_id"])
            strategy_id = int(data["strategy_id"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Invalid dispatch message {message_id}: {data}")
            return

        try:
            summary = await self.dispatcher.dispatch(signal_id, strategy_id)
        except NotFoundError as e:
            # Nothing to retry: the signal or strategy no longer exists
            logger.warning(f"Dispatch skipped for signal {signal_id}: {e.error}")
            return

        logger.info(
            f"Dispatched signal {signal_id} from {message_id}: {summary.sent}/{summary.total}"
        )


if __name__ == "__main__":
    async def main():
        consumer = DispatchConsumer()
        try:
            await consumer.start()
        except KeyboardInterrupt:
            await consumer.stop()

    setup_logging()
    asyncio.run(main())
