"""
Channel test messages.

Sends a fixed sample alert through one of the account's stored channels so a
user can confirm the integration works before a real signal arrives. Test
sends bypass the delivery log and leave the channel's health untouched.
"""
import asyncio
import logging
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.config import settings
from signalrelay.core.errors import ChannelConfigError, DependencyError, NotFoundError
from signalrelay.models.base import utcnow
from signalrelay.models.integration import Integration
from signalrelay.services.channels import AlertPayload, DeliveryResult, get_channel_handler
from signalrelay.services.delivery_log import truncate
from signalrelay.services.dispatcher import default_client_factory

logger = logging.getLogger(__name__)

TEST_SYMBOL = "AAPL"
TEST_PRICE = 150.0
TEST_STRATEGY_NAME = "Test Strategy"


def sample_payload() -> AlertPayload:
    return AlertPayload(
        signal_id=0,
        direction="BUY",
        symbol=TEST_SYMBOL,
        price=TEST_PRICE,
        signal_time=utcnow(),
        strategy_id=0,
        strategy_name=TEST_STRATEGY_NAME,
    )


class ChannelTester:

    def __init__(
        self,
        session: AsyncSession,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.session = session
        self.timeout_sec = settings.DELIVERY_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        self.client_factory = client_factory or default_client_factory(self.timeout_sec)

    async def send_test(self, account_id: int, integration_id: int) -> DeliveryResult:
        """
        Deliver the sample alert to one channel owned by ``account_id``.

        Raises NotFoundError for unknown, foreign or deleted channels,
        ChannelConfigError when the stored config is unusable, and
        DependencyError when the destination rejects or never answers.
        """
        integration = await self.session.get(Integration, integration_id)
        if integration is None or integration.user_id != account_id or integration.status == "deleted":
            raise NotFoundError("Channel not found")

        try:
            handler = get_channel_handler(integration.type)
        except ValueError as e:
            raise ChannelConfigError(str(e))

        async with self.client_factory() as client:
            try:
                result = await asyncio.wait_for(
                    handler.deliver(client, integration.config, sample_payload()),
                    timeout=self.timeout_sec,
                )
            except asyncio.TimeoutError:
                raise DependencyError(f"Test message timed out after {self.timeout_sec}s")

        if not result.success:
            logger.warning(f"Test message to channel {integration.id} failed: {result.error}")
            raise DependencyError(
                result.error,
                status=result.status_code,
                details=truncate(result.response_body, 500),
            )

        logger.info(f"Test message sent to {integration.type} channel {integration.id}")
        return result
