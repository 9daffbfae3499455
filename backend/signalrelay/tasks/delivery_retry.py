"""
Delivery retry tasks.

Runs on a beat schedule. Entries left ``pending`` by a crashed dispatch are
reaped to ``error``, then failed retryable deliveries are re-attempted as
new log entries until they reach the attempt cap.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from signalrelay.core.database import AsyncSessionLocal
from signalrelay.scheduler.celery_app import app
from signalrelay.services.delivery_log import DeliveryLogService
from signalrelay.services.dispatcher import ChannelDispatcher

logger = logging.getLogger(__name__)


async def _retry_failed_deliveries_async(
    session_factory: Optional[async_sessionmaker] = None,
    dispatcher: Optional[ChannelDispatcher] = None,
) -> dict:
    session_factory = session_factory or AsyncSessionLocal
    dispatcher = dispatcher or ChannelDispatcher(session_factory=session_factory)

    async with session_factory() as session:
        logs = DeliveryLogService(session)
        reaped = await logs.reap_stale_pending()
        candidates = [entry.id for entry in await logs.retry_candidates()]

    if not candidates:
        return {"reaped": reaped, "candidates": 0, "retried": 0, "delivered": 0}

    retried = 0
    delivered = 0
    for log_id in candidates:
        result = await dispatcher.redeliver(log_id)
        if result is None:
            continue
        retried += 1
        if result.success:
            delivered += 1

    logger.info(
        f"Delivery retry: {retried} retried, {delivered} delivered, "
        f"{len(candidates)} candidates, {reaped} stale pending reaped"
    )
    return {
        "reaped": reaped,
        "candidates": len(candidates),
        "retried": retried,
        "delivered": delivered,
    }


@app.task(name="signalrelay.tasks.delivery_retry.retry_failed_deliveries")
def retry_failed_deliveries() -> dict:
    """
    Celery task to re-attempt failed channel deliveries.
    """
    return asyncio.run(_retry_failed_deliveries_async())
