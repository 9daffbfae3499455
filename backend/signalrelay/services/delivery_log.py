"""
Delivery Log.

One row per dispatch attempt of a signal to a channel, created ``pending``
before any I/O and moved to ``success`` or ``error`` afterwards. Bodies and
error messages are truncated so a misbehaving endpoint cannot bloat the table.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.config import settings
from signalrelay.models.base import utcnow
from signalrelay.models.delivery_log import DeliveryLog

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


def truncate(text: Optional[str], limit: int) -> Optional[str]:
    if text is None:
        return None
    return text if len(text) <= limit else text[:limit]


class DeliveryLogService:

    def __init__(
        self,
        session: AsyncSession,
        body_limit: Optional[int] = None,
        error_limit: Optional[int] = None,
    ):
        self.session = session
        self.body_limit = body_limit or settings.DELIVERY_BODY_LIMIT
        self.error_limit = error_limit or settings.DELIVERY_ERROR_LIMIT

    async def create_pending(
        self,
        *,
        user_id: int,
        strategy_id: int,
        signal_id: int,
        integration_id: int,
        integration_type: str,
        message: str,
        attempt: int = 1,
    ) -> DeliveryLog:
        entry = DeliveryLog(
            user_id=user_id,
            strategy_id=strategy_id,
            signal_id=signal_id,
            integration_id=integration_id,
            integration_type=integration_type,
            status=STATUS_PENDING,
            message=truncate(message, 500),
            attempt=attempt,
            retryable=True,
        )
        self.session.add(entry)
        await self.session.commit()
        return entry

    async def mark_success(
        self,
        entry: DeliveryLog,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> DeliveryLog:
        entry.status = STATUS_SUCCESS
        if message:
            entry.message = truncate(message, 500)
        entry.response_status = status_code
        entry.response_body = truncate(response_body, self.body_limit)
        entry.error_message = None
        entry.delivered_at = utcnow()
        await self.session.commit()
        return entry

    async def mark_error(
        self,
        entry: DeliveryLog,
        error: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        retryable: bool = True,
    ) -> DeliveryLog:
        entry.status = STATUS_ERROR
        entry.error_message = truncate(error, self.error_limit)
        entry.response_status = status_code
        entry.response_body = truncate(response_body, self.body_limit)
        entry.retryable = retryable
        await self.session.commit()
        return entry

    async def mark_retried(self, entry: DeliveryLog) -> None:
        entry.retried_at = utcnow()
        await self.session.commit()

    async def reap_stale_pending(self, older_than_minutes: Optional[int] = None) -> int:
        """Move entries left pending by a crashed worker to error."""
        minutes = older_than_minutes or settings.DELIVERY_STALE_PENDING_MINUTES
        cutoff = utcnow() - timedelta(minutes=minutes)
        result = await self.session.execute(
            update(DeliveryLog)
            .where(DeliveryLog.status == STATUS_PENDING, DeliveryLog.created_at < cutoff)
            .values(
                status=STATUS_ERROR,
                error_message=f"Delivery abandoned: pending for more than {minutes} minutes",
            )
        )
        await self.session.commit()
        reaped = result.rowcount or 0
        if reaped:
            logger.warning(f"Reaped {reaped} stale pending delivery log entries")
        return reaped

    async def retry_candidates(
        self,
        max_attempts: Optional[int] = None,
        lookback_hours: Optional[int] = None,
        now: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[DeliveryLog]:
        """Failed, retryable entries that have not been retried yet."""
        max_attempts = max_attempts or settings.DELIVERY_MAX_ATTEMPTS
        lookback_hours = lookback_hours or settings.DELIVERY_RETRY_LOOKBACK_HOURS
        since = (now or utcnow()) - timedelta(hours=lookback_hours)
        stmt = (
            select(DeliveryLog)
            .where(
                DeliveryLog.status == STATUS_ERROR,
                DeliveryLog.retryable.is_(True),
                DeliveryLog.retried_at.is_(None),
                DeliveryLog.attempt < max_attempts,
                DeliveryLog.created_at >= since,
            )
            .order_by(DeliveryLog.created_at.asc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def for_signal(self, signal_id: int) -> List[DeliveryLog]:
        result = await self.session.execute(
            select(DeliveryLog)
            .where(DeliveryLog.signal_id == signal_id)
            .order_by(DeliveryLog.id.asc())
        )
        return list(result.scalars().all())
