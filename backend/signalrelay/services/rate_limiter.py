"""
Rate Limiter.

Best-effort sliding window over stored signals: counts what the account
already accepted through the same credential in the trailing window and
rejects once the count reaches the limit. No locks; a burst of concurrent
requests may overshoot by a few.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.config import settings
from signalrelay.core.errors import RateLimitError
from signalrelay.core.metrics import metrics
from signalrelay.models.base import utcnow
from signalrelay.models.signal import Signal
from signalrelay.services.credential_resolver import ResolvedCredential
from signalrelay.services.plan_service import PlanService, plan_service as default_plan_service

logger = logging.getLogger(__name__)


class RateLimiter:

    def __init__(
        self,
        session: AsyncSession,
        plans: Optional[PlanService] = None,
        window_sec: Optional[int] = None,
    ):
        self.session = session
        self.plans = plans or default_plan_service
        self.window_sec = window_sec if window_sec is not None else settings.RATE_LIMIT_WINDOW_SEC

    async def limit_for(self, credential: ResolvedCredential) -> int:
        """Plan-tier limit, capped by the credential's own limit when it has one."""
        limit = await self.plans.rate_limit_per_minute(self.session, credential.account_id)
        if credential.rate_limit_per_minute is not None:
            limit = min(limit, credential.rate_limit_per_minute)
        return limit

    async def recent_count(self, credential: ResolvedCredential, now: Optional[datetime] = None) -> int:
        since = (now or utcnow()) - timedelta(seconds=self.window_sec)
        if credential.api_key_id is None:
            # Webhook secrets belong to one strategy, so each strategy is its own bucket
            credential_filter = [Signal.api_key_id.is_(None), Signal.strategy_id == credential.strategy_id]
        else:
            credential_filter = [Signal.api_key_id == credential.api_key_id]

        stmt = select(func.count(Signal.id)).where(
            Signal.user_id == credential.account_id,
            *credential_filter,
            Signal.created_at >= since,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def check(self, credential: ResolvedCredential, now: Optional[datetime] = None) -> None:
        """Raise RateLimitError when the credential is at or over its limit."""
        limit = await self.limit_for(credential)
        count = await self.recent_count(credential, now)
        if count >= limit:
            logger.warning(
                f"Rate limit hit for account {credential.account_id} "
                f"({credential.flow}, key={credential.api_key_id}): {count}/{limit}"
            )
            await metrics.signal_rate_limited(credential.account_id, count, limit)
            raise RateLimitError(limit, retry_after=settings.RATE_LIMIT_RETRY_AFTER_SEC)
