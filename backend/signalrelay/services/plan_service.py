"""
Plan tier lookups.

Resolves an account's plan and the per-minute ingestion limit it grants.
Results are cached in an injected TTLCache to keep the hot ingestion path off
the accounts table.
"""
import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.cache import TTLCache
from signalrelay.core.config import settings
from signalrelay.models.account import Account

logger = logging.getLogger(__name__)


class PlanService:
    """Plan-tier configuration with a short-TTL cache."""

    def __init__(
        self,
        cache: Optional[TTLCache] = None,
        plan_limits: Optional[Dict[str, int]] = None,
        default_plan: Optional[str] = None,
    ):
        self.cache = cache or TTLCache(settings.PLAN_CACHE_TTL_SEC)
        self.plan_limits = plan_limits or dict(settings.PLAN_RATE_LIMITS)
        self.default_plan = (default_plan or settings.DEFAULT_PLAN).upper()

    async def get_plan(self, session: AsyncSession, account_id: int) -> str:
        cached = self.cache.get(account_id)
        if cached is not None:
            return cached

        result = await session.execute(select(Account.plan).where(Account.id == account_id))
        plan = result.scalar_one_or_none()
        plan = (plan or self.default_plan).upper()
        if plan not in self.plan_limits:
            logger.warning(f"Unknown plan {plan} for account {account_id}, using {self.default_plan}")
            plan = self.default_plan
        self.cache.set(account_id, plan)
        return plan

    async def rate_limit_per_minute(self, session: AsyncSession, account_id: int) -> int:
        plan = await self.get_plan(session, account_id)
        return self.plan_limits[plan]

    def invalidate(self, account_id: int) -> None:
        """Drop a cached plan, e.g. after a plan change."""
        self.cache.invalidate(account_id)


# Global plan service
plan_service = PlanService()
