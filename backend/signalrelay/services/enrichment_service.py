"""
Enrichment Service.

Attaches optional context to a stored signal before channel messages are
formatted: a closed-trade performance snapshot for the strategy, and a short
AI-generated insight. Both are optional; neither can fail a dispatch.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.config import settings
from signalrelay.core.errors import DependencyError
from signalrelay.models.trade import Trade
from signalrelay.services.insights import (
    InsightProvider,
    InsightRequest,
    PerformanceSnapshot,
    get_insight_provider,
)

logger = logging.getLogger(__name__)


@dataclass
class Enrichment:
    performance: Optional[PerformanceSnapshot] = None
    insight: Optional[str] = None


class EnrichmentService:

    def __init__(
        self,
        insight_provider: Optional[InsightProvider] = None,
        insights_enabled: Optional[bool] = None,
        min_closed_trades: Optional[int] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.insights_enabled = (
            settings.INSIGHTS_ENABLED if insights_enabled is None else insights_enabled
        )
        self.min_closed_trades = (
            settings.STATS_MIN_CLOSED_TRADES if min_closed_trades is None else min_closed_trades
        )
        self.timeout_sec = settings.INSIGHT_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        self._provider = insight_provider

    @property
    def provider(self) -> InsightProvider:
        if self._provider is None:
            self._provider = get_insight_provider()
        return self._provider

    async def performance_snapshot(
        self, session: AsyncSession, strategy_id: int
    ) -> Optional[PerformanceSnapshot]:
        """Win rate over closed trades; None until there are enough to mean anything."""
        stmt = select(
            func.count(Trade.id),
            func.sum(case((Trade.pnl > 0, 1), else_=0)),
        ).where(Trade.strategy_id == strategy_id, Trade.status == "closed")
        total, wins = (await session.execute(stmt)).one()
        total = total or 0
        if total < self.min_closed_trades:
            return None
        return PerformanceSnapshot(win_rate=round((wins or 0) / total * 100, 1), total_trades=total)

    async def insight(self, request: InsightRequest) -> Optional[str]:
        if not self.insights_enabled:
            return None
        try:
            return await asyncio.wait_for(self.provider.generate(request), timeout=self.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(f"Insight generation timed out for {request.symbol}")
        except DependencyError as e:
            logger.warning(f"Insight provider unavailable: {e.message}")
        except Exception as e:
            logger.warning(f"Insight generation failed for {request.symbol}: {e}")
        return None

    async def enrich(
        self,
        session: AsyncSession,
        strategy_id: int,
        strategy_name: str,
        direction: str,
        symbol: str,
        price: float,
    ) -> Enrichment:
        try:
            performance = await self.performance_snapshot(session, strategy_id)
        except Exception as e:
            logger.warning(f"Performance snapshot failed for strategy {strategy_id}: {e}")
            await session.rollback()
            performance = None

        insight = await self.insight(
            InsightRequest(
                direction=direction,
                symbol=symbol,
                price=price,
                strategy_name=strategy_name,
                performance=performance,
            )
        )
        return Enrichment(performance=performance, insight=insight)
