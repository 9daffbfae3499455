"""
Duplicate Suppressor.

Charting tools re-fire the same alert on every tick inside a bar. A new
entry (BUY/LONG) or exit (SELL/SHORT) signal is a duplicate when the same
strategy already received a signal of the same class for the same symbol
within the trailing window. CLOSE signals are never suppressed.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.config import settings
from signalrelay.models.base import utcnow
from signalrelay.models.signal import Signal
from signalrelay.services.field_mapper import ENTRY_DIRECTIONS, EXIT_DIRECTIONS, direction_class

logger = logging.getLogger(__name__)


class DuplicateSuppressor:

    def __init__(self, session: AsyncSession, window_sec: Optional[int] = None):
        self.session = session
        self.window_sec = window_sec if window_sec is not None else settings.DUPLICATE_WINDOW_SEC

    async def find_duplicate(
        self,
        strategy_id: int,
        symbol: str,
        direction: str,
        now: Optional[datetime] = None,
    ) -> Optional[int]:
        """Return the id of an earlier same-class signal, or None."""
        signal_class = direction_class(direction)
        if signal_class is None:
            return None

        same_class = ENTRY_DIRECTIONS if signal_class == "entry" else EXIT_DIRECTIONS
        since = (now or utcnow()) - timedelta(seconds=self.window_sec)

        stmt = (
            select(Signal.id)
            .where(
                Signal.strategy_id == strategy_id,
                Signal.symbol == symbol.upper(),
                Signal.signal_type.in_(sorted(same_class)),
                Signal.created_at >= since,
            )
            .order_by(Signal.created_at.asc(), Signal.id.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        duplicate_of = result.scalar_one_or_none()
        if duplicate_of is not None:
            logger.info(
                f"Duplicate {direction} {symbol} for strategy {strategy_id} "
                f"(existing signal {duplicate_of})"
            )
        return duplicate_of


def duplicate_message(direction: str) -> str:
    return f"Duplicate {direction} signal ignored (similar signal exists within 5 minutes)"
