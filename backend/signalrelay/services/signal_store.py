"""
Signal Store.

Persists canonical signals exactly once per (strategy, alert id) and hands
each newly stored signal to the dispatch queue after commit.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.models.api_key import ApiKey
from signalrelay.models.base import utcnow
from signalrelay.models.signal import Signal
from signalrelay.services.credential_resolver import ResolvedCredential
from signalrelay.services.dispatch_queue import DispatchQueue
from signalrelay.services.field_mapper import MappedSignal, normalize_direction

logger = logging.getLogger(__name__)


@dataclass
class StoreResult:
    signal_id: int
    created: bool


class SignalStore:

    def __init__(self, session: AsyncSession, dispatch_queue: Optional[DispatchQueue] = None):
        self.session = session
        self.dispatch_queue = dispatch_queue

    async def find_by_alert_id(self, strategy_id: int, alert_id: str) -> Optional[int]:
        result = await self.session.execute(
            select(Signal.id).where(
                Signal.strategy_id == strategy_id,
                Signal.alert_id == alert_id,
            )
        )
        return result.scalar_one_or_none()

    async def store(
        self,
        credential: ResolvedCredential,
        mapped: MappedSignal,
        raw_payload: Dict[str, Any],
        received_at: Optional[datetime] = None,
    ) -> StoreResult:
        """
        Insert the signal and commit.

        A conflicting (strategy, alert id) insert is a no-op; the id of the
        existing row is returned with ``created=False`` and nothing is
        dispatched.
        """
        received_at = received_at or utcnow()
        values = {
            "user_id": credential.account_id,
            "strategy_id": credential.strategy_id,
            "api_key_id": credential.api_key_id,
            "signal_type": normalize_direction(mapped.direction),
            "symbol": mapped.symbol.strip().upper(),
            "price": mapped.price,
            "signal_time": mapped.time,
            "interval": mapped.interval,
            "alert_id": mapped.external_id,
            "raw_payload": raw_payload,
            "created_at": received_at,
            "updated_at": received_at,
        }

        stmt = (
            self._insert()
            .values(**values)
            .on_conflict_do_nothing(index_elements=["strategy_id", "alert_id"])
            .returning(Signal.id)
        )
        result = await self.session.execute(stmt)
        signal_id = result.scalar_one_or_none()

        if signal_id is None:
            await self.session.rollback()
            existing = await self.find_by_alert_id(credential.strategy_id, mapped.external_id)
            logger.info(
                f"Alert {mapped.external_id} already stored for strategy "
                f"{credential.strategy_id} as signal {existing}"
            )
            return StoreResult(signal_id=existing, created=False)

        if credential.api_key_id is not None:
            await self.session.execute(
                update(ApiKey)
                .where(ApiKey.id == credential.api_key_id)
                .values(last_used_at=received_at, request_count=ApiKey.request_count + 1)
            )

        await self.session.commit()
        logger.info(
            f"Stored signal {signal_id}: {values['signal_type']} {values['symbol']} "
            f"@ {mapped.price} (strategy {credential.strategy_id}, {credential.flow})"
        )

        await self._submit_dispatch(signal_id, credential.strategy_id)
        return StoreResult(signal_id=signal_id, created=True)

    def _insert(self):
        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert(Signal)
        return postgresql.insert(Signal)

    async def _submit_dispatch(self, signal_id: int, strategy_id: int) -> None:
        if self.dispatch_queue is None:
            logger.warning(f"No dispatch queue configured, signal {signal_id} will not be dispatched")
            return
        try:
            await self.dispatch_queue.submit(signal_id, strategy_id)
        except Exception:
            # The signal is committed; dispatch problems never reach the caller
            logger.exception(f"Failed to submit signal {signal_id} for dispatch")
