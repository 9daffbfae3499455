"""
Channel Dispatcher.

Fans a stored signal out to every eligible notification channel of its
strategy and account. Each channel is delivered independently and
concurrently, with its own session, delivery log entry and timeout, so one
failing or hanging channel never affects its siblings.

Per delivery: pending log -> format -> send -> success | error.
No retries inside a dispatch; failed entries are picked up by the
delivery retry task.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signalrelay.core.config import settings
from signalrelay.core.database import AsyncSessionLocal
from signalrelay.core.errors import ChannelConfigError, NotFoundError
from signalrelay.core.metrics import metrics
from signalrelay.models.api_key import ApiKey
from signalrelay.models.base import utcnow
from signalrelay.models.delivery_log import DeliveryLog
from signalrelay.models.integration import Integration
from signalrelay.models.signal import Signal
from signalrelay.models.strategy import Strategy
from signalrelay.services.channels import AlertPayload, DeliveryResult, get_channel_handler
from signalrelay.services.delivery_log import STATUS_ERROR, DeliveryLogService, truncate
from signalrelay.services.enrichment_service import EnrichmentService

logger = logging.getLogger(__name__)

INELIGIBLE_STATUSES = ("deleted", "paused")
CHANNEL_GONE_ERROR = "Channel no longer exists"


@dataclass
class ChannelResult:
    channel: int
    type: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"channel": self.channel, "type": self.type, "success": self.success}
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DispatchSummary:
    signal_id: int
    results: List[ChannelResult] = field(default_factory=list)

    @property
    def sent(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total(self) -> int:
        return len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "results": [r.to_dict() for r in self.results],
            "sent": self.sent,
            "total": self.total,
        }


@dataclass
class _ChannelRef:
    """Detached snapshot of a channel, safe to hand to another session."""
    id: int
    type: str


def build_payload(signal: Signal, strategy: Strategy, enrichment=None) -> AlertPayload:
    performance = enrichment.performance if enrichment else None
    return AlertPayload(
        signal_id=signal.id,
        direction=signal.signal_type,
        symbol=signal.symbol,
        price=float(signal.price),
        signal_time=signal.signal_time,
        strategy_id=strategy.id,
        strategy_name=strategy.name or "Unknown",
        interval=signal.interval,
        win_rate=performance.win_rate if performance else None,
        total_trades=performance.total_trades if performance else None,
        insight=enrichment.insight if enrichment else None,
    )


def default_client_factory(timeout_sec: float) -> Callable[[], httpx.AsyncClient]:
    def factory() -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout_sec)
    return factory


class ChannelDispatcher:

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        enrichment: Optional[EnrichmentService] = None,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        max_concurrency: Optional[int] = None,
        timeout_sec: Optional[float] = None,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.enrichment = enrichment or EnrichmentService()
        self.timeout_sec = settings.DELIVERY_TIMEOUT_SEC if timeout_sec is None else timeout_sec
        self.max_concurrency = max_concurrency or settings.DISPATCH_MAX_CONCURRENCY
        self.client_factory = client_factory or default_client_factory(self.timeout_sec)

    # ---------- Channel selection ----------

    async def eligible_channels(
        self,
        session: AsyncSession,
        strategy: Strategy,
        channel_filter: Optional[List[int]] = None,
    ) -> List[Integration]:
        """Strategy-scoped plus account-wide channels that are enabled and not paused/deleted."""
        stmt = (
            select(Integration)
            .where(
                Integration.user_id == strategy.user_id,
                or_(
                    Integration.strategy_id == strategy.id,
                    Integration.strategy_id.is_(None),
                ),
                Integration.enabled.is_(True),
                Integration.status.notin_(INELIGIBLE_STATUSES),
            )
            .order_by(Integration.id.asc())
        )
        if channel_filter:
            stmt = stmt.where(Integration.id.in_(channel_filter))
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def _channel_filter(self, session: AsyncSession, signal: Signal) -> Optional[List[int]]:
        if signal.api_key_id is None:
            return None
        api_key = await session.get(ApiKey, signal.api_key_id)
        if api_key is None or not api_key.integration_ids:
            return None
        return [int(i) for i in api_key.integration_ids]

    # ---------- Dispatch ----------

    async def dispatch(self, signal_id: int, strategy_id: int) -> DispatchSummary:
        """Deliver a stored signal to all eligible channels and report per-channel results."""
        async with self.session_factory() as session:
            signal = await session.get(Signal, signal_id)
            if signal is None:
                raise NotFoundError("Signal not found")
            strategy = await session.get(Strategy, strategy_id)
            if strategy is None:
                raise NotFoundError("Strategy not found")

            channel_filter = await self._channel_filter(session, signal)
            channels = await self.eligible_channels(session, strategy, channel_filter)
            if not channels:
                logger.info(f"No active channels for strategy {strategy_id}, signal {signal_id}")
                await self._mark_processed(session, signal_id)
                return DispatchSummary(signal_id=signal_id)

            refs = [_ChannelRef(id=c.id, type=c.type) for c in channels]
            enrichment = await self.enrichment.enrich(
                session,
                strategy_id=strategy.id,
                strategy_name=strategy.name,
                direction=signal.signal_type,
                symbol=signal.symbol,
                price=float(signal.price),
            )
            payload = build_payload(signal, strategy, enrichment)
            user_id = strategy.user_id

        logger.info(f"Dispatching signal {signal_id} to {len(refs)} channel(s)")
        semaphore = asyncio.Semaphore(self.max_concurrency)
        async with self.client_factory() as client:
            results = await asyncio.gather(*[
                self._deliver_guarded(semaphore, client, ref, payload, user_id)
                for ref in refs
            ])

        async with self.session_factory() as session:
            await self._mark_processed(session, signal_id)

        summary = DispatchSummary(signal_id=signal_id, results=list(results))
        logger.info(f"Signal {signal_id} dispatched: {summary.sent}/{summary.total} delivered")
        await metrics.dispatch_completed(user_id, signal_id, summary.sent, summary.total)
        return summary

    async def _deliver_guarded(
        self,
        semaphore: asyncio.Semaphore,
        client: httpx.AsyncClient,
        ref: _ChannelRef,
        payload: AlertPayload,
        user_id: int,
        attempt: int = 1,
    ) -> ChannelResult:
        async with semaphore:
            try:
                return await self._deliver_one(client, ref, payload, user_id, attempt)
            except Exception as e:
                logger.exception(f"Dispatch to channel {ref.id} failed unexpectedly")
                return ChannelResult(channel=ref.id, type=ref.type, success=False, error=str(e))

    async def _deliver_one(
        self,
        client: httpx.AsyncClient,
        ref: _ChannelRef,
        payload: AlertPayload,
        user_id: int,
        attempt: int = 1,
    ) -> ChannelResult:
        async with self.session_factory() as session:
            logs = DeliveryLogService(session)
            entry = await logs.create_pending(
                user_id=user_id,
                strategy_id=payload.strategy_id,
                signal_id=payload.signal_id,
                integration_id=ref.id,
                integration_type=ref.type,
                message=f"Sending {ref.type} alert for {payload.direction} {payload.symbol}",
                attempt=attempt,
            )

            integration = await session.get(Integration, ref.id)
            started = time.monotonic()
            if integration is None:
                result = DeliveryResult(False, error=CHANNEL_GONE_ERROR, retryable=False)
            else:
                result = await self._send(client, integration, payload)
            duration_ms = (time.monotonic() - started) * 1000

            if result.success:
                await logs.mark_success(entry, result.message, result.status_code, result.response_body)
            else:
                await logs.mark_error(
                    entry, result.error or "Delivery failed", result.status_code,
                    result.response_body, retryable=result.retryable,
                )
            if integration is not None:
                await self._update_channel(session, integration, result)

        level = logging.INFO if result.success else logging.WARNING
        logger.log(
            level,
            f"{ref.type} alert {'sent' if result.success else 'failed'} for channel {ref.id} "
            f"(signal {payload.signal_id}, attempt {attempt})"
            + ("" if result.success else f": {result.error}"),
        )
        await metrics.delivery_completed(user_id, ref.type, result.success, duration_ms, result.status_code)
        return ChannelResult(channel=ref.id, type=ref.type, success=result.success, error=result.error)

    async def _send(
        self, client: httpx.AsyncClient, integration: Integration, payload: AlertPayload
    ) -> DeliveryResult:
        try:
            handler = get_channel_handler(integration.type)
            return await asyncio.wait_for(
                handler.deliver(client, integration.config, payload),
                timeout=self.timeout_sec,
            )
        except ChannelConfigError as e:
            return DeliveryResult(False, error=f"{e.error}: {e.message}", retryable=False)
        except ValueError as e:
            return DeliveryResult(False, error=str(e), retryable=False)
        except asyncio.TimeoutError:
            return DeliveryResult(False, error=f"Delivery timed out after {self.timeout_sec}s")
        except Exception as e:
            logger.exception(f"Unexpected error delivering to channel {integration.id}")
            return DeliveryResult(False, error=f"{type(e).__name__}: {e}")

    async def _update_channel(
        self, session: AsyncSession, integration: Integration, result: DeliveryResult
    ) -> None:
        integration.last_delivery_at = utcnow()
        if result.success:
            integration.status = "active"
            integration.error_message = None
            integration.error_count = 0
        else:
            # Degraded, never disabled: future dispatches still attempt delivery
            integration.status = "error"
            integration.error_message = truncate(result.error, settings.DELIVERY_ERROR_LIMIT)
            integration.error_count = (integration.error_count or 0) + 1
        await session.commit()

    async def _mark_processed(self, session: AsyncSession, signal_id: int) -> None:
        await session.execute(
            update(Signal).where(Signal.id == signal_id).values(processed_at=utcnow())
        )
        await session.commit()

    # ---------- Redelivery ----------

    async def redeliver(self, log_id: int, max_attempts: Optional[int] = None) -> Optional[ChannelResult]:
        """
        Re-attempt one failed delivery as a new log entry with ``attempt + 1``.

        Returns None when the entry is not eligible: not an error, not
        retryable, already retried, out of attempts, or its channel is gone.
        """
        max_attempts = max_attempts or settings.DELIVERY_MAX_ATTEMPTS
        async with self.session_factory() as session:
            entry = await session.get(DeliveryLog, log_id)
            if entry is None:
                raise NotFoundError("Delivery log not found")
            if (
                entry.status != STATUS_ERROR
                or not entry.retryable
                or entry.retried_at is not None
                or entry.attempt >= max_attempts
            ):
                logger.debug(f"Delivery log {log_id} is not eligible for redelivery")
                return None

            # Claim the entry first so overlapping retry runs skip it
            await DeliveryLogService(session).mark_retried(entry)

            integration = await session.get(Integration, entry.integration_id)
            if (
                integration is None
                or not integration.enabled
                or integration.status in INELIGIBLE_STATUSES
            ):
                logger.info(f"Channel {entry.integration_id} no longer eligible, skipping redelivery")
                return None

            signal = await session.get(Signal, entry.signal_id)
            strategy = await session.get(Strategy, entry.strategy_id)
            if signal is None or strategy is None:
                return None

            performance = await self.enrichment.performance_snapshot(session, strategy.id)
            payload = build_payload(signal, strategy)
            if performance:
                payload.win_rate = performance.win_rate
                payload.total_trades = performance.total_trades
            ref = _ChannelRef(id=integration.id, type=integration.type)
            user_id = entry.user_id
            attempt = entry.attempt + 1

        async with self.client_factory() as client:
            return await self._deliver_guarded(
                asyncio.Semaphore(1), client, ref, payload, user_id, attempt=attempt
            )
