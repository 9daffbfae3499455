"""
Metrics emission system for observability.

Provides structured metrics for:
- Signal ingestion outcomes (accepted, duplicate, rate limited, rejected)
- Channel delivery outcomes (success, error) per channel type
- Dispatch fan-out batches

Metrics are emitted to:
1. Python logging (immediate visibility)
2. Redis stream (real-time consumers, dashboard)
3. In-memory buffer (API aggregation)
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from signalrelay.core.redis import StreamNames

logger = logging.getLogger(__name__)


@dataclass
class MetricEvent:
    """Structured metric event."""
    timestamp: datetime
    category: str          # "ingest", "dispatch"
    event_type: str        # "accepted", "delivery_error", etc.
    symbol: Optional[str]
    account_id: Optional[int]
    value: float
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "category": self.category,
            "event_type": self.event_type,
            "symbol": self.symbol,
            "account_id": self.account_id,
            "value": self.value,
            "metadata": self.metadata
        }


class MetricsEmitter:
    """
    Emit structured metrics to multiple destinations.

    Safe for use across async consumers.
    """

    CATEGORY_INGEST = "ingest"
    CATEGORY_DISPATCH = "dispatch"

    def __init__(self, redis_client=None, buffer_size: int = 1000):
        """
        Initialize metrics emitter.

        Args:
            redis_client: Optional async Redis client for stream publishing
            buffer_size: Max events to keep in memory buffer
        """
        self.redis = redis_client
        self.buffer_size = buffer_size
        self._buffer: List[MetricEvent] = []

    def set_redis(self, redis_client) -> None:
        """Set Redis client (for lazy initialization)."""
        self.redis = redis_client

    async def emit(
        self,
        category: str,
        event_type: str,
        value: float = 1.0,
        symbol: str = None,
        account_id: int = None,
        metadata: dict = None
    ) -> MetricEvent:
        """
        Emit a metric event.

        Args:
            category: Event category (ingest, dispatch)
            event_type: Specific event type within category
            value: Numeric value (1.0 for counters, actual value for numeric)
            symbol: Optional instrument symbol
            account_id: Owning account
            metadata: Additional context as key-value pairs

        Returns:
            The emitted MetricEvent
        """
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc),
            category=category,
            event_type=event_type,
            symbol=symbol,
            account_id=account_id,
            value=value,
            metadata=metadata or {}
        )

        meta_str = f" {metadata}" if metadata else ""
        logger.info(
            f"METRIC [{category}/{event_type}] "
            f"symbol={symbol} value={value}{meta_str}"
        )

        self._buffer.append(event)
        if len(self._buffer) > self.buffer_size:
            self._buffer = self._buffer[-self.buffer_size:]

        if self.redis:
            try:
                await self.redis.xadd(StreamNames.METRICS, {
                    "data": json.dumps(event.to_dict())
                })
            except Exception as e:
                logger.warning(f"Failed to publish metric to Redis: {e}")

        return event

    # =========================================================================
    # Convenience methods for common metrics
    # =========================================================================

    async def signal_accepted(self, account_id: int, symbol: str, direction: str,
                              flow: str, signal_id: int) -> MetricEvent:
        """Record a persisted signal."""
        return await self.emit(
            self.CATEGORY_INGEST, "accepted",
            symbol=symbol, account_id=account_id,
            metadata={"direction": direction, "flow": flow, "signal_id": signal_id}
        )

    async def signal_duplicate(self, account_id: int, symbol: str, reason: str,
                               duplicate_of: int) -> MetricEvent:
        """Record a suppressed duplicate."""
        return await self.emit(
            self.CATEGORY_INGEST, "duplicate",
            symbol=symbol, account_id=account_id,
            metadata={"reason": reason, "duplicate_of": duplicate_of}
        )

    async def signal_rate_limited(self, account_id: int, count: int,
                                  limit: int) -> MetricEvent:
        """Record a rate-limit rejection."""
        return await self.emit(
            self.CATEGORY_INGEST, "rate_limited", count,
            account_id=account_id,
            metadata={"limit": limit}
        )

    async def ingest_rejected(self, flow: str, status_code: int,
                              error: str) -> MetricEvent:
        """Record an ingestion request rejected before persistence."""
        return await self.emit(
            self.CATEGORY_INGEST, "rejected", status_code,
            metadata={"flow": flow, "error": error}
        )

    async def delivery_completed(self, account_id: int, channel_type: str,
                                 success: bool, duration_ms: float,
                                 status_code: Optional[int] = None) -> MetricEvent:
        """Record the outcome of one channel delivery."""
        return await self.emit(
            self.CATEGORY_DISPATCH,
            "delivery_success" if success else "delivery_error",
            round(duration_ms, 2),
            account_id=account_id,
            metadata={"channel_type": channel_type, "status_code": status_code}
        )

    async def dispatch_completed(self, account_id: int, signal_id: int,
                                 sent: int, total: int) -> MetricEvent:
        """Record a finished fan-out."""
        return await self.emit(
            self.CATEGORY_DISPATCH, "fanout_completed", sent,
            account_id=account_id,
            metadata={"signal_id": signal_id, "total": total}
        )

    # =========================================================================
    # Aggregation methods
    # =========================================================================

    def get_buffer(self) -> List[MetricEvent]:
        """Get buffered events (for API)."""
        return list(self._buffer)

    def get_summary(self, hours: int = 24) -> dict:
        """Aggregate buffered events from the last ``hours`` hours."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        recent = [e for e in self._buffer if e.timestamp >= cutoff]

        by_category: Dict[str, int] = {}
        by_event: Dict[str, int] = {}
        for event in recent:
            by_category[event.category] = by_category.get(event.category, 0) + 1
            key = f"{event.category}/{event.event_type}"
            by_event[key] = by_event.get(key, 0) + 1

        delivered = by_event.get("dispatch/delivery_success", 0)
        failed = by_event.get("dispatch/delivery_error", 0)
        return {
            "period_hours": hours,
            "total_events": len(recent),
            "by_category": by_category,
            "by_event": by_event,
            "signals_accepted": by_event.get("ingest/accepted", 0),
            "duplicates_suppressed": by_event.get("ingest/duplicate", 0),
            "rate_limited": by_event.get("ingest/rate_limited", 0),
            "delivery_success_rate": (
                delivered / (delivered + failed)
                if delivered + failed > 0 else None
            ),
        }

    def clear_buffer(self) -> int:
        """Clear buffer and return count of cleared events."""
        count = len(self._buffer)
        self._buffer = []
        return count


# Global singleton instance
metrics = MetricsEmitter()
