"""
Metrics API endpoint for observability.

Provides:
- Summary statistics for ingestion and delivery metrics
- Recent buffered metric events
"""
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from signalrelay.core.metrics import metrics

router = APIRouter()


class MetricsSummary(BaseModel):
    """Summary of metrics over a time period."""
    period_hours: int
    total_events: int
    by_category: dict
    by_event: dict
    signals_accepted: int
    duplicates_suppressed: int
    rate_limited: int
    delivery_success_rate: Optional[float]


class MetricEventResponse(BaseModel):
    """Single metric event for API response."""
    timestamp: str
    category: str
    event_type: str
    symbol: Optional[str]
    account_id: Optional[int]
    value: float
    metadata: dict


@router.get("/summary", response_model=MetricsSummary)
async def get_metrics_summary(
    hours: int = Query(default=24, ge=1, le=168, description="Hours of history to include")
) -> MetricsSummary:
    """Aggregated counts and delivery success rate over recent events."""
    return MetricsSummary(**metrics.get_summary(hours=hours))


@router.get("/events", response_model=List[MetricEventResponse])
async def get_recent_events(
    category: Optional[str] = Query(default=None, description="Filter by category"),
    limit: int = Query(default=100, ge=1, le=1000),
) -> List[MetricEventResponse]:
    events = metrics.get_buffer()
    if category:
        events = [e for e in events if e.category == category]
    return [MetricEventResponse(**e.to_dict()) for e in events[-limit:]]
