"""
Signal ingestion API Router.

Two entry points:
- POST /webhook: chart-alert webhooks authenticated by the strategy secret
- POST /signal: programmatic submissions authenticated by an account API key
"""
import logging
from datetime import datetime
from typing import Awaitable, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.database import get_db
from signalrelay.core.errors import SignalRelayError, ValidationError
from signalrelay.core.metrics import metrics
from signalrelay.services.credential_resolver import FLOW_API_KEY, FLOW_WEBHOOK
from signalrelay.services.dispatch_queue import DispatchQueue
from signalrelay.services.ingestion_service import IngestionResult, IngestionService

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------- Pydantic Schemas ----------

class ProcessedSignal(BaseModel):
    signal: str
    symbol: str
    price: float
    time: datetime
    interval: Optional[str] = None


class IngestResponse(BaseModel):
    success: bool = True
    message: str
    signal_id: Optional[int] = None
    duplicate_of: Optional[int] = None
    processed: Optional[ProcessedSignal] = None


# ---------- Dependencies ----------

def get_dispatch_queue(request: Request) -> Optional[DispatchQueue]:
    return getattr(request.app.state, "dispatch_queue", None)


async def get_ingestion_service(
    db: AsyncSession = Depends(get_db),
    dispatch_queue: Optional[DispatchQueue] = Depends(get_dispatch_queue),
) -> IngestionService:
    return IngestionService(db, dispatch_queue)


async def _run(flow: str, pending: Awaitable[IngestionResult]) -> IngestionResult:
    try:
        return await pending
    except SignalRelayError as e:
        await metrics.ingest_rejected(flow, e.status_code, e.error)
        raise
    except Exception:
        logger.exception(f"Unexpected error during {flow} ingestion")
        await metrics.ingest_rejected(flow, 500, "Internal server error")
        raise SignalRelayError()


# ---------- Endpoints ----------

@router.post("/webhook", response_model=IngestResponse, response_model_exclude_none=True)
async def receive_webhook(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Accept a chart-alert webhook with the fixed body shape."""
    content_type = request.headers.get("content-type", "").lower()
    if "application/json" not in content_type:
        raise ValidationError("Invalid content type", "Expected application/json")
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Invalid payload format", "Body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Invalid payload format", "Body must be a JSON object")

    result = await _run(FLOW_WEBHOOK, service.ingest_webhook(body))
    return IngestResponse(
        message=result.message,
        signal_id=result.signal_id,
        duplicate_of=result.duplicate_of,
    )


@router.post("/signal", response_model=IngestResponse, response_model_exclude_none=True)
async def receive_signal(
    request: Request,
    service: IngestionService = Depends(get_ingestion_service),
):
    """Accept an arbitrary body, mapped through the API key's field mapping."""
    raw_body = await request.body()
    result = await _run(
        FLOW_API_KEY,
        service.ingest_api(
            request.headers,
            request.query_params,
            request.headers.get("content-type", ""),
            raw_body,
        ),
    )
    processed = None
    if result.processed is not None:
        processed = ProcessedSignal(**result.processed.processed())
    return IngestResponse(
        message=result.message,
        signal_id=result.signal_id,
        duplicate_of=result.duplicate_of,
        processed=processed,
    )
