"""
Ingestion orchestration.

Runs one inbound request through the pipeline:
credential -> field mapping -> duplicate suppression -> rate limit -> store.

Everything up to the commit is synchronous with the request; dispatch is
handed to the queue by the store and never awaited here.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.errors import ValidationError
from signalrelay.core.metrics import metrics
from signalrelay.models.base import utcnow
from signalrelay.services.credential_resolver import CredentialResolver, ResolvedCredential
from signalrelay.services.dispatch_queue import DispatchQueue
from signalrelay.services.duplicate_suppressor import DuplicateSuppressor, duplicate_message
from signalrelay.services.field_mapper import MappedSignal, map_fields, parse_body
from signalrelay.services.plan_service import PlanService
from signalrelay.services.rate_limiter import RateLimiter
from signalrelay.services.signal_store import SignalStore

logger = logging.getLogger(__name__)

WEBHOOK_REQUIRED_FIELDS = ("token", "strategyId", "signal", "symbol", "price", "time")

ALERT_DUPLICATE_MESSAGE = "Duplicate signal ignored"
ACCEPTED_MESSAGE = "Signal received"


@dataclass
class IngestionResult:
    """Outcome of an accepted request: either a new signal or a duplicate."""
    message: str
    signal_id: Optional[int] = None
    duplicate_of: Optional[int] = None
    processed: Optional[MappedSignal] = None

    @property
    def duplicate(self) -> bool:
        return self.duplicate_of is not None


def _blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class IngestionService:

    def __init__(
        self,
        session: AsyncSession,
        dispatch_queue: Optional[DispatchQueue] = None,
        plans: Optional[PlanService] = None,
    ):
        self.session = session
        self.resolver = CredentialResolver(session)
        self.suppressor = DuplicateSuppressor(session)
        self.limiter = RateLimiter(session, plans)
        self.store = SignalStore(session, dispatch_queue)

    async def ingest_webhook(self, body: Mapping[str, Any]) -> IngestionResult:
        """Webhook flow: fixed body shape authenticated by the strategy secret."""
        missing = [name for name in WEBHOOK_REQUIRED_FIELDS if _blank(body.get(name))]
        if missing:
            raise ValidationError(
                "Missing required fields",
                f"Missing: {', '.join(missing)}",
                missing=missing,
            )

        credential = await self.resolver.resolve_webhook(body["token"], body["strategyId"])
        received_at = utcnow()
        mapped = map_fields(body, received_at=received_at)

        # The shared secret is never persisted with the raw payload
        raw_payload = {k: v for k, v in body.items() if k != "token"}
        return await self._accept(credential, mapped, raw_payload, received_at)

    async def ingest_api(
        self,
        headers: Mapping[str, str],
        query: Mapping[str, str],
        content_type: str,
        raw_body: bytes,
    ) -> IngestionResult:
        """API-key flow: arbitrary body read through the key's field mapping."""
        credential = await self.resolver.resolve_api_key(headers, query)
        body = parse_body(content_type, raw_body)
        logger.debug(f"API key {credential.api_key_id} payload: {body}")

        received_at = utcnow()
        mapped = map_fields(
            body,
            credential.payload_mapping,
            credential.default_values,
            received_at=received_at,
        )
        return await self._accept(credential, mapped, body, received_at)

    async def _accept(
        self,
        credential: ResolvedCredential,
        mapped: MappedSignal,
        raw_payload: Dict[str, Any],
        received_at,
    ) -> IngestionResult:
        if mapped.external_id:
            existing = await self.store.find_by_alert_id(credential.strategy_id, mapped.external_id)
            if existing is not None:
                await metrics.signal_duplicate(credential.account_id, mapped.symbol, "alert_id", existing)
                return IngestionResult(ALERT_DUPLICATE_MESSAGE, duplicate_of=existing)

        duplicate_of = await self.suppressor.find_duplicate(
            credential.strategy_id, mapped.symbol, mapped.direction, now=received_at
        )
        if duplicate_of is not None:
            await metrics.signal_duplicate(credential.account_id, mapped.symbol, "window", duplicate_of)
            return IngestionResult(duplicate_message(mapped.direction), duplicate_of=duplicate_of)

        await self.limiter.check(credential, now=received_at)

        stored = await self.store.store(credential, mapped, raw_payload, received_at)
        if not stored.created:
            await metrics.signal_duplicate(credential.account_id, mapped.symbol, "alert_id", stored.signal_id)
            return IngestionResult(ALERT_DUPLICATE_MESSAGE, duplicate_of=stored.signal_id)

        await metrics.signal_accepted(
            credential.account_id, mapped.symbol, mapped.direction, credential.flow, stored.signal_id
        )
        return IngestionResult(ACCEPTED_MESSAGE, signal_id=stored.signal_id, processed=mapped)
