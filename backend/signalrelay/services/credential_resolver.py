"""
Credential Resolver.

Authenticates an inbound request either through a strategy's shared secret
(webhook flow) or an account API key (programmatic flow), and returns the
owning account, target strategy and per-credential configuration.
"""
import hmac
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from signalrelay.core.errors import (
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    StrategyDeletedError,
    ValidationError,
)
from signalrelay.core.logging import mask_secret
from signalrelay.models.api_key import ApiKey
from signalrelay.models.strategy import Strategy

logger = logging.getLogger(__name__)

FLOW_WEBHOOK = "webhook"
FLOW_API_KEY = "api_key"

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY_PARAM = "api_key"


@dataclass
class ResolvedCredential:
    """Who is submitting, where the signal goes, and how to read the body."""
    flow: str
    account_id: int
    strategy_id: int
    strategy_name: str
    api_key_id: Optional[int] = None
    payload_mapping: Dict[str, str] = field(default_factory=dict)
    default_values: Dict[str, Any] = field(default_factory=dict)
    rate_limit_per_minute: Optional[int] = None
    integration_ids: List[int] = field(default_factory=list)


def extract_api_key(headers: Mapping[str, str], query: Mapping[str, str]) -> Optional[str]:
    """Dedicated header first, then ``Authorization: Bearer``, then query param."""
    key = headers.get(API_KEY_HEADER)
    if key:
        return key.strip()

    authorization = headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        bearer = authorization[7:].strip()
        if bearer:
            return bearer

    key = query.get(API_KEY_QUERY_PARAM)
    return key.strip() if key else None


class CredentialResolver:
    """Read-only credential lookups against the shared data store."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve_webhook(self, token: Any, strategy_id: Any) -> ResolvedCredential:
        """Authenticate the webhook flow by strategy id and shared secret."""
        strategy = await self._get_strategy(strategy_id)
        if strategy is None:
            logger.info(f"Strategy not found: {strategy_id}")
            raise NotFoundError("Strategy not found")

        if not hmac.compare_digest(str(token).encode(), strategy.secret_token.encode()):
            logger.info(f"Invalid token for strategy: {strategy.id}")
            raise AuthenticationError("Invalid token")

        if strategy.is_deleted:
            raise StrategyDeletedError()

        return ResolvedCredential(
            flow=FLOW_WEBHOOK,
            account_id=strategy.user_id,
            strategy_id=strategy.id,
            strategy_name=strategy.name,
        )

    async def authenticate_api_key(
        self, headers: Mapping[str, str], query: Mapping[str, str]
    ) -> ApiKey:
        """Return the active API key presented by the request."""
        raw_key = extract_api_key(headers, query)
        if not raw_key:
            raise AuthenticationError(
                "Unauthorized",
                "API key required. Provide via x-api-key header, "
                "Authorization: Bearer <key>, or api_key query param",
            )

        result = await self.session.execute(select(ApiKey).where(ApiKey.api_key == raw_key))
        api_key = result.scalar_one_or_none()
        if api_key is None:
            logger.info(f"Invalid API key: {mask_secret(raw_key)}")
            raise AuthenticationError("Invalid API key")

        if not api_key.is_active:
            raise AuthorizationError("API key is disabled")
        return api_key

    async def resolve_api_key(
        self, headers: Mapping[str, str], query: Mapping[str, str]
    ) -> ResolvedCredential:
        """Authenticate the programmatic flow and resolve its target strategy."""
        api_key = await self.authenticate_api_key(headers, query)
        strategy = await self._strategy_for_key(api_key)
        return ResolvedCredential(
            flow=FLOW_API_KEY,
            account_id=api_key.user_id,
            strategy_id=strategy.id,
            strategy_name=strategy.name,
            api_key_id=api_key.id,
            payload_mapping=api_key.payload_mapping or {},
            default_values=api_key.default_values or {},
            rate_limit_per_minute=api_key.rate_limit_per_minute,
            integration_ids=[int(i) for i in (api_key.integration_ids or [])],
        )

    async def _get_strategy(self, strategy_id: Any) -> Optional[Strategy]:
        try:
            strategy_pk = int(strategy_id)
        except (TypeError, ValueError):
            return None
        return await self.session.get(Strategy, strategy_pk)

    async def _strategy_for_key(self, api_key: ApiKey) -> Strategy:
        if api_key.strategy_id is not None:
            strategy = await self.session.get(Strategy, api_key.strategy_id)
            if strategy is None:
                raise NotFoundError("Strategy not found")
            if strategy.is_deleted:
                raise StrategyDeletedError()
            return strategy

        # Unbound key: the account's oldest active strategy
        stmt = (
            select(Strategy)
            .where(
                Strategy.user_id == api_key.user_id,
                Strategy.is_deleted.is_(False),
                Strategy.is_active.is_(True),
            )
            .order_by(Strategy.created_at.asc(), Strategy.id.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        strategy = result.scalar_one_or_none()
        if strategy is None:
            raise ValidationError(
                "No active strategy found",
                "Create a strategy first or link this API key to a specific strategy",
            )
        return strategy
