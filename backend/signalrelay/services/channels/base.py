"""
Shared channel types.

A channel kind is a ``ChannelHandler`` record: a pydantic model for its stored
config, a formatter producing the kind-specific message, and an async sender.
The dispatcher drives every kind through ``ChannelHandler.deliver``.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import httpx
from pydantic import BaseModel, ValidationError as PydanticValidationError

from signalrelay.core.errors import ChannelConfigError
from signalrelay.services.field_mapper import ENTRY_DIRECTIONS, EXIT_DIRECTIONS

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})

GREEN = 0x22C55E
RED = 0xEF4444
GRAY = 0x6B7280


class ChannelKind(str, Enum):
    DISCORD = "discord"
    SLACK = "slack"
    TELEGRAM = "telegram"
    EMAIL = "email"
    WEBHOOK = "webhook"


@dataclass
class AlertPayload:
    """Everything a formatter may render about one signal."""
    signal_id: int
    direction: str
    symbol: str
    price: float
    signal_time: datetime
    strategy_id: int
    strategy_name: str
    interval: Optional[str] = None
    win_rate: Optional[float] = None
    total_trades: Optional[int] = None
    insight: Optional[str] = None

    @property
    def action(self) -> str:
        return self.direction.lower()

    @property
    def is_entry(self) -> bool:
        return self.direction in ENTRY_DIRECTIONS

    @property
    def is_exit(self) -> bool:
        return self.direction in EXIT_DIRECTIONS

    def template_fields(self) -> Dict[str, Any]:
        """Values available to ``{{field}}`` placeholders and the default webhook body."""
        return {
            "signal_id": self.signal_id,
            "signal": self.direction,
            "direction": self.direction,
            "action": self.action,
            "symbol": self.symbol,
            "price": self.price,
            "time": self.signal_time.isoformat() + "Z",
            "interval": self.interval,
            "strategy_id": self.strategy_id,
            "strategy_name": self.strategy_name,
            "win_rate": self.win_rate,
            "total_trades": self.total_trades,
            "insight": self.insight,
        }


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    retryable: bool = True


# ---------- Formatting helpers ----------

def format_price(price: float) -> str:
    if abs(price) >= 1:
        return f"{price:,.2f}"
    return f"{price:.6g}"


def format_time(value: datetime) -> str:
    return f"{value:%Y-%m-%d %H:%M:%S} UTC"


def direction_emoji(payload: AlertPayload) -> str:
    if payload.is_entry:
        return "\U0001F7E2"  # green circle
    if payload.is_exit:
        return "\U0001F534"  # red circle
    return "⚪"  # white circle


def direction_color(payload: AlertPayload) -> int:
    if payload.is_entry:
        return GREEN
    if payload.is_exit:
        return RED
    return GRAY


def headline(payload: AlertPayload) -> str:
    return f"{payload.direction} Signal: {payload.symbol}"


def win_rate_line(payload: AlertPayload) -> Optional[str]:
    if payload.win_rate is None:
        return None
    return f"{payload.win_rate:.0f}% ({payload.total_trades} closed trades)"


# ---------- HTTP delivery ----------

async def send_http(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    json: Any = None,
    content: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> DeliveryResult:
    """Perform one delivery request; never raises for transport or HTTP errors."""
    try:
        resp = await client.request(method, url, json=json, content=content, headers=headers)
    except httpx.TimeoutException:
        return DeliveryResult(False, error="Request timed out")
    except httpx.HTTPError as exc:
        return DeliveryResult(False, error=f"{type(exc).__name__}: {exc}")

    body = resp.text
    if resp.is_success:
        return DeliveryResult(True, status_code=resp.status_code, response_body=body)
    return DeliveryResult(
        False,
        status_code=resp.status_code,
        response_body=body,
        error=f"HTTP {resp.status_code}: {body[:200]}",
        retryable=resp.status_code >= 500 or resp.status_code in RETRYABLE_STATUS_CODES,
    )


# ---------- Handler record ----------

def describe_config_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        msg = err["msg"]
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


@dataclass(frozen=True)
class ChannelHandler:
    kind: ChannelKind
    config_model: Type[BaseModel]
    format: Callable[[AlertPayload, Any], Any]
    send: Callable[[httpx.AsyncClient, Any, Any], Awaitable[DeliveryResult]]
    success_message: str = field(default="Alert sent successfully")

    def parse_config(self, raw: Optional[Dict[str, Any]]) -> BaseModel:
        try:
            return self.config_model.model_validate(raw or {})
        except PydanticValidationError as exc:
            raise ChannelConfigError(describe_config_errors(exc)) from exc

    async def deliver(
        self, client: httpx.AsyncClient, raw_config: Optional[Dict[str, Any]], payload: AlertPayload
    ) -> DeliveryResult:
        """Validate config, format and send. Raises ChannelConfigError before any I/O."""
        config = self.parse_config(raw_config)
        message = self.format(payload, config)
        result = await self.send(client, config, message)
        if result.success and result.message is None:
            result.message = self.success_message
        return result
