import re
from datetime import timezone
from typing import Any, Dict

import httpx
from pydantic import BaseModel, field_validator

from signalrelay.core.config import settings
from signalrelay.services.channels.base import (
    AlertPayload,
    ChannelHandler,
    ChannelKind,
    DeliveryResult,
    direction_emoji,
    format_price,
    format_time,
    headline,
    send_http,
    win_rate_line,
)

WEBHOOK_URL_PATTERN = re.compile(r"^https://hooks\.slack\.com/services/.+$")


class SlackConfig(BaseModel):
    webhook_url: str

    @field_validator("webhook_url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip()
        if not WEBHOOK_URL_PATTERN.match(value):
            raise ValueError(
                "Invalid Slack webhook URL. Expected https://hooks.slack.com/services/..."
            )
        return value


def _color(payload: AlertPayload) -> str:
    if payload.is_entry:
        return "good"
    if payload.is_exit:
        return "danger"
    return "#6b7280"


def format_message(payload: AlertPayload, config: SlackConfig) -> Dict[str, Any]:
    fields = [
        {"title": "Strategy", "value": payload.strategy_name, "short": True},
        {"title": "Price", "value": f"${format_price(payload.price)}", "short": True},
        {"title": "Time", "value": format_time(payload.signal_time), "short": False},
    ]
    win_rate = win_rate_line(payload)
    if win_rate:
        fields.append({"title": "Win Rate", "value": win_rate, "short": True})
    if payload.insight:
        fields.append({"title": "AI Insight", "value": payload.insight, "short": False})

    attachment = {
        "color": _color(payload),
        "title": f"{direction_emoji(payload)} {headline(payload)}",
        "fields": fields,
        "footer": settings.MESSAGE_FOOTER,
        "ts": int(payload.signal_time.replace(tzinfo=timezone.utc).timestamp()),
    }
    return {"attachments": [attachment]}


async def send(client: httpx.AsyncClient, config: SlackConfig, message: Dict[str, Any]) -> DeliveryResult:
    return await send_http(client, "POST", config.webhook_url, json=message)


handler = ChannelHandler(
    kind=ChannelKind.SLACK,
    config_model=SlackConfig,
    format=format_message,
    send=send,
    success_message="Slack alert sent successfully",
)
