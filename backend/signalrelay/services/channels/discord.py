import re
from typing import Any, Dict

import httpx
from pydantic import BaseModel, field_validator

from signalrelay.core.config import settings
from signalrelay.services.channels.base import (
    AlertPayload,
    ChannelHandler,
    ChannelKind,
    DeliveryResult,
    direction_color,
    direction_emoji,
    format_price,
    format_time,
    headline,
    send_http,
    win_rate_line,
)

WEBHOOK_URL_PATTERNS = [
    re.compile(r"^https://discord\.com/api/webhooks/\d+/.+$"),
    re.compile(r"^https://discordapp\.com/api/webhooks/\d+/.+$"),
    re.compile(r"^https://ptb\.discord\.com/api/webhooks/\d+/.+$"),
    re.compile(r"^https://canary\.discord\.com/api/webhooks/\d+/.+$"),
]


def is_discord_webhook_url(url: str) -> bool:
    return any(pattern.match(url) for pattern in WEBHOOK_URL_PATTERNS)


class DiscordConfig(BaseModel):
    webhook_url: str

    @field_validator("webhook_url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip()
        if not is_discord_webhook_url(value):
            raise ValueError(
                "Invalid Discord webhook URL. Expected "
                "https://discord.com/api/webhooks/<id>/<token>"
            )
        return value


def format_message(payload: AlertPayload, config: DiscordConfig) -> Dict[str, Any]:
    lines = [
        f"**Strategy:** {payload.strategy_name}",
        f"**Price:** ${format_price(payload.price)}",
        f"**Time:** {format_time(payload.signal_time)}",
    ]
    if payload.interval:
        lines.append(f"**Interval:** {payload.interval}")
    win_rate = win_rate_line(payload)
    if win_rate:
        lines.append(f"**Win Rate:** {win_rate}")
    if payload.insight:
        lines.append(f"**AI Insight:** {payload.insight}")

    embed = {
        "title": f"{direction_emoji(payload)} {headline(payload)}",
        "description": "\n".join(lines),
        "color": direction_color(payload),
        "timestamp": payload.signal_time.isoformat() + "Z",
        "footer": {"text": settings.MESSAGE_FOOTER},
    }
    return {"embeds": [embed]}


async def send(client: httpx.AsyncClient, config: DiscordConfig, message: Dict[str, Any]) -> DeliveryResult:
    return await send_http(client, "POST", config.webhook_url, json=message)


handler = ChannelHandler(
    kind=ChannelKind.DISCORD,
    config_model=DiscordConfig,
    format=format_message,
    send=send,
    success_message="Discord alert sent successfully",
)
