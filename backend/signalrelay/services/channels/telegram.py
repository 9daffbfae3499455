import json
import re
from typing import Any, Dict, Union

import httpx
from pydantic import BaseModel, field_validator

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

API_BASE = "https://api.telegram.org"

_MARKDOWN_SPECIAL = re.compile(r"([_*`\[])")


def escape_markdown(text: str) -> str:
    """Escape characters with meaning in Telegram's legacy Markdown mode."""
    return _MARKDOWN_SPECIAL.sub(r"\\\1", str(text))


class TelegramConfig(BaseModel):
    bot_token: str
    chat_id: Union[int, str]

    @field_validator("bot_token")
    @classmethod
    def validate_token(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Bot token is required")
        return value


def format_message(payload: AlertPayload, config: TelegramConfig) -> str:
    lines = [
        f"{direction_emoji(payload)} *{escape_markdown(headline(payload))}*",
        "",
        f"\U0001F4CA *Strategy:* {escape_markdown(payload.strategy_name)}",
        f"\U0001F4B0 *Price:* ${format_price(payload.price)}",
        f"\U0001F550 *Time:* {format_time(payload.signal_time)}",
    ]
    if payload.interval:
        lines.append(f"⏱ *Interval:* {escape_markdown(payload.interval)}")
    win_rate = win_rate_line(payload)
    if win_rate:
        lines.append(f"\U0001F3AF *Win Rate:* {win_rate}")
    if payload.insight:
        lines.append(f"\U0001F916 _{escape_markdown(payload.insight)}_")
    return "\n".join(lines)


async def send(client: httpx.AsyncClient, config: TelegramConfig, text: str) -> DeliveryResult:
    url = f"{API_BASE}/bot{config.bot_token}/sendMessage"
    result = await send_http(
        client,
        "POST",
        url,
        json={"chat_id": config.chat_id, "text": text, "parse_mode": "Markdown"},
    )
    if result.response_body is None:
        return result

    # The Bot API reports failures in the body as well as the status code
    try:
        data: Dict[str, Any] = json.loads(result.response_body)
    except json.JSONDecodeError:
        data = {}
    if data.get("ok") is True:
        result.success = True
        result.error = None
        return result

    result.success = False
    description = data.get("description")
    if description:
        result.error = f"Telegram API error: {description}"
    elif result.error is None:
        result.error = "Telegram API did not confirm delivery"
    return result


handler = ChannelHandler(
    kind=ChannelKind.TELEGRAM,
    config_model=TelegramConfig,
    format=format_message,
    send=send,
    success_message="Telegram alert sent successfully",
)
