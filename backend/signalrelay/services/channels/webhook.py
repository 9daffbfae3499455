"""
Generic webhook channel.

Delivers to any URL with a configurable method and headers. The body is
either a default JSON document or a user template with ``{{field}}``
placeholders.
"""
import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

import httpx
from pydantic import BaseModel, field_validator

from signalrelay.services.channels.base import (
    AlertPayload,
    ChannelHandler,
    ChannelKind,
    DeliveryResult,
    send_http,
)

PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


class WebhookConfig(BaseModel):
    url: str
    method: Literal["POST", "PUT", "PATCH"] = "POST"
    headers: Dict[str, str] = {}
    payload_template: Optional[str] = None

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("https://", "http://")):
            raise ValueError("Webhook URL must start with http:// or https://")
        return value


@dataclass
class WebhookRequest:
    json: Optional[Dict[str, Any]] = None
    content: Optional[str] = None


def render_template(template: str, fields: Dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders; unknown names are left untouched."""
    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in fields:
            return match.group(0)
        value = fields[name]
        return "" if value is None else str(value)

    return PLACEHOLDER.sub(replace, template)


def format_message(payload: AlertPayload, config: WebhookConfig) -> WebhookRequest:
    fields = payload.template_fields()
    if config.payload_template:
        return WebhookRequest(content=render_template(config.payload_template, fields))
    return WebhookRequest(json={k: v for k, v in fields.items() if v is not None})


async def send(client: httpx.AsyncClient, config: WebhookConfig, request: WebhookRequest) -> DeliveryResult:
    headers = dict(config.headers)
    if request.content is not None:
        if not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = _guess_content_type(request.content)
        return await send_http(client, config.method, config.url, content=request.content, headers=headers)
    return await send_http(client, config.method, config.url, json=request.json, headers=headers)


def _guess_content_type(body: str) -> str:
    try:
        json.loads(body)
    except ValueError:
        return "text/plain"
    return "application/json"


handler = ChannelHandler(
    kind=ChannelKind.WEBHOOK,
    config_model=WebhookConfig,
    format=format_message,
    send=send,
    success_message="Webhook delivered successfully",
)
