from typing import Dict

from signalrelay.services.channels import discord, mail, slack, telegram, webhook
from signalrelay.services.channels.base import (
    AlertPayload,
    ChannelHandler,
    ChannelKind,
    DeliveryResult,
)

HANDLERS: Dict[ChannelKind, ChannelHandler] = {
    ChannelKind.DISCORD: discord.handler,
    ChannelKind.SLACK: slack.handler,
    ChannelKind.TELEGRAM: telegram.handler,
    ChannelKind.EMAIL: mail.handler,
    ChannelKind.WEBHOOK: webhook.handler,
}


def get_channel_handler(kind: str) -> ChannelHandler:
    try:
        return HANDLERS[ChannelKind(kind)]
    except ValueError:
        raise ValueError(f"Unknown channel type: {kind}")


__all__ = [
    "HANDLERS",
    "AlertPayload",
    "ChannelHandler",
    "ChannelKind",
    "DeliveryResult",
    "get_channel_handler",
]
