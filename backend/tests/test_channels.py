import json
import smtplib
from datetime import datetime
from unittest.mock import patch

import httpx
import pytest

from conftest import DISCORD_URL, SLACK_URL, RecordingTransport
from signalrelay.core.errors import ChannelConfigError
from signalrelay.services.channels import AlertPayload, HANDLERS, ChannelKind, get_channel_handler
from signalrelay.services.channels.base import GREEN, RED, format_price, send_http
from signalrelay.services.channels.discord import is_discord_webhook_url
from signalrelay.services.channels.mail import RESEND_URL, SENDGRID_URL
from signalrelay.services.channels.telegram import escape_markdown
from signalrelay.services.channels.webhook import render_template


# ------------------------- Fixtures ------------------------- #

@pytest.fixture
def payload():
    return AlertPayload(
        signal_id=42,
        direction="BUY",
        symbol="AAPL",
        price=189.5,
        signal_time=datetime(2024, 1, 2, 3, 4, 5),
        strategy_id=7,
        strategy_name="SMA Crossover",
    )


@pytest.fixture
def enriched(payload):
    payload.win_rate = 60.0
    payload.total_trades = 5
    payload.insight = "Trend intact above the 50-day average."
    return payload


def client_for(transport: RecordingTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(transport))


def sent_json(transport: RecordingTransport, index: int = 0):
    return json.loads(transport.requests[index].content)


# ------------------------- Registry ------------------------- #

def test_every_kind_has_a_handler():
    assert set(HANDLERS) == set(ChannelKind)
    assert get_channel_handler("slack").kind == ChannelKind.SLACK


def test_unknown_kind():
    with pytest.raises(ValueError, match="Unknown channel type"):
        get_channel_handler("pager")


def test_format_price():
    assert format_price(189.5) == "189.50"
    assert format_price(42000) == "42,000.00"
    assert format_price(0.00012345) == "0.00012345"


# ------------------------- Discord ------------------------- #

class TestDiscord:

    async def test_embed(self, transport, enriched):
        async with client_for(transport) as client:
            result = await get_channel_handler("discord").deliver(
                client, {"webhook_url": DISCORD_URL}, enriched
            )

        assert result.success
        assert result.message == "Discord alert sent successfully"
        assert transport.urls() == [DISCORD_URL]
        embed = sent_json(transport)["embeds"][0]
        assert embed["title"].endswith("BUY Signal: AAPL")
        assert embed["color"] == GREEN
        assert embed["timestamp"] == "2024-01-02T03:04:05Z"
        assert "**Strategy:** SMA Crossover" in embed["description"]
        assert "**Price:** $189.50" in embed["description"]
        assert "**Win Rate:** 60% (5 closed trades)" in embed["description"]
        assert "**AI Insight:** Trend intact" in embed["description"]

    async def test_exit_is_red_and_plain(self, transport, payload):
        payload.direction = "SELL"
        async with client_for(transport) as client:
            await get_channel_handler("discord").deliver(client, {"webhook_url": DISCORD_URL}, payload)

        embed = sent_json(transport)["embeds"][0]
        assert embed["color"] == RED
        assert "Win Rate" not in embed["description"]
        assert "AI Insight" not in embed["description"]

    async def test_invalid_url_rejected_before_request(self, transport, payload):
        async with client_for(transport) as client:
            with pytest.raises(ChannelConfigError) as exc_info:
                await get_channel_handler("discord").deliver(
                    client, {"webhook_url": "https://example.com/hook"}, payload
                )

        assert "Invalid Discord webhook URL" in exc_info.value.message
        assert transport.requests == []

    @pytest.mark.parametrize("url,valid", [
        ("https://discord.com/api/webhooks/1/abc", True),
        ("https://discordapp.com/api/webhooks/1/abc", True),
        ("https://ptb.discord.com/api/webhooks/1/abc", True),
        ("https://canary.discord.com/api/webhooks/1/abc", True),
        ("https://discord.com/api/webhooks/notanid/abc", False),
        ("http://discord.com/api/webhooks/1/abc", False),
    ])
    def test_url_patterns(self, url, valid):
        assert is_discord_webhook_url(url) is valid


# ------------------------- Slack ------------------------- #

class TestSlack:

    async def test_attachment(self, transport, enriched):
        async with client_for(transport) as client:
            result = await get_channel_handler("slack").deliver(client, {"webhook_url": SLACK_URL}, enriched)

        assert result.success
        attachment = sent_json(transport)["attachments"][0]
        assert attachment["color"] == "good"
        assert attachment["ts"] == 1704164645
        titles = [f["title"] for f in attachment["fields"]]
        assert titles == ["Strategy", "Price", "Time", "Win Rate", "AI Insight"]

    async def test_colors(self, transport, payload):
        async with client_for(transport) as client:
            for direction in ("SHORT", "CLOSE"):
                payload.direction = direction
                await get_channel_handler("slack").deliver(client, {"webhook_url": SLACK_URL}, payload)

        assert sent_json(transport, 0)["attachments"][0]["color"] == "danger"
        assert sent_json(transport, 1)["attachments"][0]["color"] == "#6b7280"

    async def test_invalid_url(self, transport, payload):
        async with client_for(transport) as client:
            with pytest.raises(ChannelConfigError):
                await get_channel_handler("slack").deliver(client, {"webhook_url": DISCORD_URL}, payload)


# ------------------------- Telegram ------------------------- #

class TestTelegram:

    async def test_send_message(self, transport, payload):
        payload.strategy_name = "My_Strat"
        config = {"bot_token": "123:ABC", "chat_id": -100200}
        async with client_for(transport) as client:
            result = await get_channel_handler("telegram").deliver(client, config, payload)

        assert result.success
        assert transport.urls() == ["https://api.telegram.org/bot123:ABC/sendMessage"]
        body = sent_json(transport)
        assert body["chat_id"] == -100200
        assert body["parse_mode"] == "Markdown"
        assert "My\\_Strat" in body["text"]
        assert "$189.50" in body["text"]

    async def test_ok_false_is_failure(self, payload):
        transport = RecordingTransport(
            lambda request: httpx.Response(200, json={"ok": False, "description": "chat not found"})
        )
        async with client_for(transport) as client:
            result = await get_channel_handler("telegram").deliver(
                client, {"bot_token": "123:ABC", "chat_id": "@alerts"}, payload
            )

        assert not result.success
        assert result.error == "Telegram API error: chat not found"

    async def test_http_error_keeps_description(self, payload):
        transport = RecordingTransport(
            lambda request: httpx.Response(401, json={"ok": False, "description": "Unauthorized"})
        )
        async with client_for(transport) as client:
            result = await get_channel_handler("telegram").deliver(
                client, {"bot_token": "bad", "chat_id": 1}, payload
            )

        assert not result.success
        assert result.status_code == 401
        assert not result.retryable
        assert result.error == "Telegram API error: Unauthorized"

    def test_escape_markdown(self):
        assert escape_markdown("a_b*c`d[e") == "a\\_b\\*c\\`d\\[e"


# ------------------------- Email ------------------------- #

class TestEmail:

    async def test_resend(self, transport, enriched):
        config = {"to_email": "me@example.com", "api_service": "resend", "api_key": "re_123"}
        async with client_for(transport) as client:
            result = await get_channel_handler("email").deliver(client, config, enriched)

        assert result.success
        assert result.message == "Email sent successfully via Resend"
        request = transport.requests[0]
        assert str(request.url) == RESEND_URL
        assert request.headers["authorization"] == "Bearer re_123"
        body = sent_json(transport)
        assert body["to"] == "me@example.com"
        assert body["subject"].endswith("BUY Signal: AAPL")
        assert "<strong>Win Rate:</strong>" in body["html"]
        assert "Price: $189.50" in body["text"]

    async def test_sendgrid(self, transport, payload):
        config = {
            "to_email": "me@example.com",
            "from_email": "bot@example.com",
            "api_service": "sendgrid",
            "api_key": "SG.x",
        }
        async with client_for(transport) as client:
            result = await get_channel_handler("email").deliver(client, config, payload)

        assert result.message == "Email sent successfully via SendGrid"
        assert transport.urls() == [SENDGRID_URL]
        body = sent_json(transport)
        assert body["from"] == {"email": "bot@example.com"}
        assert [c["type"] for c in body["content"]] == ["text/plain", "text/html"]

    async def test_no_backend(self, transport, payload):
        async with client_for(transport) as client:
            with pytest.raises(ChannelConfigError) as exc_info:
                await get_channel_handler("email").deliver(client, {"to_email": "me@example.com"}, payload)
        assert "No email service configured" in exc_info.value.message

    async def test_http_backend_needs_key(self, transport, payload):
        async with client_for(transport) as client:
            with pytest.raises(ChannelConfigError):
                await get_channel_handler("email").deliver(
                    client, {"to_email": "me@example.com", "api_service": "resend"}, payload
                )

    async def test_smtp_inferred_from_host(self, transport, payload):
        config = {
            "to_email": "me@example.com",
            "smtp_host": "smtp.example.com",
            "smtp_user": "bot",
            "smtp_password": "pw",
        }
        with patch("signalrelay.services.channels.mail.smtplib.SMTP") as smtp_cls:
            async with client_for(transport) as client:
                result = await get_channel_handler("email").deliver(client, config, payload)

        assert result.success
        assert result.message == "Email sent successfully via SMTP"
        assert transport.requests == []
        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        smtp = smtp_cls.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("bot", "pw")
        message = smtp.send_message.call_args[0][0]
        assert message["To"] == "me@example.com"
        assert message.is_multipart()

    async def test_smtp_auth_failure_not_retryable(self, transport, payload):
        config = {"to_email": "me@example.com", "smtp_host": "smtp.example.com", "smtp_user": "bot"}
        with patch("signalrelay.services.channels.mail.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")
            async with client_for(transport) as client:
                result = await get_channel_handler("email").deliver(client, config, payload)

        assert not result.success
        assert result.status_code == 535
        assert not result.retryable
        assert result.error.startswith("SMTP authentication failed")


# ------------------------- Generic webhook ------------------------- #

class TestWebhook:

    async def test_default_json_body(self, transport, payload):
        config = {"url": "https://example.com/hook", "headers": {"X-Auth": "abc"}}
        async with client_for(transport) as client:
            result = await get_channel_handler("webhook").deliver(client, config, payload)

        assert result.success
        request = transport.requests[0]
        assert request.method == "POST"
        assert request.headers["x-auth"] == "abc"
        body = sent_json(transport)
        assert body["signal"] == "BUY"
        assert body["action"] == "buy"
        assert body["time"] == "2024-01-02T03:04:05Z"
        assert "interval" not in body
        assert "insight" not in body

    async def test_template_body(self, transport, payload):
        config = {
            "url": "https://example.com/hook",
            "method": "put",
            "payload_template": '{"ticker": "{{symbol}}", "side": "{{ action }}", "x": "{{unknown}}"}',
        }
        async with client_for(transport) as client:
            await get_channel_handler("webhook").deliver(client, config, payload)

        request = transport.requests[0]
        assert request.method == "PUT"
        assert request.headers["content-type"] == "application/json"
        assert sent_json(transport) == {"ticker": "AAPL", "side": "buy", "x": "{{unknown}}"}

    async def test_text_template_content_type(self, transport, payload):
        config = {"url": "https://example.com/hook", "payload_template": "{{signal}} {{symbol}} @ {{price}}"}
        async with client_for(transport) as client:
            await get_channel_handler("webhook").deliver(client, config, payload)

        request = transport.requests[0]
        assert request.headers["content-type"] == "text/plain"
        assert request.content == b"BUY AAPL @ 189.5"

    async def test_invalid_url(self, transport, payload):
        async with client_for(transport) as client:
            with pytest.raises(ChannelConfigError):
                await get_channel_handler("webhook").deliver(client, {"url": "ftp://x"}, payload)

    def test_render_template_none_is_empty(self):
        assert render_template("[{{interval}}]", {"interval": None}) == "[]"


# ------------------------- HTTP outcomes ------------------------- #

class TestSendHttp:

    @pytest.mark.parametrize("status,retryable", [(500, True), (503, True), (429, True), (404, False), (400, False)])
    async def test_status_classification(self, status, retryable):
        transport = RecordingTransport(lambda request: httpx.Response(status, text="nope"))
        async with client_for(transport) as client:
            result = await send_http(client, "POST", "https://example.com", json={})

        assert not result.success
        assert result.status_code == status
        assert result.retryable is retryable
        assert result.error == f"HTTP {status}: nope"

    async def test_timeout(self):
        def responder(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with client_for(RecordingTransport(responder)) as client:
            result = await send_http(client, "POST", "https://example.com", json={})

        assert not result.success
        assert result.error == "Request timed out"
        assert result.retryable

    async def test_connection_error(self):
        def responder(request):
            raise httpx.ConnectError("refused", request=request)

        async with client_for(RecordingTransport(responder)) as client:
            result = await send_http(client, "POST", "https://example.com", json={})

        assert not result.success
        assert result.error == "ConnectError: refused"
