"""
Email channel.

Three interchangeable backends selected by ``api_service``: Resend and
SendGrid over HTTP, or authenticated SMTP. Every message carries both an
HTML and a plain-text body.
"""
import asyncio
import html
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Literal, Optional

import httpx
from pydantic import BaseModel, model_validator

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

logger = logging.getLogger(__name__)

RESEND_URL = "https://api.resend.com/emails"
SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailConfig(BaseModel):
    to_email: str
    from_email: Optional[str] = None
    api_service: Optional[Literal["resend", "sendgrid", "smtp"]] = None
    api_key: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: bool = True

    @model_validator(mode="after")
    def select_backend(self) -> "EmailConfig":
        if self.api_service is None and self.smtp_host:
            self.api_service = "smtp"
        if self.api_service is None:
            raise ValueError(
                "No email service configured. Please configure Resend, SendGrid, or SMTP."
            )
        if self.api_service in ("resend", "sendgrid") and not self.api_key:
            raise ValueError(f"API key is required for {self.api_service}")
        if self.api_service == "smtp" and not self.smtp_host:
            raise ValueError("SMTP host is required")
        return self

    @property
    def sender(self) -> str:
        return self.from_email or settings.EMAIL_DEFAULT_FROM


@dataclass
class EmailContent:
    subject: str
    html: str
    text: str


def format_message(payload: AlertPayload, config: EmailConfig) -> EmailContent:
    title = headline(payload)
    rows = [
        ("Strategy", payload.strategy_name),
        ("Symbol", payload.symbol),
        ("Price", f"${format_price(payload.price)}"),
        ("Time", format_time(payload.signal_time)),
    ]
    if payload.interval:
        rows.append(("Interval", payload.interval))
    win_rate = win_rate_line(payload)
    if win_rate:
        rows.append(("Win Rate", win_rate))
    if payload.insight:
        rows.append(("AI Insight", payload.insight))

    color = f"#{direction_color(payload):06x}"
    html_rows = "\n".join(
        f"        <p><strong>{label}:</strong> {html.escape(str(value))}</p>" for label, value in rows
    )
    html_body = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">\n'
        f'  <h2 style="color: {color};">{direction_emoji(payload)} {html.escape(title)}</h2>\n'
        '  <div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">\n'
        f"{html_rows}\n"
        "  </div>\n"
        f'  <p style="color: #666; font-size: 12px;">{html.escape(settings.MESSAGE_FOOTER)}</p>\n'
        "</div>"
    )
    text_body = title + "\n\n" + "\n".join(f"{label}: {value}" for label, value in rows)
    return EmailContent(
        subject=f"{direction_emoji(payload)} {title}",
        html=html_body,
        text=text_body,
    )


async def _send_resend(client: httpx.AsyncClient, config: EmailConfig, content: EmailContent) -> DeliveryResult:
    result = await send_http(
        client,
        "POST",
        RESEND_URL,
        json={
            "from": config.sender,
            "to": config.to_email,
            "subject": content.subject,
            "html": content.html,
            "text": content.text,
        },
        headers={"Authorization": f"Bearer {config.api_key}"},
    )
    if result.success:
        result.message = "Email sent successfully via Resend"
    return result


async def _send_sendgrid(client: httpx.AsyncClient, config: EmailConfig, content: EmailContent) -> DeliveryResult:
    result = await send_http(
        client,
        "POST",
        SENDGRID_URL,
        json={
            "personalizations": [{"to": [{"email": config.to_email}]}],
            "from": {"email": config.sender},
            "subject": content.subject,
            "content": [
                {"type": "text/plain", "value": content.text},
                {"type": "text/html", "value": content.html},
            ],
        },
        headers={"Authorization": f"Bearer {config.api_key}"},
    )
    if result.success:
        result.message = "Email sent successfully via SendGrid"
    return result


def _smtp_deliver(config: EmailConfig, content: EmailContent) -> None:
    msg = EmailMessage()
    msg["Subject"] = content.subject
    msg["From"] = config.sender
    msg["To"] = config.to_email
    msg.set_content(content.text)
    msg.add_alternative(content.html, subtype="html")

    timeout = settings.SMTP_TIMEOUT_SEC
    if config.smtp_port == 465:
        smtp = smtplib.SMTP_SSL(config.smtp_host, config.smtp_port, timeout=timeout)
    else:
        smtp = smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=timeout)
    with smtp:
        if config.smtp_port != 465 and config.smtp_use_tls:
            smtp.starttls()
        if config.smtp_user:
            smtp.login(config.smtp_user, config.smtp_password or "")
        smtp.send_message(msg)


async def _send_smtp(config: EmailConfig, content: EmailContent) -> DeliveryResult:
    try:
        await asyncio.to_thread(_smtp_deliver, config, content)
    except smtplib.SMTPAuthenticationError as exc:
        return DeliveryResult(False, status_code=exc.smtp_code, error=f"SMTP authentication failed: {exc}", retryable=False)
    except smtplib.SMTPResponseException as exc:
        return DeliveryResult(
            False,
            status_code=exc.smtp_code,
            error=f"SMTP error {exc.smtp_code}: {exc.smtp_error!r}",
            retryable=exc.smtp_code >= 400 and exc.smtp_code < 500,
        )
    except (smtplib.SMTPException, OSError) as exc:
        return DeliveryResult(False, error=f"SMTP delivery failed: {exc}")
    return DeliveryResult(True, message="Email sent successfully via SMTP")


async def send(client: httpx.AsyncClient, config: EmailConfig, content: EmailContent) -> DeliveryResult:
    if config.api_service == "resend":
        return await _send_resend(client, config, content)
    if config.api_service == "sendgrid":
        return await _send_sendgrid(client, config, content)
    return await _send_smtp(config, content)


handler = ChannelHandler(
    kind=ChannelKind.EMAIL,
    config_model=EmailConfig,
    format=format_message,
    send=send,
    success_message="Email sent successfully",
)
