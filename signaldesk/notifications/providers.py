"""
Channel providers that talk to external delivery services.

Each provider sends one queued notification and either returns a
DeliveryResult or raises a TransientDeliveryError / PermanentDeliveryError.
"""

import os
import asyncio
import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional, Dict, Any

import aiohttp

from .errors import TransientDeliveryError, PermanentDeliveryError
from .models import NotificationChannel, QueuedNotification

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = aiohttp.ClientTimeout(total=float(os.getenv("PROVIDER_TIMEOUT", "10")))


@dataclass
class DeliveryResult:
    """Successful hand-off to a provider"""
    provider: str
    provider_message_id: Optional[str] = None
    delivered: bool = False  # provider confirmed delivery synchronously
    response: Dict[str, Any] = field(default_factory=dict)


def classify_http_error(provider: str, status: int, body: str):
    """Raise the delivery error matching an HTTP failure status"""
    message = f"{provider} HTTP {status}: {body[:200]}"
    if status in (408, 429) or status >= 500:
        raise TransientDeliveryError(message, code=f"http_{status}")
    raise PermanentDeliveryError(message, code=f"http_{status}")


class NotificationProvider:
    """Base provider"""

    name = "base"
    channel: NotificationChannel

    async def send(self, item: QueuedNotification) -> DeliveryResult:
        raise NotImplementedError

    async def _post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST JSON, map failures to delivery errors, return the decoded body"""
        try:
            async with aiohttp.ClientSession(timeout=HTTP_TIMEOUT) as session:
                async with session.post(url, json=payload, headers=headers) as resp:
                    text = await resp.text()
                    if resp.status >= 400:
                        classify_http_error(self.name, resp.status, text)
                    if resp.status == 204 or not text:
                        return {}
                    try:
                        return await resp.json(content_type=None)
                    except ValueError:
                        return {"raw": text}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransientDeliveryError(f"{self.name} request failed: {e!r}", code="network")


class SmtpEmailProvider(NotificationProvider):
    """Email over SMTP with STARTTLS"""

    name = "smtp"
    channel = NotificationChannel.EMAIL

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        user: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
    ):
        self.host = host if host is not None else os.getenv("SMTP_HOST", "")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.user = user if user is not None else os.getenv("SMTP_USER", "")
        self.password = password if password is not None else os.getenv("SMTP_PASSWORD", "")
        self.sender = sender or os.getenv("SMTP_FROM", self.user)

    @property
    def configured(self) -> bool:
        return bool(self.host and self.user and self.password)

    def build_message(self, item: QueuedNotification) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = item.recipient
        msg["Subject"] = f"[SignalDesk] {item.subject or 'Notification'}"
        msg.attach(MIMEText(item.message, "plain"))
        if item.message_html:
            msg.attach(MIMEText(item.message_html, "html"))
        return msg

    def _send_smtp(self, msg: MIMEMultipart):
        """Send SMTP email (blocking)"""
        with smtplib.SMTP(self.host, self.port, timeout=HTTP_TIMEOUT.total) as server:
            server.starttls()
            server.login(self.user, self.password)
            server.send_message(msg)

    async def send(self, item: QueuedNotification) -> DeliveryResult:
        if not self.configured:
            raise PermanentDeliveryError("SMTP not configured", code="not_configured")

        msg = self.build_message(item)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._send_smtp, msg)
        except (smtplib.SMTPRecipientsRefused, smtplib.SMTPSenderRefused) as e:
            raise PermanentDeliveryError(f"SMTP refused: {e}", code="smtp_refused")
        except smtplib.SMTPAuthenticationError as e:
            raise PermanentDeliveryError(f"SMTP authentication failed: {e}", code="smtp_auth")
        except (smtplib.SMTPException, OSError) as e:
            raise TransientDeliveryError(f"SMTP error: {e}", code="smtp_error")

        logger.info(f"Sent email notification to {item.recipient}")
        return DeliveryResult(provider=self.name, provider_message_id=msg.get("Message-ID"))


class TelegramProvider(NotificationProvider):
    """Telegram Bot API sendMessage"""

    name = "telegram_bot"
    channel = NotificationChannel.TELEGRAM
    api_base = "https://api.telegram.org"

    def __init__(self, bot_token: Optional[str] = None):
        self.bot_token = bot_token if bot_token is not None else os.getenv("TELEGRAM_BOT_TOKEN", "")

    async def send(self, item: QueuedNotification) -> DeliveryResult:
        if not self.bot_token:
            raise PermanentDeliveryError("Telegram bot token not configured", code="not_configured")

        url = f"{self.api_base}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": item.recipient,
            "text": item.message,
            "parse_mode": "Markdown",
        }
        body = await self._post_json(url, payload)
        if not body.get("ok", False):
            raise PermanentDeliveryError(
                f"Telegram API error: {body.get('description', body)}", code="telegram_error"
            )

        message_id = body.get("result", {}).get("message_id")
        logger.info(f"Sent Telegram notification to {item.recipient}")
        return DeliveryResult(
            provider=self.name,
            provider_message_id=str(message_id) if message_id is not None else None,
            delivered=True,
            response={"ok": True},
        )


class DiscordWebhookProvider(NotificationProvider):
    """
    Discord webhook embeds.

    The recipient is the webhook URL; anything else goes to the
    DISCORD_WEBHOOK_URL channel when one is configured.
    """

    name = "discord_webhook"
    channel = NotificationChannel.DISCORD

    COLORS = [
        (9, 0xdc3545),
        (7, 0xfd7e14),
        (4, 0x0d6efd),
        (1, 0x6c757d),
    ]

    def __init__(self, default_webhook_url: Optional[str] = None):
        self.default_webhook_url = (
            default_webhook_url if default_webhook_url is not None else os.getenv("DISCORD_WEBHOOK_URL", "")
        )

    def build_payload(self, item: QueuedNotification) -> Dict[str, Any]:
        color = next(c for threshold, c in self.COLORS if item.priority >= threshold)
        embed: Dict[str, Any] = {
            "title": item.subject or "SignalDesk",
            "description": item.message,
            "color": color,
            "timestamp": item.created_at.isoformat(),
            "footer": {"text": "SignalDesk"},
        }

        if item.template_variables:
            fields = []
            for key, value in item.template_variables.items():
                if isinstance(value, (int, float, str)) and value != "":
                    fields.append({
                        "name": key.replace("_", " ").title(),
                        "value": str(value),
                        "inline": True,
                    })
            if fields:
                embed["fields"] = fields[:10]  # Max 10 fields

        return {"embeds": [embed]}

    async def send(self, item: QueuedNotification) -> DeliveryResult:
        url = item.recipient if item.recipient.startswith("https://") else self.default_webhook_url
        if not url:
            raise PermanentDeliveryError("Discord recipient must be a webhook URL", code="bad_recipient")

        separator = "&" if "?" in url else "?"
        body = await self._post_json(f"{url}{separator}wait=true", self.build_payload(item))

        logger.info("Sent Discord notification")
        return DeliveryResult(
            provider=self.name,
            provider_message_id=str(body["id"]) if "id" in body else None,
            delivered=True,
        )


class HttpGatewayProvider(NotificationProvider):
    """
    Generic JSON gateway used for SMS and push.

    POSTs {"to", "subject", "message", "metadata"} with a bearer token.
    """

    name = "http_gateway"

    def __init__(self, channel: NotificationChannel, url: str, token: str = ""):
        self.channel = channel
        self.url = url
        self.token = token
        self.name = f"{channel.value}_gateway"

    async def send(self, item: QueuedNotification) -> DeliveryResult:
        if not self.url:
            raise PermanentDeliveryError(f"{self.channel.value} gateway not configured", code="not_configured")

        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        payload = {
            "to": item.recipient,
            "subject": item.subject,
            "message": item.message,
            "metadata": item.metadata or {},
        }
        body = await self._post_json(self.url, payload, headers)
        message_id = body.get("id") or body.get("message_id")

        logger.info(f"Sent {self.channel.value} notification to {item.recipient}")
        return DeliveryResult(
            provider=self.name,
            provider_message_id=str(message_id) if message_id else None,
            response=body,
        )


def build_default_providers() -> Dict[NotificationChannel, NotificationProvider]:
    """Providers configured from the environment"""
    return {
        NotificationChannel.EMAIL: SmtpEmailProvider(),
        NotificationChannel.TELEGRAM: TelegramProvider(),
        NotificationChannel.DISCORD: DiscordWebhookProvider(os.getenv("DISCORD_WEBHOOK_URL", "")),
        NotificationChannel.SMS: HttpGatewayProvider(
            NotificationChannel.SMS,
            os.getenv("SMS_GATEWAY_URL", ""),
            os.getenv("SMS_GATEWAY_TOKEN", ""),
        ),
        NotificationChannel.PUSH: HttpGatewayProvider(
            NotificationChannel.PUSH,
            os.getenv("PUSH_GATEWAY_URL", ""),
            os.getenv("PUSH_GATEWAY_TOKEN", ""),
        ),
    }
