"""Email adapter - plain SMTP sending for channels without an OAuth mailbox."""

from datetime import datetime

import aiosmtplib
import structlog

from helpdesk.adapters.providers import EmailProvider, OutgoingNotification, build_mime_message
from helpdesk.config import settings
from helpdesk.services.delivery import ProviderConfigurationError, ProviderRequestError

logger = structlog.get_logger()


class SmtpProvider(EmailProvider):
    """Send-only provider. Mailbox and OAuth operations are not available over SMTP."""

    name = "smtp"
    required_credentials = ()

    def smtp_config(self) -> dict:
        config = self.credentials
        return {
            "hostname": config.get("host", settings.smtp_host),
            "port": int(config.get("port", settings.smtp_port)),
            "username": config.get("user", settings.smtp_user) or None,
            "password": config.get("password", settings.smtp_password) or None,
            "use_tls": config.get("use_tls", settings.smtp_use_tls),
            "start_tls": config.get("start_tls", settings.smtp_start_tls),
            "timeout": settings.provider_timeout_seconds,
        }

    def _unsupported(self, operation: str):
        return ProviderConfigurationError(f"SMTP channels do not support {operation}")

    def get_authorization_url(self, state: str) -> str:
        raise self._unsupported("OAuth authorization")

    async def handle_callback(self, channel, code: str) -> None:
        raise self._unsupported("OAuth callbacks")

    async def refresh_token(self, channel) -> None:
        raise self._unsupported("token refresh")

    async def fetch_messages(self, channel, since: datetime | None = None) -> list[dict]:
        raise self._unsupported("fetching messages")

    async def get_message_by_id(self, channel, message_id: str) -> dict | None:
        raise self._unsupported("reading messages")

    async def archive_message(self, channel, message_id: str) -> str | None:
        raise self._unsupported("archiving messages")

    async def move_message(self, channel, message_id: str, folder_id: str) -> str:
        raise self._unsupported("moving messages")

    async def delete_message(self, channel, message_id: str) -> None:
        raise self._unsupported("deleting messages")

    async def _send(self, msg) -> None:
        try:
            await aiosmtplib.send(msg, **self.smtp_config())
        except aiosmtplib.SMTPResponseException as e:
            # 4xx is a temporary refusal, 5xx a permanent one
            raise ProviderRequestError(f"SMTP {e.code}: {e.message}", status=e.code, retryable=400 <= e.code < 500) from e
        except (aiosmtplib.SMTPException, OSError) as e:
            raise ProviderRequestError(f"SMTP send failed: {e}") from e

    async def send_message(self, channel, message, ticket, headers: dict) -> str:
        notification = OutgoingNotification(
            to_email=headers["to_email"],
            to_name=headers.get("to_name"),
            subject=headers["subject"],
            html=message.body_html or message.body or "",
            message_id=headers.get("message_id"),
            in_reply_to=headers.get("in_reply_to"),
            references=headers.get("references"),
            headers={"ticket_number": ticket.ticket_number},
        )
        await self._send(build_mime_message(channel, notification))
        return headers.get("message_id")

    async def send_notification(self, channel, notification: OutgoingNotification) -> str | None:
        await self._send(build_mime_message(channel, notification))
        logger.info("email_sent", provider=self.name, to=notification.to_email, subject=notification.subject)
        return notification.message_id

    async def test_connection(self, channel) -> dict:
        config = self.smtp_config()
        client = aiosmtplib.SMTP(hostname=config["hostname"], port=config["port"], use_tls=config["use_tls"],
                                 start_tls=config["start_tls"], timeout=config["timeout"])
        try:
            await client.connect()
            if config["username"]:
                await client.login(config["username"], config["password"] or "")
            await client.quit()
        except (aiosmtplib.SMTPException, OSError) as e:
            return {"success": False, "email": None, "error": str(e)}
        return {"success": True, "email": channel.email_address, "error": None}
