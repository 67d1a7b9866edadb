"""Email provider contract shared by Microsoft 365, Gmail and SMTP.

Providers are constructed per organization integration and operate on an
``EmailChannel``. OAuth tokens live encrypted on the channel and are
refreshed before any call when expired. HTTP calls are bounded by
``provider_timeout_seconds``.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

import httpx
import structlog

from helpdesk.config import settings
from helpdesk.services.delivery import ProviderConfigurationError, ProviderRequestError

logger = structlog.get_logger()


@dataclass
class OutgoingNotification:
    to_email: str
    subject: str
    html: str
    to_name: str | None = None
    cc: list[dict] = field(default_factory=list)  # [{email, name}]
    reply_to: str | None = None
    # Provider-native threading
    original_message_id: str | None = None
    thread_id: str | None = None
    # RFC 2822 / Outlook threading headers
    message_id: str | None = None
    in_reply_to: str | None = None
    references: str | None = None
    thread_topic: str | None = None
    thread_index: str | None = None
    headers: dict = field(default_factory=dict)  # {ticket_number}

    @property
    def ticket_number(self) -> str | None:
        return self.headers.get("ticket_number")


def parse_references(value: str | None) -> list[str]:
    return re.findall(r"<([^>]+)>", value or "")


def build_mime_message(channel, notification: OutgoingNotification) -> MIMEMultipart:
    """RFC 2822 message carrying the threading and ticket headers."""
    msg = MIMEMultipart("alternative")
    msg["From"] = formataddr((channel.name, channel.email_address)) if channel.name else channel.email_address
    msg["To"] = formataddr((notification.to_name, notification.to_email)) if notification.to_name else notification.to_email
    msg["Subject"] = notification.subject

    if notification.cc:
        msg["Cc"] = ", ".join(
            formataddr((cc.get("name"), cc["email"])) if cc.get("name") else cc["email"]
            for cc in notification.cc if cc.get("email")
        )
    if notification.reply_to:
        msg["Reply-To"] = notification.reply_to
    if notification.message_id:
        msg["Message-ID"] = notification.message_id
    if notification.in_reply_to:
        msg["In-Reply-To"] = notification.in_reply_to
    if notification.references:
        msg["References"] = notification.references
    if notification.thread_topic:
        msg["Thread-Topic"] = notification.thread_topic
    if notification.thread_index:
        msg["Thread-Index"] = notification.thread_index
    if notification.ticket_number:
        msg["X-Ticket-ID"] = notification.ticket_number
        msg["X-Ticket-Reference"] = notification.ticket_number

    msg.attach(MIMEText(notification.html, "html", "utf-8"))
    return msg


class EmailProvider(ABC):
    """Base class for email providers.

    ``archive_message`` and ``move_message`` may return a new provider id
    which the caller must persist in place of the old one.
    """

    name = "email"
    required_credentials: tuple[str, ...] = ("client_id", "client_secret")

    def __init__(self, credentials: dict | None, http_client: httpx.AsyncClient | None = None):
        credentials = credentials or {}
        missing = [key for key in self.required_credentials if not credentials.get(key)]
        if missing:
            raise ProviderConfigurationError(
                f"{self.name} integration is missing credentials: {', '.join(missing)}"
            )
        self.credentials = credentials
        self.http_client = http_client

    # HTTP plumbing

    async def _http(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            if self.http_client is not None:
                return await self.http_client.request(method, url, **kwargs)
            async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderRequestError(f"{self.name} request failed: {e.__class__.__name__}: {e}") from e

    async def _api(self, channel, method: str, url: str, **kwargs) -> httpx.Response:
        """Authenticated API call, refreshing the channel's token first if needed."""
        await self.ensure_valid_token(channel)
        headers = {"Authorization": f"Bearer {channel.oauth_token}", "Accept": "application/json"}
        headers.update(kwargs.pop("headers", {}))
        return await self._http(method, url, headers=headers, **kwargs)

    def _raise_for(self, resp: httpx.Response, action: str, channel=None) -> None:
        if resp.is_success:
            return
        logger.error("email_provider_request_failed", provider=self.name, action=action,
                     status=resp.status_code, channel_id=str(channel.id) if channel else None)
        raise ProviderRequestError(
            f"{self.name} {action} failed: HTTP {resp.status_code}: {resp.text[:500]}",
            status=resp.status_code,
        )

    async def _token_request(self, token_url: str, data: dict, channel) -> None:
        resp = await self._http("POST", token_url, data=data)
        if not resp.is_success:
            # A rejected grant will be rejected again; only server errors are worth retrying
            raise ProviderRequestError(
                f"{self.name} token request failed: HTTP {resp.status_code}",
                status=resp.status_code,
                retryable=resp.status_code >= 500 or resp.status_code == 429,
            )
        payload = resp.json()
        channel.store_tokens(payload["access_token"], payload.get("refresh_token"), payload.get("expires_in"))

    async def ensure_valid_token(self, channel) -> None:
        if channel.oauth_token and not channel.is_token_expired():
            return
        await self.refresh_token(channel)

    # Contract

    @abstractmethod
    def get_authorization_url(self, state: str) -> str:
        ...

    @abstractmethod
    async def handle_callback(self, channel, code: str) -> None:
        ...

    @abstractmethod
    async def refresh_token(self, channel) -> None:
        ...

    @abstractmethod
    async def fetch_messages(self, channel, since: datetime | None = None) -> list[dict]:
        ...

    @abstractmethod
    async def send_message(self, channel, message, ticket, headers: dict) -> str:
        ...

    @abstractmethod
    async def send_notification(self, channel, notification: OutgoingNotification) -> str | None:
        ...

    @abstractmethod
    async def get_message_by_id(self, channel, message_id: str) -> dict | None:
        ...

    @abstractmethod
    async def test_connection(self, channel) -> dict:
        ...

    @abstractmethod
    async def archive_message(self, channel, message_id: str) -> str | None:
        ...

    @abstractmethod
    async def move_message(self, channel, message_id: str, folder_id: str) -> str:
        ...

    @abstractmethod
    async def delete_message(self, channel, message_id: str) -> None:
        ...
