"""Google adapter - Gmail API over httpx."""

import base64
import email
import html
from datetime import datetime
from email.utils import parseaddr, getaddresses
from urllib.parse import urlencode

import structlog

from helpdesk.adapters.providers import (
    EmailProvider, OutgoingNotification, build_mime_message, parse_references,
)
from helpdesk.config import settings
from helpdesk.services.delivery import ProviderRequestError
from helpdesk.services.email_threading import clean_message_id

logger = structlog.get_logger()

TOKEN_URL = "https://oauth2.googleapis.com/token"
AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GMAIL_URL = "https://gmail.googleapis.com/gmail/v1"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
SCOPES = " ".join([
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/userinfo.email",
])
SYSTEM_LABELS = {"INBOX", "SENT", "DRAFT", "SPAM", "TRASH", "STARRED", "IMPORTANT", "UNREAD"}


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def b64url_decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def search_query(label: str | None, since: datetime | None) -> str:
    parts = []
    if label:
        parts.append(f"in:{label.lower()}" if label.upper() in SYSTEM_LABELS else f"label:{label}")
    if since:
        parts.append(f"after:{since.strftime('%Y/%m/%d')}")
    return " ".join(parts)


class GoogleProvider(EmailProvider):
    name = "google"

    def get_authorization_url(self, state: str) -> str:
        query = urlencode({
            "client_id": self.credentials["client_id"],
            "redirect_uri": settings.oauth_redirect_url,
            "response_type": "code",
            "scope": SCOPES,
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        })
        return f"{AUTH_URL}?{query}"

    async def handle_callback(self, channel, code: str) -> None:
        await self._token_request(TOKEN_URL, {
            "client_id": self.credentials["client_id"],
            "client_secret": self.credentials["client_secret"],
            "code": code,
            "redirect_uri": settings.oauth_redirect_url,
            "grant_type": "authorization_code",
        }, channel)
        resp = await self._api(channel, "GET", USERINFO_URL)
        self._raise_for(resp, "get profile", channel)
        address = resp.json().get("email")
        if address and address != channel.email_address:
            channel.email_address = address

    async def refresh_token(self, channel) -> None:
        refresh = channel.oauth_refresh_token
        if not refresh:
            raise ProviderRequestError("No refresh token available", retryable=False)
        # Google usually omits refresh_token here; store_tokens keeps the existing one
        await self._token_request(TOKEN_URL, {
            "client_id": self.credentials["client_id"],
            "client_secret": self.credentials["client_secret"],
            "refresh_token": refresh,
            "grant_type": "refresh_token",
        }, channel)
        logger.info("oauth_token_refreshed", provider=self.name, channel_id=str(channel.id))

    async def fetch_messages(self, channel, since: datetime | None = None) -> list[dict]:
        resp = await self._api(
            channel, "GET", f"{GMAIL_URL}/users/me/messages",
            params={"q": search_query(channel.fetch_folder, since), "maxResults": 50},
        )
        self._raise_for(resp, "fetch messages", channel)
        messages = []
        for ref in resp.json().get("messages", []):
            message = await self.get_message_by_id(channel, ref["id"])
            if message:
                messages.append(message)
        return messages

    async def get_message_by_id(self, channel, message_id: str) -> dict | None:
        resp = await self._api(
            channel, "GET", f"{GMAIL_URL}/users/me/messages/{message_id}", params={"format": "raw"},
        )
        if resp.status_code == 404:
            return None
        self._raise_for(resp, "get message", channel)
        return self.normalize_message(resp.json())

    async def _send_raw(self, channel, raw: bytes, thread_id: str | None, action: str) -> dict:
        payload = {"raw": b64url_encode(raw)}
        if thread_id:
            payload["threadId"] = thread_id
        resp = await self._api(channel, "POST", f"{GMAIL_URL}/users/me/messages/send", json=payload)
        self._raise_for(resp, action, channel)
        return resp.json()

    async def send_message(self, channel, message, ticket, headers: dict) -> str:
        notification = OutgoingNotification(
            to_email=headers["to_email"],
            to_name=headers.get("to_name"),
            subject=headers["subject"],
            html=message.body_html or html.escape(message.body or "").replace("\n", "<br>\n"),
            message_id=headers.get("message_id"),
            in_reply_to=headers.get("in_reply_to"),
            references=headers.get("references"),
            headers={"ticket_number": ticket.ticket_number},
        )
        raw = build_mime_message(channel, notification).as_bytes()
        result = await self._send_raw(channel, raw, ticket.email_thread_id, "send message")
        return result.get("id") or headers.get("message_id")

    async def send_notification(self, channel, notification: OutgoingNotification) -> str | None:
        raw = build_mime_message(channel, notification).as_bytes()
        result = await self._send_raw(channel, raw, notification.thread_id, "send notification")
        if notification.thread_id and result.get("threadId") != notification.thread_id:
            logger.debug("gmail_thread_mismatch", requested=notification.thread_id, assigned=result.get("threadId"))
        return result.get("id")

    async def test_connection(self, channel) -> dict:
        try:
            resp = await self._api(channel, "GET", f"{GMAIL_URL}/users/me/profile")
        except Exception as e:
            return {"success": False, "email": None, "error": str(e)}
        if not resp.is_success:
            return {"success": False, "email": None, "error": f"Failed to connect: {resp.status_code}"}
        return {"success": True, "email": resp.json().get("emailAddress"), "error": None}

    async def _modify(self, channel, message_id: str, body: dict, action: str) -> None:
        resp = await self._api(channel, "POST", f"{GMAIL_URL}/users/me/messages/{message_id}/modify", json=body)
        self._raise_for(resp, action, channel)

    async def archive_message(self, channel, message_id: str) -> str | None:
        await self._modify(channel, message_id, {"removeLabelIds": ["INBOX"]}, "archive message")
        # Label changes keep the Gmail id
        return message_id

    async def move_message(self, channel, message_id: str, folder_id: str) -> str:
        await self._modify(
            channel, message_id, {"addLabelIds": [folder_id], "removeLabelIds": ["INBOX"]}, "move message",
        )
        return message_id

    async def delete_message(self, channel, message_id: str) -> None:
        resp = await self._api(channel, "POST", f"{GMAIL_URL}/users/me/messages/{message_id}/trash")
        self._raise_for(resp, "delete message", channel)

    @staticmethod
    def normalize_message(message: dict) -> dict:
        parsed = email.message_from_bytes(b64url_decode(message.get("raw", "")))
        body_text, body_html = None, None
        for part in parsed.walk():
            if part.is_multipart() or part.get_filename():
                continue
            payload = part.get_payload(decode=True)
            if payload is None:
                continue
            text = payload.decode(part.get_content_charset() or "utf-8", errors="replace")
            if part.get_content_type() == "text/plain" and body_text is None:
                body_text = text
            elif part.get_content_type() == "text/html" and body_html is None:
                body_html = text

        from_name, from_email = parseaddr(parsed.get("From", ""))
        message_id = parsed.get("Message-ID")
        return {
            "id": message["id"],
            "internet_message_id": clean_message_id(message_id) if message_id else None,
            "conversation_id": None,
            "thread_id": message.get("threadId"),
            "thread_index": parsed.get("Thread-Index"),
            "from_email": from_email,
            "from_name": from_name or None,
            "to_recipients": [{"email": a, "name": n or None} for n, a in getaddresses(parsed.get_all("To", []))],
            "cc_recipients": [{"email": a, "name": n or None} for n, a in getaddresses(parsed.get_all("Cc", []))],
            "subject": parsed.get("Subject", ""),
            "body_text": body_text,
            "body_html": body_html,
            "received_at": parsed.get("Date"),
            "in_reply_to": parsed.get("In-Reply-To"),
            "references": parse_references(parsed.get("References")),
            "importance": (parsed.get("Importance") or "normal").lower(),
            "headers": dict(parsed.items()),
        }
