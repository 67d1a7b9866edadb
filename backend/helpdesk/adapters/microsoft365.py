"""Microsoft 365 adapter - mail via the Microsoft Graph API."""

import html
import re
from datetime import datetime
from urllib.parse import urlencode

import structlog

from helpdesk.adapters.providers import EmailProvider, OutgoingNotification, parse_references
from helpdesk.config import settings
from helpdesk.services.delivery import ProviderRequestError

logger = structlog.get_logger()

GRAPH_URL = "https://graph.microsoft.com/v1.0"
LOGIN_URL = "https://login.microsoftonline.com"
SCOPES = "offline_access https://graph.microsoft.com/Mail.ReadWrite https://graph.microsoft.com/Mail.Send https://graph.microsoft.com/User.Read"
MESSAGE_FIELDS = (
    "id,internetMessageId,conversationId,from,toRecipients,ccRecipients,subject,body,"
    "receivedDateTime,importance,internetMessageHeaders,hasAttachments"
)


def _recipient(email: str, name: str | None = None) -> dict:
    return {"emailAddress": {"address": email, "name": name or email}}


def _recipients(entries: list[dict]) -> list[dict]:
    return [
        {"email": (r.get("emailAddress") or {}).get("address", ""), "name": (r.get("emailAddress") or {}).get("name")}
        for r in entries
    ]


class Microsoft365Provider(EmailProvider):
    name = "microsoft365"

    @property
    def tenant(self) -> str:
        return self.credentials.get("tenant_id") or "common"

    @property
    def token_url(self) -> str:
        return f"{LOGIN_URL}/{self.tenant}/oauth2/v2.0/token"

    def get_authorization_url(self, state: str) -> str:
        query = urlencode({
            "client_id": self.credentials["client_id"],
            "response_type": "code",
            "redirect_uri": settings.oauth_redirect_url,
            "response_mode": "query",
            "scope": SCOPES,
            "state": state,
        })
        return f"{LOGIN_URL}/{self.tenant}/oauth2/v2.0/authorize?{query}"

    async def handle_callback(self, channel, code: str) -> None:
        await self._token_request(self.token_url, {
            "client_id": self.credentials["client_id"],
            "client_secret": self.credentials["client_secret"],
            "code": code,
            "redirect_uri": settings.oauth_redirect_url,
            "grant_type": "authorization_code",
            "scope": SCOPES,
        }, channel)
        me = await self._me(channel)
        email = me.get("mail") or me.get("userPrincipalName")
        if email and email != channel.email_address:
            channel.email_address = email

    async def refresh_token(self, channel) -> None:
        refresh = channel.oauth_refresh_token
        if not refresh:
            raise ProviderRequestError("No refresh token available", retryable=False)
        await self._token_request(self.token_url, {
            "client_id": self.credentials["client_id"],
            "client_secret": self.credentials["client_secret"],
            "refresh_token": refresh,
            "grant_type": "refresh_token",
            "scope": SCOPES,
        }, channel)
        logger.info("oauth_token_refreshed", provider=self.name, channel_id=str(channel.id))

    async def _me(self, channel) -> dict:
        resp = await self._api(channel, "GET", f"{GRAPH_URL}/me", params={"$select": "mail,userPrincipalName"})
        self._raise_for(resp, "get profile", channel)
        return resp.json()

    async def fetch_messages(self, channel, since: datetime | None = None) -> list[dict]:
        params = {"$select": MESSAGE_FIELDS, "$orderby": "receivedDateTime desc", "$top": 50}
        if since:
            params["$filter"] = f"receivedDateTime ge {since.strftime('%Y-%m-%dT%H:%M:%SZ')}"
        resp = await self._api(
            channel, "GET", f"{GRAPH_URL}/me/mailFolders/{channel.fetch_folder}/messages", params=params,
        )
        self._raise_for(resp, "fetch messages", channel)
        return [self.normalize_message(m) for m in resp.json().get("value", [])]

    async def get_message_by_id(self, channel, message_id: str) -> dict | None:
        resp = await self._api(
            channel, "GET", f"{GRAPH_URL}/me/messages/{message_id}", params={"$select": MESSAGE_FIELDS},
        )
        if resp.status_code == 404:
            return None
        self._raise_for(resp, "get message", channel)
        return self.normalize_message(resp.json())

    async def send_message(self, channel, message, ticket, headers: dict) -> str:
        body = message.body_html or html.escape(message.body or "").replace("\n", "<br>\n")
        payload = {
            "message": {
                "subject": headers["subject"],
                "body": {"contentType": "HTML", "content": body},
                "toRecipients": [_recipient(headers["to_email"], headers.get("to_name"))],
                "internetMessageHeaders": self.custom_headers(headers.get("ticket_number")),
            },
            "saveToSentItems": True,
        }
        resp = await self._api(channel, "POST", f"{GRAPH_URL}/me/sendMail", json=payload)
        self._raise_for(resp, "send message", channel)
        # sendMail returns no id; the Message-ID we generated identifies it
        return headers["message_id"]

    async def send_notification(self, channel, notification: OutgoingNotification) -> str | None:
        if notification.original_message_id:
            if await self._send_as_reply(channel, notification):
                return None
            logger.info("graph_reply_failed_sending_new", channel_id=str(channel.id),
                        original_message_id=notification.original_message_id)
        return await self._send_new(channel, notification)

    async def _send_as_reply(self, channel, notification: OutgoingNotification) -> bool:
        message = {
            "toRecipients": [_recipient(notification.to_email, notification.to_name)],
            "body": {"contentType": "HTML", "content": notification.html},
        }
        if notification.cc:
            message["ccRecipients"] = [_recipient(cc["email"], cc.get("name")) for cc in notification.cc]
        if notification.ticket_number:
            message["internetMessageHeaders"] = self.custom_headers(notification.ticket_number)

        try:
            resp = await self._api(
                channel, "POST", f"{GRAPH_URL}/me/messages/{notification.original_message_id}/reply",
                json={"message": message},
            )
        except ProviderRequestError as e:
            logger.warning("graph_reply_request_failed", channel_id=str(channel.id), error=str(e))
            return False
        return resp.is_success

    async def _send_new(self, channel, notification: OutgoingNotification) -> str | None:
        message = {
            "subject": notification.subject,
            "body": {"contentType": "HTML", "content": notification.html},
            "toRecipients": [_recipient(notification.to_email, notification.to_name)],
        }
        if notification.cc:
            message["ccRecipients"] = [_recipient(cc["email"], cc.get("name")) for cc in notification.cc]
        if notification.reply_to:
            message["replyTo"] = [{"emailAddress": {"address": notification.reply_to}}]
        if notification.ticket_number:
            message["internetMessageHeaders"] = self.custom_headers(notification.ticket_number)

        resp = await self._api(
            channel, "POST", f"{GRAPH_URL}/me/sendMail", json={"message": message, "saveToSentItems": True},
        )
        self._raise_for(resp, "send notification", channel)
        return None

    @staticmethod
    def custom_headers(ticket_number: str | None) -> list[dict]:
        """Graph rejects standard headers (Message-ID, In-Reply-To); only X- headers pass."""
        if not ticket_number:
            return []
        return [{"name": "X-Ticket-ID", "value": ticket_number}]

    async def test_connection(self, channel) -> dict:
        try:
            me = await self._me(channel)
        except Exception as e:
            return {"success": False, "email": None, "error": str(e)}
        return {"success": True, "email": me.get("mail") or me.get("userPrincipalName"), "error": None}

    async def _well_known_folder_id(self, channel, folder: str) -> str | None:
        try:
            resp = await self._api(channel, "GET", f"{GRAPH_URL}/me/mailFolders/{folder}")
        except ProviderRequestError:
            return None
        return resp.json().get("id") if resp.is_success else None

    async def archive_message(self, channel, message_id: str) -> str | None:
        folder_id = await self._well_known_folder_id(channel, "archive")
        if not folder_id:
            logger.warning("graph_archive_folder_missing_deleting", channel_id=str(channel.id), message_id=message_id)
            await self.delete_message(channel, message_id)
            return None
        return await self.move_message(channel, message_id, folder_id)

    async def move_message(self, channel, message_id: str, folder_id: str) -> str:
        resp = await self._api(
            channel, "POST", f"{GRAPH_URL}/me/messages/{message_id}/move", json={"destinationId": folder_id},
        )
        self._raise_for(resp, "move message", channel)
        # Graph assigns the moved message a new id
        return resp.json()["id"]

    async def delete_message(self, channel, message_id: str) -> None:
        resp = await self._api(channel, "DELETE", f"{GRAPH_URL}/me/messages/{message_id}")
        self._raise_for(resp, "delete message", channel)

    @staticmethod
    def normalize_message(message: dict) -> dict:
        headers = {h["name"]: h["value"] for h in message.get("internetMessageHeaders") or []}
        body = message.get("body") or {}
        content = body.get("content") or ""
        sender = (message.get("from") or {}).get("emailAddress") or {}
        return {
            "id": message["id"],
            "internet_message_id": message.get("internetMessageId"),
            "conversation_id": message.get("conversationId"),
            "thread_id": None,
            "thread_index": headers.get("Thread-Index"),
            "from_email": sender.get("address", ""),
            "from_name": sender.get("name"),
            "to_recipients": _recipients(message.get("toRecipients") or []),
            "cc_recipients": _recipients(message.get("ccRecipients") or []),
            "subject": message.get("subject") or "",
            "body_text": re.sub(r"<[^>]+>", "", content),
            "body_html": content if (body.get("contentType") or "").lower() == "html" else None,
            "received_at": message.get("receivedDateTime"),
            "in_reply_to": headers.get("In-Reply-To"),
            "references": parse_references(headers.get("References")),
            "importance": message.get("importance", "normal"),
            "headers": headers,
        }
