"""Outbound webhook payloads, signing and a single delivery attempt."""

import json
import secrets
import time
from datetime import datetime, timezone

import httpx
import structlog

from helpdesk.adapters.discord import to_discord
from helpdesk.adapters.slack import to_slack
from helpdesk.config import settings
from helpdesk.models.webhook import Webhook, WebhookFormat
from helpdesk.services.delivery import DeliveryResult
from helpdesk.services.events import EventKind
from helpdesk.services.signatures import compute_signature

logger = structlog.get_logger()

RESPONSE_BODY_LIMIT = 2000
ERROR_BODY_LIMIT = 500


class WebhookService:
    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self.http_client = http_client

    @staticmethod
    def generate_secret() -> str:
        return secrets.token_hex(32)

    @staticmethod
    def encode(payload: dict) -> bytes:
        """Compact UTF-8 JSON. The signature covers exactly these bytes."""
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")

    @staticmethod
    def sign(body: bytes, secret: str) -> str:
        return compute_signature(body, secret)

    def build_payload(self, kind: EventKind, data: dict, webhook: Webhook, now: datetime | None = None) -> dict:
        now = now or datetime.now(timezone.utc)
        fmt = webhook.webhook_format
        if fmt is WebhookFormat.DISCORD:
            return to_discord(kind, data, now)
        if fmt is WebhookFormat.SLACK:
            return to_slack(kind, data, now)
        return {
            "event": kind.value,
            "timestamp": now.isoformat(),
            "webhook_id": str(webhook.id),
            "data": data,
        }

    async def deliver(self, webhook: Webhook, kind: EventKind, data: dict) -> DeliveryResult:
        now = datetime.now(timezone.utc)
        body = self.encode(self.build_payload(kind, data, webhook, now))

        headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.webhook_user_agent,
        }
        if webhook.webhook_format.uses_signature:
            secret = webhook.secret
            if secret:
                headers["X-Signature-256"] = self.sign(body, secret)
            else:
                logger.warning("webhook_secret_missing", webhook_id=str(webhook.id))
            headers["X-Webhook-Event"] = kind.value
            headers["X-Webhook-Timestamp"] = now.isoformat()

        start = time.monotonic()
        try:
            if self.http_client is not None:
                resp = await self.http_client.post(
                    webhook.url, content=body, headers=headers, timeout=settings.webhook_timeout_seconds,
                )
            else:
                async with httpx.AsyncClient(timeout=settings.webhook_timeout_seconds) as client:
                    resp = await client.post(webhook.url, content=body, headers=headers)
        except httpx.HTTPError as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.warning("webhook_request_failed", webhook_id=str(webhook.id), url=webhook.url,
                           event=kind.value, error=str(e) or e.__class__.__name__)
            return DeliveryResult.from_exception(e, duration_ms=duration_ms)

        duration_ms = int((time.monotonic() - start) * 1000)
        text = resp.text or ""
        if resp.is_success:
            return DeliveryResult.ok(status=resp.status_code, body=text[:RESPONSE_BODY_LIMIT], duration_ms=duration_ms)

        return DeliveryResult.failure(
            f"HTTP {resp.status_code}: {text[:ERROR_BODY_LIMIT]}",
            duration_ms=duration_ms,
            status=resp.status_code,
            body=text[:RESPONSE_BODY_LIMIT],
            retryable=resp.status_code >= 500 or resp.status_code == 429,
        )

    async def send_test(self, webhook: Webhook) -> DeliveryResult:
        now = datetime.now(timezone.utc).isoformat()
        data = {
            "test": True,
            "message": f"This is a test webhook delivery from {settings.brand_name}",
            "ticket": {
                "id": "0",
                "ticket_number": "TEST-0001",
                "subject": "Test Ticket",
                "url": f"{settings.app_url.rstrip('/')}/inbox/0",
                "status": {"id": "1", "name": "Open"},
                "priority": {"id": "1", "name": "Normal"},
                "assigned_to": None,
                "created_at": now,
            },
            "contact": {"id": "0", "name": "Test Contact", "email": "test@example.com"},
        }
        return await self.deliver(webhook, EventKind.TICKET_CREATED, data)
