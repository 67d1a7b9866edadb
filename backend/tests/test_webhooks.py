"""Tests for outbound webhook formatting, signing and delivery attempts."""

import asyncio
import json
import uuid
from datetime import datetime, timezone

import httpx

from helpdesk.adapters.discord import COLORS, TITLES, event_description, to_discord
from helpdesk.adapters.slack import to_slack
from helpdesk.models import Webhook
from helpdesk.services.events import EventKind
from helpdesk.services.signatures import compute_signature, verify_token, verify_webhook_signature
from helpdesk.services.webhooks import WebhookService

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)

DATA = {
    "ticket": {
        "id": "t-1",
        "ticket_number": "TKT-00042",
        "subject": "Cannot log in",
        "url": "https://desk.test/inbox/t-1",
        "status": {"id": "s-1", "name": "Open"},
        "priority": {"id": "p-1", "name": "Urgent"},
    },
    "contact": {"id": "c-1", "name": "Carol Customer", "email": "carol@customer.test"},
}


def _webhook(fmt="standard", secret="s3cret"):
    webhook = Webhook(id=uuid.uuid4(), url="https://hooks.test/receive", events=["ticket.created"], format=fmt)
    webhook.secret = secret
    return webhook


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestSignatures:
    def test_compute_signature(self):
        signature = compute_signature(b'{"a":1}', "key")
        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64

    def test_verify_webhook_signature(self):
        integration = type("Integration", (), {"credentials": {"app_secret": "shh"}})()
        body = b'{"entry":[]}'

        assert verify_webhook_signature(body, compute_signature(body, "shh"), integration)
        assert not verify_webhook_signature(body, compute_signature(body, "other"), integration)
        assert not verify_webhook_signature(body, None, integration)
        assert not verify_webhook_signature(body, compute_signature(body, "shh"), None)

    def test_single_byte_change_fails_verification(self):
        integration = type("Integration", (), {"credentials": {"app_secret": "shh"}})()
        body = b'{"entry":[{"id":"page-1"}]}'
        signature = compute_signature(body, "shh")

        tampered_body = body[:-2] + b"]" + body[-1:]
        assert tampered_body != body
        assert not verify_webhook_signature(tampered_body, signature, integration)

        last = "0" if signature[-1] != "0" else "1"
        assert not verify_webhook_signature(body, signature[:-1] + last, integration)
        assert not verify_webhook_signature(body, signature[:-1], integration)
        assert verify_webhook_signature(body, signature, integration)

    def test_missing_app_secret_fails(self):
        integration = type("Integration", (), {"credentials": {}})()
        assert not verify_webhook_signature(b"{}", compute_signature(b"{}", ""), integration)

    def test_verify_token(self):
        assert verify_token("abc", "abc")
        assert not verify_token("abc", "abd")
        assert not verify_token(None, "abc")
        assert not verify_token("abc", "")


class TestFormats:
    def test_standard_envelope(self):
        webhook = _webhook()
        payload = WebhookService().build_payload(EventKind.TICKET_CREATED, DATA, webhook, NOW)

        assert payload == {
            "event": "ticket.created",
            "timestamp": NOW.isoformat(),
            "webhook_id": str(webhook.id),
            "data": DATA,
        }

    def test_discord_embed(self):
        embed = to_discord(EventKind.TICKET_CREATED, DATA, NOW)["embeds"][0]

        assert embed["title"] == TITLES[EventKind.TICKET_CREATED]
        assert embed["color"] == COLORS[EventKind.TICKET_CREATED]
        assert embed["url"] == "https://desk.test/inbox/t-1"
        assert "New ticket created by Carol Customer" in embed["description"]
        names = [f["name"] for f in embed["fields"]]
        assert names == ["Ticket", "Status", "Priority", "Contact"]
        assert embed["fields"][3]["value"] == "Carol Customer (carol@customer.test)"

    def test_slack_blocks(self):
        blocks = to_slack(EventKind.TICKET_CREATED, DATA, NOW)["blocks"]

        assert [b["type"] for b in blocks] == ["header", "section", "section", "actions", "context"]
        assert blocks[3]["elements"][0]["url"] == "https://desk.test/inbox/t-1"
        assert "01-03-2024 09:30" in blocks[4]["elements"][0]["text"]

    def test_slack_without_url_or_fields(self):
        blocks = to_slack(EventKind.MESSAGE_CREATED, {"ticket": {"subject": "Hi"}}, NOW)["blocks"]
        assert [b["type"] for b in blocks] == ["header", "section", "context"]

    def test_change_descriptions(self):
        changes = {"changes": {"status": {"from": {"name": "Open"}, "to": {"name": "Closed"}}}}
        assert "Status: Open → Closed" in event_description(EventKind.TICKET_STATUS_CHANGED, changes)

        unassigned = {"changes": {"assigned_to": {"from": {"name": "Alice"}, "to": None}}}
        assert "Assigned to: Nobody" in event_description(EventKind.TICKET_ASSIGNED, unassigned)

    def test_every_event_has_title_and_color(self):
        for kind in EventKind:
            assert kind in TITLES
            assert kind in COLORS


class TestDeliver:
    def test_standard_delivery_is_signed(self):
        captured = {}

        def handler(request):
            captured["request"] = request
            return httpx.Response(200, text="ok")

        webhook = _webhook()
        result = asyncio.run(WebhookService(_client(handler)).deliver(webhook, EventKind.TICKET_CREATED, DATA))

        request = captured["request"]
        body = request.content
        assert result.success
        assert result.status == 200
        assert result.body == "ok"
        assert request.headers["X-Signature-256"] == compute_signature(body, "s3cret")
        assert request.headers["X-Webhook-Event"] == "ticket.created"
        assert "X-Webhook-Timestamp" in request.headers
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(body)["data"] == DATA

    def test_discord_delivery_is_unsigned(self):
        captured = {}

        def handler(request):
            captured["request"] = request
            return httpx.Response(204)

        webhook = _webhook(fmt="discord")
        result = asyncio.run(WebhookService(_client(handler)).deliver(webhook, EventKind.TICKET_CREATED, DATA))

        assert result.success
        assert "X-Signature-256" not in captured["request"].headers
        assert "embeds" in json.loads(captured["request"].content)

    def test_missing_secret_still_delivers(self):
        captured = {}

        def handler(request):
            captured["request"] = request
            return httpx.Response(200)

        webhook = _webhook(secret=None)
        result = asyncio.run(WebhookService(_client(handler)).deliver(webhook, EventKind.TICKET_CREATED, DATA))

        assert result.success
        assert "X-Signature-256" not in captured["request"].headers

    def test_server_error_is_retryable(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        result = asyncio.run(WebhookService(_client(handler)).deliver(_webhook(), EventKind.TICKET_CREATED, DATA))

        assert not result.success
        assert result.retryable
        assert result.status == 503
        assert result.error == "HTTP 503: unavailable"

    def test_client_error_is_permanent(self):
        def handler(request):
            return httpx.Response(410, text="gone")

        result = asyncio.run(WebhookService(_client(handler)).deliver(_webhook(), EventKind.TICKET_CREATED, DATA))

        assert not result.success
        assert not result.retryable

    def test_rate_limit_is_retryable(self):
        def handler(request):
            return httpx.Response(429)

        result = asyncio.run(WebhookService(_client(handler)).deliver(_webhook(), EventKind.TICKET_CREATED, DATA))
        assert result.retryable

    def test_transport_error_is_retryable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        result = asyncio.run(WebhookService(_client(handler)).deliver(_webhook(), EventKind.TICKET_CREATED, DATA))

        assert not result.success
        assert result.retryable
        assert result.status is None

    def test_response_body_is_truncated(self):
        def handler(request):
            return httpx.Response(200, text="x" * 5000)

        result = asyncio.run(WebhookService(_client(handler)).deliver(_webhook(), EventKind.TICKET_CREATED, DATA))
        assert len(result.body) == 2000

    def test_send_test_uses_sample_ticket(self):
        captured = {}

        def handler(request):
            captured["payload"] = json.loads(request.content)
            return httpx.Response(200)

        result = asyncio.run(WebhookService(_client(handler)).send_test(_webhook()))

        assert result.success
        assert captured["payload"]["event"] == "ticket.created"
        assert captured["payload"]["data"]["test"] is True
        assert captured["payload"]["data"]["ticket"]["ticket_number"] == "TEST-0001"

    def test_generate_secret(self):
        assert len(WebhookService.generate_secret()) == 64
        assert WebhookService.generate_secret() != WebhookService.generate_secret()
