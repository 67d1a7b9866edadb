"""Tests for the inbound Meta webhook endpoints."""

import json
from unittest.mock import MagicMock

import pytest

from helpdesk.api.messaging import get_job_queue
from helpdesk.models import MessagingChannel, OrganizationIntegration
from helpdesk.services.signatures import compute_signature

URL = "/api/v1/webhooks/meta"


class TestMetaWebhook:
    @pytest.fixture(autouse=True)
    def setup(self, api):
        self.api = api
        self.client = api.client
        integration = OrganizationIntegration(organization_id=api.org.org.id, integration="meta")
        integration.credentials = {"webhook_verify_token": "verify-me", "app_secret": "shh"}
        self.channel = MessagingChannel(organization_id=api.org.org.id, external_id="page-1", name="Acme IG")
        api.session.add_all([integration, self.channel])
        api.session.commit()

    def _post(self, payload, secret="shh", raw=None):
        body = raw if raw is not None else json.dumps(payload).encode()
        headers = {"Content-Type": "application/json"}
        if secret:
            headers["X-Hub-Signature-256"] = compute_signature(body, secret)
        return self.client.post(URL, content=body, headers=headers)

    # Verification handshake

    def test_verification_echoes_challenge(self):
        resp = self.client.get(URL, params={"hub.mode": "subscribe", "hub.verify_token": "verify-me",
                                            "hub.challenge": "1158201444"})
        assert resp.status_code == 200
        assert resp.text == "1158201444"

    def test_verification_accepts_underscore_keys(self):
        resp = self.client.get(URL, params={"hub_mode": "subscribe", "hub_verify_token": "verify-me",
                                            "hub_challenge": "42"})
        assert resp.status_code == 200
        assert resp.text == "42"

    def test_verification_underscore_keys_wrong_token(self):
        resp = self.client.get(URL, params={"hub_mode": "subscribe", "hub_verify_token": "nope",
                                            "hub_challenge": "42"})
        assert resp.status_code == 403

    def test_verification_wrong_token(self):
        resp = self.client.get(URL, params={"hub.mode": "subscribe", "hub.verify_token": "nope",
                                            "hub.challenge": "1"})
        assert resp.status_code == 403

    def test_verification_wrong_mode(self):
        resp = self.client.get(URL, params={"hub.mode": "unsubscribe", "hub.verify_token": "verify-me",
                                            "hub.challenge": "1"})
        assert resp.status_code == 403

    def test_verification_missing_challenge(self):
        resp = self.client.get(URL, params={"hub.mode": "subscribe", "hub.verify_token": "verify-me"})
        assert resp.status_code == 400

    # Message intake

    def test_signed_payload_is_enqueued(self):
        payload = {"object": "page", "entry": [{"id": "page-1", "messaging": []}]}

        resp = self._post(payload)

        assert resp.status_code == 200
        assert resp.text == "OK"
        [job] = self.api.queue.named("process_messaging_webhook")
        assert job.args == (str(self.channel.id), payload)
        assert job.queue == "messaging"

    def test_bad_signature_is_acknowledged_but_dropped(self):
        resp = self._post({"entry": [{"id": "page-1"}]}, secret="wrong")

        assert resp.status_code == 200
        assert resp.text == "Invalid signature"
        assert self.api.queue.jobs == []

    def test_missing_signature(self):
        resp = self._post({"entry": [{"id": "page-1"}]}, secret=None)

        assert resp.text == "Invalid signature"
        assert self.api.queue.jobs == []

    def test_unknown_page(self):
        resp = self._post({"entry": [{"id": "page-404"}]})

        assert resp.text == "OK"
        assert self.api.queue.jobs == []

    def test_invalid_json(self):
        resp = self._post(None, raw=b"not json")

        assert resp.status_code == 200
        assert resp.text == "OK"
        assert self.api.queue.jobs == []

    def test_enqueue_failure_still_acknowledged(self):
        failing = MagicMock()
        failing.messaging.side_effect = ConnectionError("redis down")
        self.api.app.dependency_overrides[get_job_queue] = lambda: failing

        resp = self._post({"entry": [{"id": "page-1"}]})

        assert resp.status_code == 200
        assert resp.text == "OK"
        failing.messaging.assert_called_once()
