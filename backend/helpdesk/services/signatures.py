"""HMAC signatures for outbound webhooks and inbound Meta deliveries."""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def compute_signature(payload: bytes, secret: str) -> str:
    return SIGNATURE_PREFIX + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: bytes, signature: str | None, integration) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the integration's app secret.

    A missing secret or a missing signature is a failure, never a skip.
    """
    if integration is None or not signature:
        return False
    secret = (integration.credentials or {}).get("app_secret")
    if not secret:
        return False
    return hmac.compare_digest(compute_signature(payload, secret), signature)


def verify_token(expected: str | None, supplied: str | None) -> bool:
    if not expected or not supplied:
        return False
    return hmac.compare_digest(expected.encode(), supplied.encode())
