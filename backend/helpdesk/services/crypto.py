"""Encryption service for secrets stored at rest (webhook secrets, OAuth tokens, credentials)."""

import base64
import hashlib
import json

from cryptography.fernet import Fernet

from helpdesk.config import settings


def _get_fernet() -> Fernet:
    key = settings.master_encryption_key
    # Short or placeholder keys are stretched into a valid Fernet key.
    # In production, always set a proper Fernet key via env
    if len(key) != 44:
        derived = hashlib.sha256(key.encode()).digest()
        key = base64.urlsafe_b64encode(derived).decode()
    return Fernet(key.encode())


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns base64 ciphertext."""
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Decrypt an encrypted value."""
    return _get_fernet().decrypt(ciphertext.encode()).decode()


def encrypt_json(data: dict) -> str:
    return encrypt_value(json.dumps(data))


def decrypt_json(ciphertext: str | None) -> dict:
    if not ciphertext:
        return {}
    return json.loads(decrypt_value(ciphertext))
