"""Tenant credential lookup and webhook signature validation."""

import base64
import hashlib
import hmac
import json
import os
import time
from dataclasses import dataclass
from typing import Optional

from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlalchemy.orm import Session

from chapterbot.config import settings
from chapterbot.logging_config import get_logger
from chapterbot.models import TenantSecret
from chapterbot.services.errors import InvalidSignature, TenantNotFound

logger = get_logger("credentials")


@dataclass(frozen=True)
class TenantCredential:
    tenant_id: str
    signing_secret: str
    send_token: str
    bot_identity: str


_cache: dict[str, tuple[float, TenantCredential]] = {}


def _encryption_key(key_hex: Optional[str] = None) -> bytes:
    key_hex = key_hex if key_hex is not None else settings.line_encryption_key
    if not key_hex:
        raise ValueError("LINE_ENCRYPTION_KEY is not configured")
    return bytes.fromhex(key_hex)[:32]


def encrypt_value(value: str, key_hex: Optional[str] = None) -> str:
    """Encrypt a secret into the stored ``{"iv", "authTag", "encrypted"}`` JSON."""
    iv = os.urandom(16)
    sealed = AESGCM(_encryption_key(key_hex)).encrypt(iv, value.encode("utf-8"), None)
    ciphertext, tag = sealed[:-16], sealed[-16:]
    return json.dumps({"iv": iv.hex(), "authTag": tag.hex(), "encrypted": ciphertext.hex()})


def decrypt_value(stored: str, key_hex: Optional[str] = None) -> str:
    data = json.loads(stored)
    iv = bytes.fromhex(data["iv"])
    sealed = bytes.fromhex(data["encrypted"]) + bytes.fromhex(data["authTag"])
    return AESGCM(_encryption_key(key_hex)).decrypt(iv, sealed, None).decode("utf-8")


def clear_credential_cache(destination: Optional[str] = None) -> None:
    if destination:
        _cache.pop(destination, None)
    else:
        _cache.clear()


def resolve_credentials(db: Session, destination: str) -> TenantCredential:
    """Map a bot identity to its tenant credentials.

    Raises TenantNotFound when no tenant owns the bot or its secrets cannot
    be decrypted.
    """
    now = time.monotonic()
    cached = _cache.get(destination)
    if cached and now - cached[0] < settings.credential_cache_seconds:
        return cached[1]

    row = db.query(TenantSecret).filter(TenantSecret.line_channel_id == destination).first()
    if not row or not row.line_access_token_encrypted or not row.line_channel_secret_encrypted:
        raise TenantNotFound(destination)

    try:
        credential = TenantCredential(
            tenant_id=str(row.tenant_id),
            signing_secret=decrypt_value(row.line_channel_secret_encrypted),
            send_token=decrypt_value(row.line_access_token_encrypted),
            bot_identity=destination,
        )
    except Exception as e:
        logger.error(
            "Failed to decrypt tenant credentials",
            extra={"context": {"destination": destination, "tenant_id": str(row.tenant_id), "error": str(e)}},
        )
        raise TenantNotFound(destination) from e

    _cache[destination] = (now, credential)
    return credential


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_body: bytes, secret: str, signature: Optional[str]) -> bool:
    """Check ``signature`` against an HMAC-SHA256 of the exact bytes received."""
    if not signature or not secret:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", errors="replace"))


def authenticate(db: Session, raw_body: bytes, destination: str, signature: Optional[str]) -> TenantCredential:
    credential = resolve_credentials(db, destination)
    if not verify_signature(raw_body, credential.signing_secret, signature):
        logger.warning(
            "Webhook signature mismatch",
            extra={
                "context": {
                    "security_event": "invalid_signature",
                    "tenant_id": credential.tenant_id,
                    "destination": destination,
                }
            },
        )
        raise InvalidSignature(credential.tenant_id)
    return credential
