import json
from unittest.mock import patch

import pytest

from chapterbot.config import settings
from chapterbot.services.credential_service import (
    authenticate,
    compute_signature,
    decrypt_value,
    encrypt_value,
    resolve_credentials,
    verify_signature,
)
from chapterbot.services.errors import InvalidSignature, TenantNotFound

RAW_BODY = b'{"destination":"Ubot","events":[{"type":"message","message":{"type":"text","text":"\xe0\xb8\xaa"}}]}'


class TestSignature:
    def test_valid_signature_over_exact_bytes(self):
        signature = compute_signature(RAW_BODY, "channel-secret")
        assert verify_signature(RAW_BODY, "channel-secret", signature) is True

    def test_single_byte_change_invalidates(self):
        signature = compute_signature(RAW_BODY, "channel-secret")
        mutated = RAW_BODY.replace(b"Ubot", b"Ubou")
        assert verify_signature(mutated, "channel-secret", signature) is False

    def test_reserialized_body_does_not_verify(self):
        signature = compute_signature(RAW_BODY, "channel-secret")
        reserialized = json.dumps(json.loads(RAW_BODY)).encode()
        assert reserialized != RAW_BODY
        assert verify_signature(reserialized, "channel-secret", signature) is False

    def test_wrong_secret(self):
        signature = compute_signature(RAW_BODY, "other-secret")
        assert verify_signature(RAW_BODY, "channel-secret", signature) is False

    def test_missing_signature(self):
        assert verify_signature(RAW_BODY, "channel-secret", None) is False
        assert verify_signature(RAW_BODY, "channel-secret", "") is False

    def test_non_ascii_signature_header_is_rejected(self):
        assert verify_signature(RAW_BODY, "channel-secret", "ไม่ใช่ลายเซ็น") is False


class TestEncryption:
    def test_roundtrip(self, encryption_key):
        stored = encrypt_value("secret-value")
        data = json.loads(stored)
        assert set(data) == {"iv", "authTag", "encrypted"}
        assert len(bytes.fromhex(data["iv"])) == 16
        assert decrypt_value(stored) == "secret-value"

    def test_tampered_ciphertext_fails(self, encryption_key):
        data = json.loads(encrypt_value("secret-value"))
        data["authTag"] = "00" * 16
        with pytest.raises(Exception):
            decrypt_value(json.dumps(data))

    def test_missing_key_raises(self, monkeypatch):
        monkeypatch.setattr(settings, "line_encryption_key", "")
        with pytest.raises(ValueError):
            encrypt_value("x")


class TestResolveCredentials:
    def test_resolves_tenant(self, db, tenant_secret, tenant_id):
        credential = resolve_credentials(db, tenant_secret.line_channel_id)
        assert credential.tenant_id == tenant_id
        assert credential.signing_secret == "channel-secret"
        assert credential.send_token == "access-token"

    def test_unknown_destination(self, db, tenant_secret):
        with pytest.raises(TenantNotFound):
            resolve_credentials(db, "Unobody")

    def test_undecryptable_secret_is_tenant_not_found(self, db, tenant_secret):
        tenant_secret.line_channel_secret_encrypted = '{"iv": "00", "authTag": "00", "encrypted": "00"}'
        db.commit()
        with pytest.raises(TenantNotFound):
            resolve_credentials(db, tenant_secret.line_channel_id)

    def test_cached_between_calls(self, db, tenant_secret):
        resolve_credentials(db, tenant_secret.line_channel_id)
        with patch("chapterbot.services.credential_service.decrypt_value") as decrypt:
            credential = resolve_credentials(db, tenant_secret.line_channel_id)
        decrypt.assert_not_called()
        assert credential.signing_secret == "channel-secret"


class TestAuthenticate:
    def test_valid(self, db, tenant_secret, tenant_id):
        signature = compute_signature(RAW_BODY, "channel-secret")
        credential = authenticate(db, RAW_BODY, tenant_secret.line_channel_id, signature)
        assert credential.tenant_id == tenant_id

    def test_invalid_signature(self, db, tenant_secret, tenant_id):
        with pytest.raises(InvalidSignature) as exc:
            authenticate(db, RAW_BODY, tenant_secret.line_channel_id, "bm9wZQ==")
        assert exc.value.tenant_id == tenant_id
        assert exc.value.status_code == 403

    def test_unknown_tenant_checked_before_signature(self, db, tenant_secret):
        with pytest.raises(TenantNotFound) as exc:
            authenticate(db, RAW_BODY, "Uunknown", None)
        assert exc.value.status_code == 404
