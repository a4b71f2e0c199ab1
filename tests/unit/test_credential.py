"""Unit tests for signed QR payload encoding."""

from datetime import datetime, timezone

import jwt
import pytest

from qr_payment.domain.credential import (
    CREDENTIAL_AUDIENCE,
    CREDENTIAL_ISSUER,
    CredentialError,
    decode_credential,
    encode_credential,
    is_signed_credential,
)

SECRET = "unit-test-qr-token-secret-0123456789"
OTHER_SECRET = "another-qr-token-secret-0123456789ab"
TOKEN_ID = "qr_5b0e4d4c-6f3e-4f59-8f5a-0f3c2b8d9a11"
ISSUED_AT = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)
EXPIRES_AT = datetime(2026, 3, 2, 12, 5, 0, tzinfo=timezone.utc)


def make_claims(**overrides):
    claims = {
        "jti": TOKEN_ID,
        "order_id": 1001,
        "exp": int(EXPIRES_AT.timestamp()),
        "iss": CREDENTIAL_ISSUER,
        "aud": CREDENTIAL_AUDIENCE,
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


class TestEncodeCredential:
    """Tests for building QR payloads."""

    def test_payload_is_hs256_jwt(self):
        credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET, issued_at=ISSUED_AT)

        header = jwt.get_unverified_header(credential)
        claims = jwt.decode(
            credential, SECRET, algorithms=["HS256"], audience=CREDENTIAL_AUDIENCE,
            options={"verify_exp": False},
        )

        assert header["alg"] == "HS256"
        assert claims == {
            "jti": TOKEN_ID,
            "order_id": 1001,
            "exp": int(EXPIRES_AT.timestamp()),
            "iat": int(ISSUED_AT.timestamp()),
            "iss": CREDENTIAL_ISSUER,
            "aud": CREDENTIAL_AUDIENCE,
        }

    def test_encoding_is_deterministic(self):
        """The same token always produces the same payload."""
        first = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET, issued_at=ISSUED_AT)
        second = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET, issued_at=ISSUED_AT)

        assert first == second

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError, match="secret"):
            encode_credential(TOKEN_ID, 1001, EXPIRES_AT, "")


class TestDecodeCredential:
    """Tests for verifying QR payloads."""

    def test_decode_returns_signed_claims(self):
        credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET, issued_at=ISSUED_AT)

        claims = decode_credential(credential, SECRET)

        assert claims.token_id == TOKEN_ID
        assert claims.order_id == 1001
        assert claims.expires_at == EXPIRES_AT
        assert claims.issued_at == ISSUED_AT

    def test_issued_at_is_optional(self):
        credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET)

        assert decode_credential(credential, SECRET).issued_at is None

    def test_past_expiry_still_decodes(self):
        """Expiry is judged against the stored token, not the payload."""
        expired = datetime(2020, 1, 1, tzinfo=timezone.utc)
        credential = encode_credential(TOKEN_ID, 1001, expired, SECRET)

        assert decode_credential(credential, SECRET).expires_at == expired

    def test_wrong_secret_rejected(self):
        credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET)

        with pytest.raises(CredentialError, match="Signature"):
            decode_credential(credential, OTHER_SECRET)

    def test_tampered_order_id_rejected(self):
        """Swapping in another order's claims invalidates the signature."""
        credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET)
        header, _, signature = credential.split(".")
        other = jwt.encode(make_claims(order_id=1002), OTHER_SECRET, algorithm="HS256")
        tampered = ".".join([header, other.split(".")[1], signature])

        with pytest.raises(CredentialError):
            decode_credential(tampered, SECRET)

    def test_unsigned_token_rejected(self):
        unsigned = jwt.encode(make_claims(), None, algorithm="none")

        with pytest.raises(CredentialError):
            decode_credential(unsigned, SECRET)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"aud": "web-checkout"},
            {"iss": "someone-else"},
            {"jti": None},
            {"order_id": None},
            {"jti": "tok_5b0e4d4c"},
            {"order_id": "not-a-number"},
        ],
    )
    def test_unexpected_claims_rejected(self, overrides):
        credential = jwt.encode(make_claims(**overrides), SECRET, algorithm="HS256")

        with pytest.raises(CredentialError):
            decode_credential(credential, SECRET)

    @pytest.mark.parametrize(
        "credential",
        [
            "",
            "not-a-credential",
            "eyJhbGciOiJIUzI1NiJ9.e30",
            "eyJ.only.garbage",
        ],
    )
    def test_malformed_payload_rejected(self, credential):
        with pytest.raises(CredentialError):
            decode_credential(credential, SECRET)

    def test_surrounding_whitespace_ignored(self):
        credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET)

        claims = decode_credential(f"  {credential}\n", SECRET)

        assert claims.token_id == TOKEN_ID


def test_is_signed_credential():
    credential = encode_credential(TOKEN_ID, 1001, EXPIRES_AT, SECRET)

    assert is_signed_credential(credential)
    assert is_signed_credential(f" {credential} ")
    assert not is_signed_credential("QRABC234")
    assert not is_signed_credential(TOKEN_ID)
    assert not is_signed_credential("https://example.com/pay")
