"""Signed QR payload encoding.

The QR code carries an HS256 JWT whose ``jti`` is the token id and whose
``order_id`` claim binds it to one order. Issuer and audience are checked on
decode. The payload is deterministic for a given token, so it can be rebuilt
from the stored record instead of being persisted.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import jwt

from qr_payment.domain.token import TOKEN_ID_PREFIX, ensure_utc

CREDENTIAL_ALGORITHM = "HS256"
CREDENTIAL_ISSUER = "qr-payment"
CREDENTIAL_AUDIENCE = "pos-device"
REQUIRED_CLAIMS = ["jti", "order_id", "exp", "iss", "aud"]


class CredentialError(ValueError):
    """Raised when a QR payload is malformed or its signature does not verify."""

    pass


@dataclass(frozen=True)
class DecodedCredential:
    """Claims carried by a verified QR payload."""

    token_id: str
    order_id: int
    expires_at: datetime
    issued_at: Optional[datetime] = None


def _signing_key(secret: str | bytes) -> str | bytes:
    if not secret:
        raise ValueError("QR token secret cannot be empty")
    return secret


def _epoch(value: datetime) -> int:
    return int(ensure_utc(value).timestamp())


def encode_credential(
    token_id: str,
    order_id: int,
    expires_at: datetime,
    secret: str | bytes,
    issued_at: Optional[datetime] = None,
) -> str:
    """Build the signed QR payload for a token.

    Args:
        token_id: Token ID (qr_<uuid>), carried as ``jti``
        order_id: Order the token belongs to
        expires_at: Expiry of the token at issue time
        secret: HMAC signing key
        issued_at: Issue time, carried as ``iat`` when given

    Returns:
        Compact JWT suitable for rendering as a QR code
    """
    payload: dict[str, Any] = {
        "jti": token_id,
        "order_id": order_id,
        "exp": _epoch(expires_at),
        "iss": CREDENTIAL_ISSUER,
        "aud": CREDENTIAL_AUDIENCE,
    }
    if issued_at is not None:
        payload["iat"] = _epoch(issued_at)
    return jwt.encode(payload, _signing_key(secret), algorithm=CREDENTIAL_ALGORITHM)


def decode_credential(credential: str, secret: str | bytes) -> DecodedCredential:
    """Verify and decode a signed QR payload.

    Expiry is not enforced here. The stored token decides it, since a
    revocation can end a token before its signed ``exp``.

    Args:
        credential: Payload read from the QR code
        secret: HMAC signing key

    Returns:
        DecodedCredential with the signed claims

    Raises:
        CredentialError: If the payload is malformed, tampered with, or was
            issued for another issuer or audience
    """
    try:
        claims = jwt.decode(
            credential.strip(),
            _signing_key(secret),
            algorithms=[CREDENTIAL_ALGORITHM],
            audience=CREDENTIAL_AUDIENCE,
            issuer=CREDENTIAL_ISSUER,
            options={"require": REQUIRED_CLAIMS, "verify_exp": False},
        )
    except jwt.InvalidTokenError as e:
        raise CredentialError(f"Invalid QR payload: {e}") from e

    token_id = claims["jti"]
    if not isinstance(token_id, str) or not token_id.startswith(TOKEN_ID_PREFIX):
        raise CredentialError("Malformed token id in QR payload")

    try:
        return DecodedCredential(
            token_id=token_id,
            order_id=int(claims["order_id"]),
            expires_at=datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc),
            issued_at=(
                datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc)
                if "iat" in claims
                else None
            ),
        )
    except (TypeError, ValueError) as e:
        raise CredentialError(f"Malformed QR payload: {e}") from e


def is_signed_credential(value: str) -> bool:
    """Cheap shape check used to tell QR payloads from short codes."""
    parts = value.strip().split(".")
    return len(parts) == 3 and parts[0].startswith("eyJ") and all(parts)
