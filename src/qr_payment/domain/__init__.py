"""QR payment domain layer.

This package contains the core domain entities, value objects and
exceptions for QR payment tokens. Services live in their own modules
(issuer, scanner, confirmer) and are imported from there.
"""

from qr_payment.domain.context import CallerIdentity, RequestContext
from qr_payment.domain.credential import (
    CredentialError,
    DecodedCredential,
    decode_credential,
    encode_credential,
)
from qr_payment.domain.order import (
    OrderLineItem,
    OrderSnapshot,
    OrderStatus,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
)
from qr_payment.domain.token import (
    CredentialKind,
    PaymentQRToken,
    ScanAction,
    ScanStatus,
)

__all__ = [
    "CallerIdentity",
    "RequestContext",
    "CredentialError",
    "DecodedCredential",
    "decode_credential",
    "encode_credential",
    "OrderLineItem",
    "OrderSnapshot",
    "OrderStatus",
    "PaymentMethod",
    "PaymentRecord",
    "PaymentStatus",
    "CredentialKind",
    "PaymentQRToken",
    "ScanAction",
    "ScanStatus",
]
