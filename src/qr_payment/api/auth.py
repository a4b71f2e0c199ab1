"""Caller and service authentication for API endpoints.

User identity is verified upstream by the identity layer, which forwards
it in the X-User-ID and X-User-Roles headers. Internal endpoints accept
only allowlisted services identified by X-Service-Auth.
"""

from typing import Annotated, Iterable, Optional

import structlog
from fastapi import Depends, Header, HTTPException, status

from qr_payment.config import settings
from qr_payment.domain.context import CallerIdentity

logger = structlog.get_logger(__name__)


def parse_roles(raw_roles: str | None) -> frozenset[str]:
    """Parse a comma separated role header into upper-case role names."""
    if not raw_roles:
        return frozenset()
    return frozenset(
        role.strip().upper().removeprefix("ROLE_")
        for role in raw_roles.split(",")
        if role.strip()
    )


def get_optional_caller_identity(
    x_user_id: Annotated[str | None, Header()] = None,
    x_user_roles: Annotated[str | None, Header()] = None,
) -> Optional[CallerIdentity]:
    """Build the forwarded caller identity, or None when there is none.

    Scan and confirm take this variant so that an anonymous attempt still
    reaches the service and is audited before it is rejected.
    """
    if not x_user_id or not x_user_id.strip():
        return None
    return CallerIdentity(user_id=x_user_id.strip(), roles=parse_roles(x_user_roles))


OptionalCaller = Annotated[Optional[CallerIdentity], Depends(get_optional_caller_identity)]


def get_caller_identity(caller: OptionalCaller) -> CallerIdentity:
    """Require the caller identity forwarded by the identity layer.

    Raises:
        HTTPException: 401 if no identity was forwarded
    """
    if caller is None:
        logger.warning("missing_caller_identity")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return caller


Caller = Annotated[CallerIdentity, Depends(get_caller_identity)]


def require_roles(caller: CallerIdentity, allowed_roles: Iterable[str]) -> None:
    """Reject callers holding none of ``allowed_roles``.

    Raises:
        HTTPException: 403 if the caller lacks every allowed role
    """
    if not caller.has_any_role(allowed_roles):
        logger.warning(
            "caller_forbidden",
            user_id=caller.user_id,
            roles=sorted(caller.roles),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient privileges",
        )


def verify_service_authorization(
    x_service_auth: Annotated[str | None, Header()] = None,
    x_request_id: Annotated[str | None, Header()] = None,
) -> tuple[str, str]:
    """Verify that the requesting service is authorized.

    Args:
        x_service_auth: Service authentication token ("service:<name>")
        x_request_id: Request/correlation ID

    Returns:
        Tuple of (requesting_service, request_id)

    Raises:
        HTTPException: 400 if X-Request-ID is missing
        HTTPException: 401 if X-Service-Auth is missing or malformed
        HTTPException: 403 if the service is not allowlisted
    """
    if not x_request_id:
        logger.warning("missing_request_id")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Request-ID header is required",
        )

    if not x_service_auth:
        logger.warning("missing_service_auth", request_id=x_request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Service-Auth header is required",
        )

    if not x_service_auth.startswith("service:"):
        logger.warning("invalid_service_auth_format", request_id=x_request_id)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication format",
        )

    requesting_service = x_service_auth.replace("service:", "", 1)

    if requesting_service not in settings.allowed_services:
        logger.warning(
            "service_not_authorized",
            requesting_service=requesting_service,
            request_id=x_request_id,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Service '{requesting_service}' is not authorized to access this endpoint",
        )

    logger.info(
        "service_authenticated",
        requesting_service=requesting_service,
        request_id=x_request_id,
    )
    return requesting_service, x_request_id


ServiceAuth = Annotated[tuple[str, str], Depends(verify_service_authorization)]
