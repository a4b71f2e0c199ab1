"""Caller and request context passed into scan/confirm operations."""

from dataclasses import dataclass, field
from typing import Iterable, Optional


@dataclass(frozen=True)
class CallerIdentity:
    """Identity verified by the upstream identity layer.

    Attributes:
        user_id: Authenticated user identifier
        roles: Role names granted to the user (upper-case)
    """

    user_id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_any_role(self, allowed: Iterable[str]) -> bool:
        return any(role.upper() in self.roles for role in allowed)


@dataclass(frozen=True)
class RequestContext:
    """Who is asking, from which device, for audit and rate limiting."""

    device_id: str
    caller: Optional[CallerIdentity] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.caller.user_id if self.caller else None
