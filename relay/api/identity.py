"""Caller identity for rate limiting and authorization."""

from dataclasses import dataclass
from typing import Protocol

from fastapi import Request

GUEST_ROLE = "guest"
ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    id: str
    role: str = GUEST_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class IdentityProvider(Protocol):
    def resolve(self, request: Request) -> Identity: ...


class HeaderIdentityProvider:
    """
    Reads ``X-User-Id`` / ``X-User-Role`` as set by an authenticating proxy.
    Anonymous callers are identified by client address with the guest role.
    """

    def __init__(self, id_header: str = "x-user-id", role_header: str = "x-user-role"):
        self.id_header = id_header
        self.role_header = role_header

    def resolve(self, request: Request) -> Identity:
        user_id = request.headers.get(self.id_header)
        if user_id:
            return Identity(id=f"user:{user_id}", role=request.headers.get(self.role_header, "user"))

        host = request.client.host if request.client else "unknown"
        return Identity(id=f"ip:{host}", role=GUEST_ROLE)
