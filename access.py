"""
Request principal and role checks.

Authentication happens upstream; the gateway forwards the authenticated user
as the X-User-Id / X-User-Role headers. Role capability is resolved here once
and the catalog, cart and order modules only compare ids.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fastapi import Depends, Header

from errors import AuthenticationError, AuthorizationError


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, ref: Optional[str]) -> bool:
        return ref is not None and str(ref) == self.id


def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Principal:
    if not x_user_id or not x_user_role:
        raise AuthenticationError("Not authorized, please login")
    try:
        role = Role(x_user_role.lower())
    except ValueError:
        raise AuthenticationError(f"Unknown role: {x_user_role}")
    return Principal(id=x_user_id, role=role)


def require_role(*roles: Role):
    """Dependency factory: the principal must hold one of `roles`."""
    allowed = " or ".join(r.value for r in roles)

    def checker(principal: Principal = Depends(get_principal)) -> Principal:
        if principal.role not in roles:
            raise AuthorizationError(f"Access denied. {allowed} role required.")
        return principal

    return checker
