from __future__ import annotations

from enum import Enum
from typing import Optional

from stockflow.domain.errors import AuthorizationError
from stockflow.domain.models import Principal, Role


class Requirement(str, Enum):
    ANY_AUTHENTICATED = "any_authenticated"
    ADMIN_ONLY = "admin_only"


REQUIREMENT_ROLES: dict[Requirement, set[Role]] = {
    Requirement.ANY_AUTHENTICATED: {Role.ADMIN, Role.CASHIER},
    Requirement.ADMIN_ONLY: {Role.ADMIN},
}


PERMISSIONS: dict[str, set[Role]] = {
    "checkout": {Role.ADMIN, Role.CASHIER},
    "confirm_receipt": {Role.ADMIN},
    "process_return": {Role.ADMIN},
    "view_low_stock": {Role.ADMIN, Role.CASHIER},
    "view_sales_report": {Role.ADMIN, Role.CASHIER},
    "view_profit_report": {Role.ADMIN},
    "manage_products": {Role.ADMIN},
    "manage_suppliers": {Role.ADMIN},
}


def _role_of(principal: Optional[Principal]) -> Role | None:
    if principal is None:
        return None
    try:
        return Role(principal.role)
    except ValueError:
        return None


class AuthorizationGuard:
    """Stateless role checks; every call receives the acting principal."""

    def authorize(self, principal: Optional[Principal], requirement: Requirement) -> None:
        role = _role_of(principal)
        if role is None:
            raise AuthorizationError("Authentication required.")
        if role not in REQUIREMENT_ROLES[Requirement(requirement)]:
            raise AuthorizationError(f"Role '{role.value}' is not allowed to perform this action.")

    def can(self, principal: Optional[Principal], action: str) -> bool:
        allowed_roles = PERMISSIONS.get(action)
        role = _role_of(principal)
        if not allowed_roles or role is None:
            return False
        return role in allowed_roles

    def require_action(self, principal: Optional[Principal], action: str) -> None:
        if not self.can(principal, action):
            role = _role_of(principal)
            label = role.value if role else "anonymous"
            raise AuthorizationError(f"Role '{label}' is not allowed to perform '{action}'.")
