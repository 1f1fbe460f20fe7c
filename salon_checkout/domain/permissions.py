"""Role and permission checks for admin-panel modules.

Admins can do everything. Staff carry a permission map such as
``{"products": {"read": True, "write": False}}`` and are allowed only what it
grants explicitly. Regular users never pass.
"""
from typing import Optional
from pydantic import BaseModel, Field

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"
ROLE_USER = "user"

MODULES = frozenset({"services", "staff", "clients", "products", "bookings", "orders"})
ACTIONS = frozenset({"read", "write"})

class Identity(BaseModel):
    """Resolved caller, as trusted from the auth token."""
    id: int
    email: Optional[str] = None
    phone: Optional[str] = None
    role: str = ROLE_USER
    permissions: dict = Field(default_factory=dict)
    class Config:
        frozen = True

def can(identity: Optional[Identity], module: str, action: str) -> bool:
    if identity is None:
        return False
    if module not in MODULES or action not in ACTIONS:
        return False
    if identity.role == ROLE_ADMIN:
        return True
    if identity.role != ROLE_STAFF:
        return False
    grants = (identity.permissions or {}).get(module) or {}
    return grants.get(action) is True
