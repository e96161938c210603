"""Auth schemas: CurrentUser and the permission matrix response."""

import uuid
from dataclasses import dataclass

from pydantic import BaseModel

from tokenledger.models.enums import UserRole


class CurrentUser(BaseModel):
    """Lightweight user context extracted from the bearer token claims."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID
    role: UserRole
    email: str


class PermissionMatrixResponse(BaseModel):
    role: UserRole
    permissions: dict[str, list[str]]  # resource_type -> actions


@dataclass(frozen=True)
class Actor:
    """Who performed a controlled action, and from where (for audit rows)."""

    user_id: uuid.UUID
    role: UserRole
    ip_address: str | None = None
    user_agent: str | None = None
