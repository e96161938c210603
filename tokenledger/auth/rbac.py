"""RBAC permission matrix and checker.

Roles inherit cumulatively: viewer < operator < tenant_admin < platform_admin.
Permissions are (action, resource_type) tuples in a set for O(1) lookup.
"""

import uuid

from tokenledger.models.enums import UserRole


# ── Actions ───────────────────────────────────────────────────────────────


class Action:
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    PROCESS = "process"
    REQUEST = "request"
    APPROVE = "approve"
    APPROVE_PLATFORM = "approve_platform"
    EXECUTE = "execute"
    REVOKE = "revoke"
    SIGN = "sign"
    ANCHOR = "anchor"


# ── Resource Types ────────────────────────────────────────────────────────


class Resource:
    TOKENIZED_ASSET = "tokenized_asset"
    ORDER = "order"
    CERTIFICATE = "certificate"
    LEDGER_OPERATION = "ledger_operation"
    APPROVAL = "approval"
    BLOCKCHAIN = "blockchain"


# ── Role hierarchy (higher = more privilege) ──────────────────────────────

ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.VIEWER: 0,
    UserRole.OPERATOR: 1,
    UserRole.TENANT_ADMIN: 2,
    UserRole.PLATFORM_ADMIN: 3,
}

# ── Per-role permission sets ──────────────────────────────────────────────

_VIEWER_PERMS: set[tuple[str, str]] = {
    (Action.VIEW, Resource.TOKENIZED_ASSET),
    (Action.VIEW, Resource.ORDER),
    (Action.VIEW, Resource.CERTIFICATE),
    (Action.VIEW, Resource.APPROVAL),
    (Action.VIEW, Resource.BLOCKCHAIN),
}

_OPERATOR_EXTRA: set[tuple[str, str]] = {
    (Action.CREATE, Resource.ORDER),
    (Action.PROCESS, Resource.ORDER),
    (Action.REQUEST, Resource.LEDGER_OPERATION),
}

_TENANT_ADMIN_EXTRA: set[tuple[str, str]] = {
    (Action.CREATE, Resource.TOKENIZED_ASSET),
    (Action.EDIT, Resource.TOKENIZED_ASSET),
    (Action.REVOKE, Resource.CERTIFICATE),
    (Action.SIGN, Resource.CERTIFICATE),
    (Action.ANCHOR, Resource.CERTIFICATE),
    (Action.APPROVE, Resource.APPROVAL),
    (Action.EXECUTE, Resource.APPROVAL),
}

_PLATFORM_ADMIN_EXTRA: set[tuple[str, str]] = {
    (Action.APPROVE_PLATFORM, Resource.APPROVAL),
}

# ── Cumulative permission matrix ──────────────────────────────────────────

PERMISSION_MATRIX: dict[UserRole, set[tuple[str, str]]] = {
    UserRole.VIEWER: _VIEWER_PERMS,
    UserRole.OPERATOR: _VIEWER_PERMS | _OPERATOR_EXTRA,
    UserRole.TENANT_ADMIN: _VIEWER_PERMS | _OPERATOR_EXTRA | _TENANT_ADMIN_EXTRA,
    UserRole.PLATFORM_ADMIN: (
        _VIEWER_PERMS | _OPERATOR_EXTRA | _TENANT_ADMIN_EXTRA | _PLATFORM_ADMIN_EXTRA
    ),
}


# ── Public API ────────────────────────────────────────────────────────────


def check_permission(
    role: UserRole,
    action: str,
    resource_type: str,
    resource_id: uuid.UUID | None = None,  # reserved for future object-level checks
) -> bool:
    """Check if a role has permission for an action on a resource type."""
    perms = PERMISSION_MATRIX.get(role)
    if perms is None:
        return False
    return (action, resource_type) in perms


def has_role_at_least(role: UserRole, minimum: UserRole) -> bool:
    return ROLE_HIERARCHY.get(role, -1) >= ROLE_HIERARCHY[minimum]


def get_permissions_for_role(role: UserRole) -> dict[str, list[str]]:
    """Return permissions grouped by resource type (for API responses)."""
    perms = PERMISSION_MATRIX.get(role, set())
    result: dict[str, list[str]] = {}
    for action, resource in sorted(perms):
        result.setdefault(resource, []).append(action)
    return result
