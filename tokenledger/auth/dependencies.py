"""FastAPI auth dependencies: get_current_user, get_actor, require_role, require_permission."""

import uuid

import sentry_sdk
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from tokenledger.auth.jwt import decode_access_token
from tokenledger.auth.rbac import check_permission, has_role_at_least
from tokenledger.models.enums import UserRole
from tokenledger.schemas.auth import Actor, CurrentUser

logger = structlog.get_logger()

bearer_scheme = HTTPBearer(auto_error=True)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> CurrentUser:
    """
    Verify the bearer JWT and build the caller's context from its claims.

    The token is the only identity source; users and tenants live in the
    identity service, not in this database.
    """
    try:
        payload = decode_access_token(credentials.credentials)
        current_user = CurrentUser(
            user_id=uuid.UUID(str(payload["sub"])),
            tenant_id=uuid.UUID(str(payload["tenant_id"])),
            role=UserRole(payload["role"]),
            email=payload.get("email") or "",
        )
    except (JWTError, ValueError, KeyError) as e:
        logger.warning("jwt_verification_failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    request.state.tenant_id = current_user.tenant_id
    request.state.user_id = current_user.user_id

    sentry_sdk.set_user({"id": str(current_user.user_id)})
    sentry_sdk.set_tag("tenant_id", str(current_user.tenant_id))
    sentry_sdk.set_tag("user_role", current_user.role.value)

    return current_user


def require_role(minimum: UserRole):
    """
    Dependency factory: the caller's role must rank at least ``minimum``.

    Usage:
        @router.post("/x", dependencies=[Depends(require_role(UserRole.TENANT_ADMIN))])
    """

    async def _check_role(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if not has_role_at_least(current_user.role, minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{current_user.role.value}' not authorized. Required: {minimum.value} or higher",
            )
        return current_user

    return _check_role


def require_permission(action: str, resource_type: str):
    """
    Dependency factory: checks a specific (action, resource_type) permission.

    Usage:
        @router.post("/orders/buy", dependencies=[Depends(require_permission("create", "order"))])
    """

    async def _check_perm(
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if not check_permission(current_user.role, action, resource_type):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} on {resource_type}",
            )
        return current_user

    return _check_perm


async def get_actor(
    request: Request,
    current_user: CurrentUser = Depends(get_current_user),
) -> Actor:
    """Caller identity plus client address and user agent for audit rows."""
    return Actor(
        user_id=current_user.user_id,
        role=current_user.role,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
