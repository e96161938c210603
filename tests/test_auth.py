"""Tests for bearer-token auth and the RBAC permission matrix."""

import uuid
from datetime import timedelta

import pytest
from jose import JWTError

from tests.conftest import TENANT_ID
from tokenledger.auth.dependencies import get_current_user
from tokenledger.auth.jwt import create_access_token, decode_access_token
from tokenledger.auth.rbac import (
    PERMISSION_MATRIX,
    Action,
    Resource,
    check_permission,
    get_permissions_for_role,
    has_role_at_least,
)
from tokenledger.main import app
from tokenledger.models.enums import UserRole

USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000077")


def _claims(**overrides) -> dict:
    claims = {
        "sub": str(USER_ID),
        "tenant_id": str(TENANT_ID),
        "role": "operator",
        "email": "op@example.com",
    }
    claims.update(overrides)
    return claims


# ── JWT ─────────────────────────────────────────────────────────────────────


class TestJwt:
    def test_round_trip(self):
        payload = decode_access_token(create_access_token(_claims()))
        assert payload["sub"] == str(USER_ID)
        assert payload["role"] == "operator"

    def test_missing_tenant_claim(self):
        claims = _claims()
        del claims["tenant_id"]
        with pytest.raises(JWTError, match="tenant_id"):
            decode_access_token(create_access_token(claims))

    def test_expired(self):
        token = create_access_token(_claims(), expires_in=timedelta(seconds=-5))
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_wrong_signature(self):
        from jose import jwt

        token = jwt.encode(_claims(), "another-secret", algorithm="HS256")
        with pytest.raises(JWTError):
            decode_access_token(token)


@pytest.mark.anyio
class TestBearerDependency:
    @pytest.fixture(autouse=True)
    def _real_auth(self, client):
        app.dependency_overrides.pop(get_current_user, None)

    async def test_valid_token(self, client):
        token = create_access_token(_claims())
        resp = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["user_id"] == str(USER_ID)
        assert data["tenant_id"] == str(TENANT_ID)
        assert data["role"] == "operator"

    async def test_invalid_token(self, client):
        resp = await client.get("/v1/auth/me", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "http_401"

    async def test_unknown_role(self, client):
        token = create_access_token(_claims(role="superuser"))
        resp = await client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    async def test_missing_header(self, client):
        resp = await client.get("/v1/auth/me")
        assert resp.status_code in (401, 403)


# ── RBAC ────────────────────────────────────────────────────────────────────


class TestPermissionMatrix:
    def test_all_roles_present(self):
        assert set(PERMISSION_MATRIX) == set(UserRole)

    def test_roles_are_cumulative(self):
        order = [UserRole.VIEWER, UserRole.OPERATOR, UserRole.TENANT_ADMIN, UserRole.PLATFORM_ADMIN]
        for lower, higher in zip(order, order[1:]):
            assert PERMISSION_MATRIX[lower] < PERMISSION_MATRIX[higher]

    def test_viewer_is_read_only(self):
        assert {action for action, _ in PERMISSION_MATRIX[UserRole.VIEWER]} == {Action.VIEW}

    def test_operator_settles_but_does_not_approve(self):
        assert check_permission(UserRole.OPERATOR, Action.PROCESS, Resource.ORDER)
        assert check_permission(UserRole.OPERATOR, Action.REQUEST, Resource.LEDGER_OPERATION)
        assert not check_permission(UserRole.OPERATOR, Action.APPROVE, Resource.APPROVAL)
        assert not check_permission(UserRole.OPERATOR, Action.REVOKE, Resource.CERTIFICATE)
        assert not check_permission(UserRole.OPERATOR, Action.SIGN, Resource.CERTIFICATE)
        assert check_permission(UserRole.TENANT_ADMIN, Action.SIGN, Resource.CERTIFICATE)

    def test_only_platform_admin_approves_platform(self):
        assert check_permission(UserRole.PLATFORM_ADMIN, Action.APPROVE_PLATFORM, Resource.APPROVAL)
        assert not check_permission(UserRole.TENANT_ADMIN, Action.APPROVE_PLATFORM, Resource.APPROVAL)

    def test_hierarchy(self):
        assert has_role_at_least(UserRole.PLATFORM_ADMIN, UserRole.TENANT_ADMIN)
        assert not has_role_at_least(UserRole.OPERATOR, UserRole.TENANT_ADMIN)

    def test_grouped_permissions(self):
        perms = get_permissions_for_role(UserRole.VIEWER)
        assert perms[Resource.ORDER] == [Action.VIEW]
        assert Resource.LEDGER_OPERATION not in perms
