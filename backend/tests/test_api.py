"""HTTP tests for the permission, role and user administration routes."""

import json
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.requests import Request

from fastapi import HTTPException

from hrportal.auth.deps import require_menu, require_permission, require_resource
from hrportal.auth.jwt import create_access_token
from hrportal.permissions.context import PermissionContext
from hrportal.permissions.source import DemoSource
from hrportal.middleware.exceptions import (
    integrity_exception_handler,
    store_exception_handler,
)
from hrportal.models.activity_log import ActivityLog
from hrportal.routers import roles as roles_router
from hrportal.routers import users as users_router
from hrportal.utils.cache import permissions_key

from conftest import TENANT_A, TENANT_B


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


@pytest.mark.api
@pytest.mark.asyncio
class TestAuthentication:
    async def test_anonymous_is_rejected(self, client):
        response = await client.get("/api/permissions/me")
        assert response.status_code == 401

    async def test_invalid_token_is_rejected(self, client):
        response = await client.get(
            "/api/permissions/me", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "HTTP_401"

    async def test_expired_token_is_rejected(self, client, employee_user):
        token = create_access_token(
            employee_user.id, TENANT_A, expires_delta=timedelta(minutes=-1)
        )
        response = await client.get(
            "/api/permissions/me", headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    async def test_demo_header_ignored_when_disabled(self, client):
        response = await client.get("/api/permissions/me", headers={"X-Demo-Role": "admin"})
        assert response.status_code == 401


@pytest.mark.api
@pytest.mark.asyncio
class TestMyPermissions:
    async def test_me_returns_resolved_set(self, client, employee_headers):
        response = await client.get("/api/permissions/me", headers=employee_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == TENANT_A
        assert "leave:create:own" in data["permissions"]
        assert "leave" in data["menu_keys"]
        assert "payroll:read:company" not in data["permissions"]
        assert data["demo"] is False

    async def test_user_with_no_roles_gets_empty_set(self, client, make_user, headers_for, seeded):
        user = await make_user(TENANT_A)
        response = await client.get("/api/permissions/me", headers=headers_for(user))

        assert response.status_code == 200
        assert response.json()["permissions"] == []

    async def test_check_exact_code(self, client, employee_headers):
        response = await client.get(
            "/api/permissions/me/check",
            params={"code": "leave:create:own"},
            headers=employee_headers,
        )
        assert response.json()["allowed"] is True

    async def test_check_scope_containment(self, client, make_user, headers_for, seeded):
        hr = await make_user(TENANT_A, seeded[TENANT_A]["hr"])
        response = await client.get(
            "/api/permissions/me/check",
            params={"resource": "payroll", "action": "read", "scope": "team"},
            headers=headers_for(hr),
        )
        assert response.json()["allowed"] is True

    async def test_check_requires_arguments(self, client, employee_headers):
        response = await client.get("/api/permissions/me/check", headers=employee_headers)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_ARGUMENT"

    async def test_demo_session(self, client, demo_enabled):
        response = await client.get("/api/permissions/me", headers={"X-Demo-Role": "manager"})

        assert response.status_code == 200
        data = response.json()
        assert data["demo"] is True
        assert "leave:approve:team" in data["permissions"]

    async def test_unknown_demo_role_has_nothing(self, client, demo_enabled):
        response = await client.get("/api/permissions/me", headers={"X-Demo-Role": "pirate"})
        assert response.json()["permissions"] == []


@pytest.mark.api
@pytest.mark.asyncio
class TestRoleRoutes:
    async def test_employee_cannot_manage_roles(self, client, employee_headers):
        response = await client.post(
            "/api/roles/", json={"code": "clerk", "name": "Clerk"}, headers=employee_headers
        )
        assert response.status_code == 403
        assert "organization:manage:company" in response.json()["error"]["message"]

    async def test_demo_session_cannot_manage_roles(self, client, demo_enabled):
        response = await client.post(
            "/api/roles/", json={"code": "clerk", "name": "Clerk"}, headers={"X-Demo-Role": "admin"}
        )
        assert response.status_code == 401

    async def test_role_lifecycle(self, client, admin_headers, db_session):
        created = await client.post(
            "/api/roles/",
            json={
                "code": "clerk",
                "name": "Payroll clerk",
                "permission_codes": ["payroll:read:company"],
            },
            headers=admin_headers,
        )
        assert created.status_code == 201
        role = created.json()
        assert role["is_system"] is False
        assert role["permission_codes"] == ["payroll:read:company"]

        replaced = await client.put(
            f"/api/roles/{role['id']}/permissions",
            json={"permission_codes": ["payroll:read:team", "payroll:update:company"]},
            headers=admin_headers,
        )
        assert replaced.status_code == 200
        assert replaced.json()["permission_codes"] == ["payroll:read:team", "payroll:update:company"]

        updated = await client.patch(
            f"/api/roles/{role['id']}", json={"name": "Senior clerk"}, headers=admin_headers
        )
        assert updated.json()["name"] == "Senior clerk"

        deleted = await client.delete(f"/api/roles/{role['id']}", headers=admin_headers)
        assert deleted.status_code == 204

        missing = await client.get(f"/api/roles/{role['id']}", headers=admin_headers)
        assert missing.status_code == 404

        actions = await db_session.scalars(
            select(ActivityLog.action).where(ActivityLog.entity_id == role["id"])
        )
        assert set(actions.all()) == {
            "role_created", "role_permissions_replaced", "role_updated", "role_deleted",
        }

    async def test_replace_with_unknown_code_is_rejected(self, client, admin_headers, seeded):
        role_id = seeded[TENANT_A]["manager"].id
        before = (await client.get(f"/api/roles/{role_id}", headers=admin_headers)).json()

        response = await client.put(
            f"/api/roles/{role_id}/permissions",
            json={"permission_codes": ["leave:approve:team", "nope:x:own"]},
            headers=admin_headers,
        )

        assert response.status_code == 400
        after = (await client.get(f"/api/roles/{role_id}", headers=admin_headers)).json()
        assert after["permission_codes"] == before["permission_codes"]

    async def test_system_role_delete_forbidden(self, client, admin_headers, seeded):
        response = await client.delete(
            f"/api/roles/{seeded[TENANT_A]['employee'].id}", headers=admin_headers
        )
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_list_roles_only_shows_own_tenant(self, client, admin_headers, seeded):
        response = await client.get("/api/roles/", headers=admin_headers)
        ids = {r["id"] for r in response.json()}

        assert seeded[TENANT_A]["hr"].id in ids
        assert seeded[TENANT_B]["hr"].id not in ids


@pytest.mark.api
@pytest.mark.asyncio
class TestUserRoutes:
    async def test_assign_role_changes_permissions(
        self, client, admin_headers, make_user, headers_for, seeded
    ):
        user = await make_user(TENANT_A)
        response = await client.post(
            f"/api/users/{user.id}/roles",
            json={"role_id": seeded[TENANT_A]["hr"].id},
            headers=admin_headers,
        )
        assert response.status_code == 201

        me = await client.get("/api/permissions/me", headers=headers_for(user))
        assert "payroll:read:company" in me.json()["permissions"]

        roles = await client.get(f"/api/users/{user.id}/roles", headers=admin_headers)
        assert [r["code"] for r in roles.json()] == ["hr"]

    async def test_deny_override_wins_over_role(
        self, client, admin_headers, make_user, headers_for, seeded
    ):
        user = await make_user(TENANT_A, seeded[TENANT_A]["manager"])
        response = await client.post(
            f"/api/users/{user.id}/overrides",
            json={"permission_code": "leave:approve:team", "effect": "deny", "reason": "on notice"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["effect"] == "deny"

        check = await client.get(
            "/api/permissions/me/check",
            params={"resource": "leave", "action": "approve", "scope": "own"},
            headers=headers_for(user),
        )
        assert check.json()["allowed"] is False

    async def test_override_expiry_with_utc_offset(
        self, client, admin_headers, make_user, headers_for, seeded
    ):
        user = await make_user(TENANT_A, seeded[TENANT_A]["manager"])
        response = await client.post(
            f"/api/users/{user.id}/overrides",
            json={
                "permission_code": "leave:approve:team",
                "effect": "deny",
                "expires_at": "2020-01-01T09:00:00+09:00",
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["expires_at"] == "2020-01-01T00:00:00"

        # Already expired, so the manager keeps the permission.
        me = await client.get("/api/permissions/me", headers=headers_for(user))
        assert "leave:approve:team" in me.json()["permissions"]

    async def test_override_with_invalid_effect(self, client, admin_headers, employee_user):
        response = await client.post(
            f"/api/users/{employee_user.id}/overrides",
            json={"permission_code": "audit:read:company", "effect": "maybe"},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_delete_foreign_override_forbidden(
        self, client, admin_headers, make_user, employee_user
    ):
        created = await client.post(
            f"/api/users/{employee_user.id}/overrides",
            json={"permission_code": "audit:read:company", "effect": "grant"},
            headers=admin_headers,
        )
        other = await make_user(TENANT_A)

        response = await client.delete(
            f"/api/users/{other.id}/overrides/{created.json()['id']}", headers=admin_headers
        )
        assert response.status_code == 403

        listed = await client.get(f"/api/users/{employee_user.id}/overrides", headers=admin_headers)
        assert len(listed.json()) == 1


@pytest.mark.api
@pytest.mark.asyncio
class TestCatalogRoutes:
    async def test_list_catalog(self, client, admin_headers):
        response = await client.get(
            "/api/permissions/catalog", params={"category": "menu"}, headers=admin_headers
        )
        assert response.status_code == 200
        assert len(response.json()) == 20

    async def test_employee_cannot_read_catalog(self, client, employee_headers):
        response = await client.get("/api/permissions/catalog", headers=employee_headers)
        assert response.status_code == 403

    async def test_create_duplicate_permission_conflicts(self, client, admin_headers):
        body = {"resource": "expenses", "action": "approve", "scope": "team", "name": "Approve"}
        first = await client.post("/api/permissions/catalog", json=body, headers=admin_headers)
        second = await client.post("/api/permissions/catalog", json=body, headers=admin_headers)

        assert first.status_code == 201
        assert first.json()["code"] == "expenses:approve:team"
        assert second.status_code == 409

    async def test_delete_referenced_permission_conflicts(self, client, admin_headers, db_session):
        listed = await client.get("/api/permissions/catalog", headers=admin_headers)
        audit = next(p for p in listed.json() if p["code"] == "audit:read:company")

        response = await client.delete(
            f"/api/permissions/catalog/{audit['id']}", headers=admin_headers
        )
        assert response.status_code == 409


@pytest.mark.api
@pytest.mark.asyncio
class TestDemoRoutes:
    async def test_demo_roles_listed_when_enabled(self, client, demo_enabled):
        response = await client.get("/api/permissions/demo/roles")
        assert response.status_code == 200
        assert "manager" in response.json()

    async def test_demo_roles_hidden_when_disabled(self, client):
        response = await client.get("/api/permissions/demo/roles")
        assert response.status_code == 404


@pytest.mark.unit
@pytest.mark.asyncio
class TestPermissionDependencies:
    async def _demo_context(self, role: str) -> PermissionContext:
        async def no_resolver(user_id, tenant_id):
            raise AssertionError("demo sessions never resolve")

        ctx = PermissionContext(no_resolver)
        await ctx.load(DemoSource(role))
        return ctx

    async def test_require_resource_accepts_broader_scope(self):
        ctx = await self._demo_context("hr")
        check = require_resource("payroll", "read", "team")
        assert await check(context=ctx) is ctx

    async def test_require_resource_rejects_narrower_grant(self):
        ctx = await self._demo_context("employee")
        with pytest.raises(HTTPException) as exc_info:
            await require_resource("payroll", "read", "team")(context=ctx)
        assert exc_info.value.status_code == 403

    async def test_require_menu(self):
        ctx = await self._demo_context("applicant")
        assert await require_menu("onboarding")(context=ctx) is ctx
        with pytest.raises(HTTPException):
            await require_menu("payroll")(context=ctx)

    async def test_require_permission_lists_missing_codes(self):
        ctx = await self._demo_context("employee")
        with pytest.raises(HTTPException) as exc_info:
            await require_permission("leave:create:own", "audit:read:company")(context=ctx)
        assert exc_info.value.detail == "Missing permissions: audit:read:company"


@pytest.mark.api
@pytest.mark.asyncio
class TestCacheInvalidationAfterCommit:
    """Cached sets are dropped only once the change is committed."""

    def _spy(self, monkeypatch, module, name, db_session, calls):
        original = getattr(module, name)

        async def spy(*args):
            calls.append(db_session.in_transaction())
            await original(*args)

        monkeypatch.setattr(module, name, spy)

    async def test_override_invalidates_after_commit(
        self, client, admin_headers, make_user, headers_for, seeded, db_session,
        fake_redis, monkeypatch,
    ):
        user = await make_user(TENANT_A, seeded[TENANT_A]["manager"])
        await client.get("/api/permissions/me", headers=headers_for(user))
        assert permissions_key(TENANT_A, user.id) in fake_redis.store

        calls = []
        self._spy(monkeypatch, users_router, "invalidate_user_permissions", db_session, calls)
        response = await client.post(
            f"/api/users/{user.id}/overrides",
            json={"permission_code": "leave:approve:team", "effect": "deny"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert calls == [False]
        assert permissions_key(TENANT_A, user.id) not in fake_redis.store

        me = await client.get("/api/permissions/me", headers=headers_for(user))
        assert "leave:approve:team" not in me.json()["permissions"]

    async def test_role_replace_invalidates_after_commit(
        self, client, admin_headers, make_user, headers_for, seeded, db_session,
        fake_redis, monkeypatch,
    ):
        role = seeded[TENANT_A]["manager"]
        user = await make_user(TENANT_A, role)
        await client.get("/api/permissions/me", headers=headers_for(user))

        calls = []
        self._spy(monkeypatch, roles_router, "invalidate_tenant_permissions", db_session, calls)
        response = await client.put(
            f"/api/roles/{role.id}/permissions",
            json={"permission_codes": ["leave:read:team"]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert calls == [False]
        assert permissions_key(TENANT_A, user.id) not in fake_redis.store


def _request(path: str = "/api/roles/") -> Request:
    return Request({"type": "http", "method": "POST", "path": path, "headers": []})


@pytest.mark.unit
@pytest.mark.asyncio
class TestErrorEnvelope:
    async def test_commit_time_integrity_error_is_a_conflict(self):
        exc = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: roles.code"))
        response = await integrity_exception_handler(_request(), exc)

        assert response.status_code == 409
        assert json.loads(response.body)["error"]["code"] == "CONFLICT"

    async def test_driver_failure_is_store_unavailable(self):
        exc = OperationalError("SELECT 1", {}, Exception("connection refused"))
        response = await store_exception_handler(_request(), exc)

        body = json.loads(response.body)
        assert response.status_code == 503
        assert body["error"]["code"] == "STORE_UNAVAILABLE"
        assert "connection refused" not in body["error"]["message"]
