"""Tests for the default catalog and idempotent seeding."""

import pytest
from sqlalchemy import func, select

from hrportal.models.permission import Permission
from hrportal.models.role import Role, RolePermission
from hrportal.permissions.catalog import (
    DEFAULT_PERMISSIONS,
    MENU,
    MENU_PERMISSIONS,
    PERMISSIONS_BY_CODE,
    ROLE_PERMISSION_MAP,
    SYSTEM_ROLE_CODES,
    menu_key_for,
)
from hrportal.permissions.seed import seed_tenant


@pytest.mark.unit
class TestDefaultCatalog:
    def test_codes_are_unique(self):
        codes = [p.code for p in DEFAULT_PERMISSIONS]
        assert len(codes) == len(set(codes))

    def test_menu_permissions_carry_menu_keys(self):
        assert len(MENU_PERMISSIONS) == 20
        for perm in MENU_PERMISSIONS:
            assert perm.category == MENU
            assert perm.menu_key
            assert perm.code.endswith(":read:own")

    def test_role_map_covers_system_roles(self):
        assert set(ROLE_PERMISSION_MAP) == SYSTEM_ROLE_CODES

    def test_role_map_only_references_catalog_codes(self):
        for role, codes in ROLE_PERMISSION_MAP.items():
            unknown = [c for c in codes if c not in PERMISSIONS_BY_CODE]
            assert not unknown, f"{role} references {unknown}"

    def test_menu_key_lookup(self):
        assert menu_key_for("scheduled_changes:read:own") == "scheduledChanges"
        assert menu_key_for("payroll:read:company") is None


@pytest.mark.integration
@pytest.mark.asyncio
class TestSeeding:
    async def test_seed_tenant_creates_system_roles(self, db_session):
        roles = await seed_tenant(db_session, "acme")

        assert set(roles) == SYSTEM_ROLE_CODES
        assert all(r.is_system for r in roles.values())
        assert all(r.tenant_id == "acme" for r in roles.values())

    async def test_seed_is_idempotent(self, db_session):
        """Re-seeding adds no duplicate catalog rows, roles or assignments."""
        await seed_tenant(db_session, "acme")
        counts = [
            await db_session.scalar(select(func.count()).select_from(Permission)),
            await db_session.scalar(select(func.count()).select_from(Role)),
            await db_session.scalar(select(func.count()).select_from(RolePermission)),
        ]

        await seed_tenant(db_session, "acme")

        assert counts == [
            await db_session.scalar(select(func.count()).select_from(Permission)),
            await db_session.scalar(select(func.count()).select_from(Role)),
            await db_session.scalar(select(func.count()).select_from(RolePermission)),
        ]
        assert counts[0] == len(DEFAULT_PERMISSIONS)

    async def test_seed_keeps_tenant_edits(self, db_session):
        """Seeding only adds assignments; removed defaults come back, extras stay."""
        roles = await seed_tenant(db_session, "acme")
        employee = roles["employee"]
        payroll_team = await db_session.scalar(
            select(Permission).where(Permission.code == "payroll:read:team")
        )
        db_session.add(RolePermission(role_id=employee.id, permission_id=payroll_team.id))
        await db_session.flush()

        await seed_tenant(db_session, "acme")

        assigned = await db_session.scalars(
            select(Permission.code)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == employee.id)
        )
        codes = set(assigned.all())
        assert "payroll:read:team" in codes
        assert set(ROLE_PERMISSION_MAP["employee"]) <= codes
