"""Idempotent seeding of the permission catalog and system roles.

    await seed_permission_catalog(session)      # global catalog rows
    await seed_tenant(session, tenant_id)       # catalog + system roles + assignments

Existing rows are updated in place (display fields only), so re-running
after a catalog change is safe. Role assignments are only ever added; a
tenant's edits to system-role permissions are kept.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrportal.models.permission import Permission
from hrportal.models.role import Role, RolePermission
from hrportal.models.tenant import Tenant
from hrportal.permissions.catalog import DEFAULT_PERMISSIONS, ROLE_PERMISSION_MAP, SYSTEM_ROLES

logger = logging.getLogger(__name__)


async def seed_permission_catalog(session: AsyncSession) -> dict[str, Permission]:
    """Upsert every default permission. Returns {code: Permission}."""
    result = await session.execute(select(Permission))
    existing = {p.code: p for p in result.scalars().all()}

    created = 0
    for perm_def in DEFAULT_PERMISSIONS:
        perm = existing.get(perm_def.code)
        if perm is None:
            perm = Permission(
                resource=perm_def.resource,
                action=perm_def.action,
                scope=perm_def.scope.value,
                code=perm_def.code,
                name=perm_def.name,
                description=perm_def.description,
                category=perm_def.category,
                menu_key=perm_def.menu_key,
            )
            session.add(perm)
            existing[perm_def.code] = perm
            created += 1
        else:
            perm.name = perm_def.name
            perm.description = perm_def.description
            perm.category = perm_def.category
            perm.menu_key = perm_def.menu_key

    await session.flush()
    logger.info(f"Permission catalog: {len(DEFAULT_PERMISSIONS)} defaults ({created} new)")
    return existing


async def seed_tenant(session: AsyncSession, tenant_id: str) -> dict[str, Role]:
    """Seed catalog, system roles, and default assignments for one tenant."""
    if await session.get(Tenant, tenant_id) is None:
        session.add(Tenant(id=tenant_id, name=tenant_id))
        await session.flush()

    catalog = await seed_permission_catalog(session)

    result = await session.execute(select(Role).where(Role.tenant_id == tenant_id))
    roles = {r.code: r for r in result.scalars().all()}

    for role_def in SYSTEM_ROLES:
        role = roles.get(role_def.code)
        if role is None:
            role = Role(
                tenant_id=tenant_id,
                code=role_def.code,
                name=role_def.name,
                is_system=True,
                is_active=True,
                sort_order=role_def.sort_order,
                color=role_def.color,
            )
            session.add(role)
            roles[role_def.code] = role
        else:
            role.name = role_def.name
            role.sort_order = role_def.sort_order
            role.color = role_def.color
            role.is_system = True
    await session.flush()

    mappings = 0
    for role_def in SYSTEM_ROLES:
        role = roles[role_def.code]
        assigned = await session.execute(
            select(RolePermission.permission_id).where(RolePermission.role_id == role.id)
        )
        assigned_ids = set(assigned.scalars().all())

        for code in ROLE_PERMISSION_MAP.get(role_def.code, []):
            perm = catalog.get(code)
            if perm is None:
                logger.warning(f"Permission {code!r} is not in the catalog; skipped")
                continue
            if perm.id in assigned_ids:
                continue
            session.add(RolePermission(role_id=role.id, permission_id=perm.id))
            assigned_ids.add(perm.id)
            mappings += 1

    await session.flush()
    logger.info(
        f"Seeded tenant {tenant_id}: {len(SYSTEM_ROLES)} system roles, {mappings} new assignments"
    )
    return roles
