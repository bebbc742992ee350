"""Management CLI for permission data.

Usage:
    python -m hrportal.cli create-tables                 # Create all tables
    python -m hrportal.cli seed-permissions [tenant ...] # Seed catalog (+ system roles per tenant)
    python -m hrportal.cli list-roles <tenant_id>        # Show a tenant's roles
"""

import asyncio
import sys

from sqlalchemy import select

from hrportal.config import settings
from hrportal.database import async_session, create_all, engine
from hrportal.models.tenant import Tenant
from hrportal.permissions.seed import seed_permission_catalog, seed_tenant
from hrportal.permissions.store import PermissionStore


async def _tenant_ids(requested: list[str]) -> list[str]:
    if requested:
        return requested
    async with async_session() as session:
        result = await session.execute(select(Tenant.id).where(Tenant.is_active == True))  # noqa: E712
        return list(result.scalars().all()) or [settings.default_tenant_id]


async def seed_permissions(tenant_ids: list[str]):
    """Upsert the default catalog, then system roles for each tenant."""
    tenants = await _tenant_ids(tenant_ids)
    async with async_session() as session:
        perms = await seed_permission_catalog(session)
        print(f"  Catalog: {len(perms)} permissions")
        for tenant_id in tenants:
            roles = await seed_tenant(session, tenant_id)
            print(f"  {tenant_id}: {len(roles)} system roles")
        await session.commit()


async def list_roles(tenant_id: str):
    async with async_session() as session:
        store = PermissionStore(session)
        roles = await store.list_roles(tenant_id)
        for role in roles:
            codes = await store.list_role_permission_codes(role.id)
            flags = "system" if role.is_system else "custom"
            if not role.is_active:
                flags += ", inactive"
            print(f"  {role.code:<12} {role.name:<20} [{flags}] {len(codes)} permissions")
    print(f"\n{len(roles)} role(s)")


async def _run(coro):
    try:
        await coro
    finally:
        await engine.dispose()


if __name__ == "__main__":
    cmd = sys.argv[1] if len(sys.argv) > 1 else ""
    args = sys.argv[2:]
    if cmd == "create-tables":
        asyncio.run(_run(create_all()))
    elif cmd == "seed-permissions":
        asyncio.run(_run(seed_permissions(args)))
    elif cmd == "list-roles" and args:
        asyncio.run(_run(list_roles(args[0])))
    else:
        print("Usage: python -m hrportal.cli [create-tables|seed-permissions [tenant ...]|list-roles <tenant_id>]")
