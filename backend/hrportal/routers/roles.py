"""Tenant-scoped role routes: CRUD plus bulk replacement of a role's permissions.

Reads require `organization:read:company`; mutations require
`organization:manage:company`. Every mutation drops the tenant's cached
resolved sets and records an activity log entry. The transaction is
committed before the cache is dropped, otherwise a concurrent resolution
could cache the pre-commit rows again.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrportal.auth.deps import get_current_user, require_permission
from hrportal.database import get_db
from hrportal.models.user import User
from hrportal.permissions.context import PermissionContext
from hrportal.permissions.store import PermissionStore
from hrportal.schemas.permissions import (
    RoleCreate,
    RoleDetail,
    RoleOut,
    RolePermissionsOut,
    RolePermissionsReplace,
    RoleUpdate,
)
from hrportal.utils.activity import log_activity
from hrportal.utils.cache import invalidate_tenant_permissions

ORG_READ = "organization:read:company"
ORG_MANAGE = "organization:manage:company"

router = APIRouter()


async def _detail(store: PermissionStore, role) -> RoleDetail:
    codes = await store.list_role_permission_codes(role.id)
    return RoleDetail(
        **RoleOut.model_validate(role).model_dump(),
        permission_codes=codes,
    )


@router.get("/", response_model=list[RoleOut])
async def list_roles(
    include_inactive: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_READ)),
):
    roles = await PermissionStore(db).list_roles(user.tenant_id, include_inactive)
    return [RoleOut.model_validate(r) for r in roles]


@router.post("/", response_model=RoleDetail, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    store = PermissionStore(db)
    role = await store.create_role(user.tenant_id, **body.model_dump())
    await db.refresh(role)
    await log_activity(
        db, user,
        action="role_created", entity_type="role",
        entity_id=role.id, entity_code=role.code,
        summary=f"Created role {role.name}",
        details={"permission_codes": sorted(body.permission_codes)},
    )
    return await _detail(store, role)


@router.get("/{role_id}", response_model=RoleDetail)
async def get_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_READ)),
):
    store = PermissionStore(db)
    role = await store.get_role(role_id, user.tenant_id)
    return await _detail(store, role)


@router.patch("/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: str,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    updates = body.model_dump(exclude_unset=True)
    role = await PermissionStore(db).update_role(role_id, user.tenant_id, **updates)
    await db.refresh(role)
    await log_activity(
        db, user,
        action="role_updated", entity_type="role",
        entity_id=role.id, entity_code=role.code,
        summary=f"Updated role {role.name}",
        details={"changes": sorted(updates)},
    )
    await db.commit()
    if "is_active" in updates:
        await invalidate_tenant_permissions(user.tenant_id)
    return RoleOut.model_validate(role)


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    role = await PermissionStore(db).delete_role(role_id, user.tenant_id)
    await log_activity(
        db, user,
        action="role_deleted", entity_type="role",
        entity_id=role.id, entity_code=role.code,
        summary=f"Deleted role {role.name}",
    )
    await db.commit()
    await invalidate_tenant_permissions(user.tenant_id)


@router.put("/{role_id}/permissions", response_model=RolePermissionsOut)
async def replace_role_permissions(
    role_id: str,
    body: RolePermissionsReplace,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    """Replace the role's permission set wholesale.

    Unknown codes reject the whole request; nothing is changed.
    """
    store = PermissionStore(db)
    codes = await store.replace_role_permissions(
        role_id, user.tenant_id, body.permission_codes
    )
    await log_activity(
        db, user,
        action="role_permissions_replaced", entity_type="role",
        entity_id=role_id,
        summary=f"Replaced permissions of role ({len(codes)} codes)",
        details={"permission_codes": codes},
    )
    await db.commit()
    await invalidate_tenant_permissions(user.tenant_id)
    return RolePermissionsOut(role_id=role_id, permission_codes=codes)
