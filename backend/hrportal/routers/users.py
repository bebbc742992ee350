"""Per-user administration: role memberships and permission overrides.

All routes operate within the caller's tenant and require
`organization:manage:company` (writes) or `organization:read:company` (reads).
Writes commit before invalidating the user's cached permission set.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrportal.auth.deps import get_current_user, require_permission
from hrportal.database import get_db
from hrportal.models.override import UserPermissionOverride
from hrportal.models.user import User
from hrportal.permissions.context import PermissionContext
from hrportal.permissions.store import PermissionStore
from hrportal.schemas.permissions import (
    OverrideCreate,
    OverrideOut,
    RoleAssign,
    RoleOut,
)
from hrportal.utils.activity import log_activity
from hrportal.utils.cache import invalidate_user_permissions

ORG_READ = "organization:read:company"
ORG_MANAGE = "organization:manage:company"

router = APIRouter()


def _override_out(override: UserPermissionOverride) -> OverrideOut:
    return OverrideOut(
        id=override.id,
        user_id=override.user_id,
        tenant_id=override.tenant_id,
        permission_code=override.permission.code,
        effect=override.effect.value,
        expires_at=override.expires_at,
        reason=override.reason,
        created_by=override.created_by,
        created_at=override.created_at,
    )


# ── Role memberships ─────────────────────────────────────────

@router.get("/{user_id}/roles", response_model=list[RoleOut])
async def list_user_roles(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_READ)),
):
    roles = await PermissionStore(db).list_user_roles(user_id, user.tenant_id)
    return [RoleOut.model_validate(r) for r in roles]


@router.post("/{user_id}/roles", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def assign_role(
    user_id: str,
    body: RoleAssign,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    role = await PermissionStore(db).assign_role(user_id, user.tenant_id, body.role_id)
    await log_activity(
        db, user,
        action="role_assigned", entity_type="user",
        entity_id=user_id, entity_code=role.code,
        summary=f"Assigned role {role.name}",
    )
    await db.commit()
    await invalidate_user_permissions(user.tenant_id, user_id)
    return RoleOut.model_validate(role)


@router.delete("/{user_id}/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_role(
    user_id: str,
    role_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    await PermissionStore(db).unassign_role(user_id, user.tenant_id, role_id)
    await log_activity(
        db, user,
        action="role_unassigned", entity_type="user",
        entity_id=user_id,
        summary=f"Removed role {role_id}",
        details={"role_id": role_id},
    )
    await db.commit()
    await invalidate_user_permissions(user.tenant_id, user_id)


# ── Overrides ────────────────────────────────────────────────

@router.get("/{user_id}/overrides", response_model=list[OverrideOut])
async def list_overrides(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_READ)),
):
    overrides = await PermissionStore(db).list_overrides(user_id, user.tenant_id)
    return [_override_out(o) for o in overrides]


@router.post("/{user_id}/overrides", response_model=OverrideOut, status_code=status.HTTP_201_CREATED)
async def set_override(
    user_id: str,
    body: OverrideCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    """Grant or deny one permission for a user, replacing any existing override."""
    override = await PermissionStore(db).upsert_override(
        user_id,
        user.tenant_id,
        permission_code=body.permission_code,
        effect=body.effect,
        expires_at=body.expires_at,
        reason=body.reason,
        created_by=user.id,
    )
    await log_activity(
        db, user,
        action="override_set", entity_type="override",
        entity_id=override.id, entity_code=body.permission_code,
        summary=f"{body.effect.title()} {body.permission_code} for user {user_id}",
        details={"expires_at": body.expires_at.isoformat() if body.expires_at else None},
    )
    await db.commit()
    await invalidate_user_permissions(user.tenant_id, user_id)
    return _override_out(override)


@router.delete(
    "/{user_id}/overrides/{override_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_override(
    user_id: str,
    override_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(ORG_MANAGE)),
):
    override = await PermissionStore(db).delete_override(
        user_id, user.tenant_id, override_id
    )
    await log_activity(
        db, user,
        action="override_deleted", entity_type="override",
        entity_id=override.id,
        summary=f"Deleted override for user {user_id}",
    )
    await db.commit()
    await invalidate_user_permissions(user.tenant_id, user_id)
