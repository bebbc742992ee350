"""Permission routes — the caller's resolved set, checks, and the global catalog.

Reads of the caller's own permissions only need a session (real or demo).
Catalog mutations require `settings:manage:company`.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hrportal.auth.deps import (
    get_current_user,
    get_permission_context,
    require_any_permission,
    require_permission,
)
from hrportal.config import settings
from hrportal.database import get_db
from hrportal.middleware.exceptions import InvalidArgumentError, NotFoundError
from hrportal.models.user import User
from hrportal.permissions.context import PermissionContext
from hrportal.permissions.demo import demo_roles
from hrportal.permissions.store import PermissionStore
from hrportal.schemas.permissions import (
    PermissionCheckOut,
    PermissionCreate,
    PermissionOut,
    PermissionUpdate,
    ResolvedPermissionsOut,
)
from hrportal.utils.activity import log_activity
from hrportal.utils.cache import invalidate_all_permissions

CATALOG_READ = ("organization:read:company", "settings:manage:company")
CATALOG_MANAGE = "settings:manage:company"

router = APIRouter()


# ── Caller's permissions ─────────────────────────────────────

@router.get("/me", response_model=ResolvedPermissionsOut)
async def my_permissions(
    context: PermissionContext = Depends(get_permission_context),
):
    """Effective permissions and visible menus of the calling session."""
    resolved = context.resolved
    return ResolvedPermissionsOut(
        user_id=resolved.user_id,
        tenant_id=resolved.tenant_id,
        permissions=sorted(resolved.codes),
        menu_keys=sorted(resolved.menu_keys),
        resolved_at=resolved.resolved_at,
        demo=context.demo_mode,
    )


@router.get("/me/check", response_model=PermissionCheckOut)
async def check_permission(
    code: str | None = Query(None),
    resource: str | None = Query(None),
    action: str | None = Query(None),
    scope: str | None = Query(None),
    context: PermissionContext = Depends(get_permission_context),
):
    """Check either an exact `code`, or `resource`/`action`/`scope` with containment."""
    if code:
        return PermissionCheckOut(allowed=context.can(code), code=code)
    if resource and action and scope:
        return PermissionCheckOut(
            allowed=context.can_resource(resource, action, scope),
            resource=resource,
            action=action,
            scope=scope,
        )
    raise InvalidArgumentError("Provide either code or resource, action and scope")


# ── Catalog ──────────────────────────────────────────────────

@router.get("/catalog", response_model=list[PermissionOut])
async def list_catalog(
    category: str | None = Query(None, pattern="^(menu|feature)$"),
    db: AsyncSession = Depends(get_db),
    _ctx: PermissionContext = Depends(require_any_permission(*CATALOG_READ)),
):
    perms = await PermissionStore(db).list_permissions(category)
    return [PermissionOut.model_validate(p) for p in perms]


@router.post("/catalog", response_model=PermissionOut, status_code=status.HTTP_201_CREATED)
async def create_catalog_permission(
    body: PermissionCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(CATALOG_MANAGE)),
):
    perm = await PermissionStore(db).create_permission(**body.model_dump())
    await log_activity(
        db, user,
        action="permission_created", entity_type="permission",
        entity_id=perm.id, entity_code=perm.code,
        summary=f"Created permission {perm.code}",
    )
    return PermissionOut.model_validate(perm)


@router.patch("/catalog/{permission_id}", response_model=PermissionOut)
async def update_catalog_permission(
    permission_id: str,
    body: PermissionUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(CATALOG_MANAGE)),
):
    updates = body.model_dump(exclude_unset=True)
    perm = await PermissionStore(db).update_permission(permission_id, **updates)
    await db.refresh(perm)
    await log_activity(
        db, user,
        action="permission_updated", entity_type="permission",
        entity_id=perm.id, entity_code=perm.code,
        summary=f"Updated permission {perm.code}",
        details={"changes": sorted(updates)},
    )
    await db.commit()
    # Menu keys are baked into every cached resolved set.
    await invalidate_all_permissions()
    return PermissionOut.model_validate(perm)


@router.delete("/catalog/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_catalog_permission(
    permission_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    _ctx: PermissionContext = Depends(require_permission(CATALOG_MANAGE)),
):
    perm = await PermissionStore(db).delete_permission(permission_id)
    await log_activity(
        db, user,
        action="permission_deleted", entity_type="permission",
        entity_id=perm.id, entity_code=perm.code,
        summary=f"Deleted permission {perm.code}",
    )
