"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_permission_source   → RealSource from the JWT, or DemoSource from X-Demo-Role
  get_permission_context  → request-scoped PermissionContext, loaded once
  get_current_user        → load the token's user from the DB
  require_permission(...) → every listed code must be held
  require_any_permission(...) → at least one listed code must be held
  require_resource(...)   → scope-aware resource/action check
  require_menu(...)       → menu visibility check
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrportal.auth.jwt import decode_token
from hrportal.config import settings
from hrportal.database import get_db
from hrportal.models.user import User
from hrportal.permissions.context import PermissionContext
from hrportal.permissions.resolver import CachedResolver
from hrportal.permissions.source import PermissionSource, select_source
from hrportal.permissions.store import PermissionStore

# Tokens are issued by the identity service; this app only verifies them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

DEMO_ROLE_HEADER = "X-Demo-Role"


def _credentials_error(detail: str = "Invalid or expired token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _claims(token: str | None) -> dict:
    if not token:
        return {}
    payload = decode_token(token)
    if not payload.get("sub") or payload.get("type") != "access":
        raise _credentials_error()
    return payload


# ── Permission context ──────────────────────────────────────

async def get_permission_source(
    request: Request,
    token: str | None = Depends(oauth2_scheme),
) -> PermissionSource:
    payload = _claims(token)
    source = select_source(
        user_id=payload.get("sub"),
        tenant_id=payload.get("tenant_id"),
        demo_role=request.headers.get(DEMO_ROLE_HEADER),
        demo_enabled=settings.demo_mode_enabled,
    )
    if source is None:
        raise _credentials_error("Not authenticated")
    return source


async def get_permission_context(
    source: PermissionSource = Depends(get_permission_source),
    db: AsyncSession = Depends(get_db),
) -> PermissionContext:
    """Build this request's PermissionContext and load it once."""
    context = PermissionContext(resolver=CachedResolver(PermissionStore(db)))
    await context.load(source)
    return context


# ── Core user dependency ────────────────────────────────────

async def get_current_user(
    token: str | None = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode the JWT and load the user it names within its tenant."""
    payload = _claims(token)
    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id:
        raise _credentials_error("Not authenticated")

    result = await db.execute(
        select(User).where(User.id == user_id, User.tenant_id == tenant_id)
    )
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory: restrict to callers who hold ALL listed codes.

    Usage:
        @router.put("/roles/{role_id}/permissions")
        async def replace(ctx = Depends(require_permission("organization:manage:company"))):
            ...
    """
    async def _check(
        context: PermissionContext = Depends(get_permission_context),
    ) -> PermissionContext:
        missing = [p for p in perms if not context.can(p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return context

    return _check


def require_any_permission(*perms: str):
    """Dependency factory: restrict to callers who hold at least one listed code."""
    async def _check(
        context: PermissionContext = Depends(get_permission_context),
    ) -> PermissionContext:
        if not context.can_any(perms):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires one of: {', '.join(perms)}",
            )
        return context

    return _check


def require_resource(resource: str, action: str, scope: str):
    """Dependency factory: scope-aware check (a broader grant satisfies)."""
    async def _check(
        context: PermissionContext = Depends(get_permission_context),
    ) -> PermissionContext:
        if not context.can_resource(resource, action, scope):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {resource}:{action}:{scope}",
            )
        return context

    return _check


def require_menu(menu_key: str):
    """Dependency factory: restrict to callers who can see `menu_key`."""
    async def _check(
        context: PermissionContext = Depends(get_permission_context),
    ) -> PermissionContext:
        if not context.can_menu(menu_key):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Menu not available: {menu_key}",
            )
        return context

    return _check
