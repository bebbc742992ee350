"""SQLAlchemy-backed permission store.

Reads feed the resolver; mutations serve the administration routes.

Every tenant-owned query filters on `tenant_id`. Mutations validate and
raise (NotFoundError / ForbiddenError / ConflictError / InvalidArgumentError)
before touching any row, then flush; the session owner commits or rolls
back, so a failed request never leaves a partial change behind.

Driver / connection failures surface as StoreUnavailableError.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime

from sqlalchemy import delete as sa_delete, func, or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from hrportal.middleware.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidArgumentError,
    NotFoundError,
    StoreUnavailableError,
)
from hrportal.models.override import OverrideEffect, UserPermissionOverride
from hrportal.models.permission import Permission
from hrportal.models.role import Role, RolePermission, UserRoleAssignment
from hrportal.permissions.catalog import FEATURE, MENU
from hrportal.permissions.resolved import OverrideRule, PermissionRef, to_naive_utc
from hrportal.permissions.scope import Scope, make_code

logger = logging.getLogger(__name__)

_ROLE_DISPLAY_FIELDS = {"name", "description", "sort_order", "color", "is_active"}
_PERMISSION_DISPLAY_FIELDS = {"name", "description", "category", "menu_key"}


def _translate_db_errors(func_):
    """Map driver errors onto the application error taxonomy."""

    @functools.wraps(func_)
    async def wrapper(*args, **kwargs):
        try:
            return await func_(*args, **kwargs)
        except IntegrityError as exc:
            raise ConflictError("Change conflicts with existing data") from exc
        except DBAPIError as exc:
            logger.error(f"Permission store error in {func_.__name__}: {exc}")
            raise StoreUnavailableError() from exc

    return wrapper


def _ref(perm: Permission) -> PermissionRef:
    return PermissionRef(code=perm.code, category=perm.category, menu_key=perm.menu_key)


def _visible_to_tenant(tenant_id: str):
    """Tenant's own roles plus global (tenant_id NULL) system roles."""
    return or_(Role.tenant_id == tenant_id, Role.tenant_id.is_(None))


class PermissionStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ══════════════════════════════════════════════════════════
    # RESOLUTION READS
    # ══════════════════════════════════════════════════════════

    @_translate_db_errors
    async def find_roles_for_user(self, user_id: str, tenant_id: str) -> list[Role]:
        """Active roles the user holds within the tenant."""
        result = await self.session.execute(
            select(Role)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.tenant_id == tenant_id,
                Role.is_active == True,  # noqa: E712
                _visible_to_tenant(tenant_id),
            )
            .order_by(Role.sort_order, Role.code)
        )
        return list(result.unique().scalars().all())

    @_translate_db_errors
    async def find_role_permissions(self, role_ids: list[str]) -> list[PermissionRef]:
        """Union of permissions assigned to `role_ids` (duplicates collapse)."""
        if not role_ids:
            return []
        result = await self.session.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id.in_(role_ids))
            .distinct()
        )
        return [_ref(p) for p in result.scalars().all()]

    @_translate_db_errors
    async def find_active_overrides(
        self,
        user_id: str,
        tenant_id: str,
        now: datetime | None = None,
    ) -> list[OverrideRule]:
        now = to_naive_utc(now) or datetime.utcnow()
        result = await self.session.execute(
            select(UserPermissionOverride)
            .where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.tenant_id == tenant_id,
                or_(
                    UserPermissionOverride.expires_at.is_(None),
                    UserPermissionOverride.expires_at > now,
                ),
            )
            .order_by(UserPermissionOverride.created_at)
        )
        return [
            OverrideRule(
                permission=_ref(o.permission),
                effect=o.effect,
                expires_at=o.expires_at,
            )
            for o in result.unique().scalars().all()
        ]

    # ══════════════════════════════════════════════════════════
    # CATALOG
    # ══════════════════════════════════════════════════════════

    @_translate_db_errors
    async def list_permissions(self, category: str | None = None) -> list[Permission]:
        query = select(Permission).order_by(Permission.category, Permission.code)
        if category:
            query = query.where(Permission.category == category)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    @_translate_db_errors
    async def get_permission(self, permission_id: str) -> Permission:
        perm = await self.session.get(Permission, permission_id)
        if perm is None:
            raise NotFoundError("Permission", permission_id)
        return perm

    @_translate_db_errors
    async def get_permissions_by_code(self, codes: list[str]) -> dict[str, Permission]:
        if not codes:
            return {}
        result = await self.session.execute(
            select(Permission).where(Permission.code.in_(set(codes)))
        )
        return {p.code: p for p in result.scalars().all()}

    @_translate_db_errors
    async def create_permission(
        self,
        *,
        resource: str,
        action: str,
        scope: Scope | str,
        name: str,
        category: str = FEATURE,
        menu_key: str | None = None,
        description: str | None = None,
    ) -> Permission:
        try:
            scope = Scope.parse(scope)
        except ValueError:
            raise InvalidArgumentError(f"Invalid scope: {scope!r}")
        if category not in (MENU, FEATURE):
            raise InvalidArgumentError(f"Invalid category: {category!r}")
        if category == MENU and not menu_key:
            raise InvalidArgumentError("Menu permissions require a menu_key")

        code = make_code(resource, action, scope)
        existing = await self.session.execute(
            select(Permission.id).where(Permission.code == code)
        )
        if existing.scalar_one_or_none():
            raise ConflictError(f"Permission already exists: {code}")

        perm = Permission(
            resource=resource,
            action=action,
            scope=scope.value,
            code=code,
            name=name,
            category=category,
            menu_key=menu_key,
            description=description,
        )
        self.session.add(perm)
        await self.session.flush()
        logger.info(f"Created permission {code}")
        return perm

    @_translate_db_errors
    async def update_permission(self, permission_id: str, **changes) -> Permission:
        """Update display fields. The (resource, action, scope) identity is immutable."""
        perm = await self.get_permission(permission_id)
        unknown = set(changes) - _PERMISSION_DISPLAY_FIELDS
        if unknown:
            raise InvalidArgumentError(
                f"Cannot change permission fields: {', '.join(sorted(unknown))}"
            )
        category = changes.get("category", perm.category)
        if category not in (MENU, FEATURE):
            raise InvalidArgumentError(f"Invalid category: {category!r}")
        if category == MENU and not changes.get("menu_key", perm.menu_key):
            raise InvalidArgumentError("Menu permissions require a menu_key")

        for key, value in changes.items():
            setattr(perm, key, value)
        await self.session.flush()
        return perm

    @_translate_db_errors
    async def delete_permission(self, permission_id: str) -> Permission:
        """Delete an unreferenced catalog row."""
        perm = await self.get_permission(permission_id)
        role_refs = await self.session.scalar(
            select(func.count()).select_from(RolePermission)
            .where(RolePermission.permission_id == permission_id)
        )
        override_refs = await self.session.scalar(
            select(func.count()).select_from(UserPermissionOverride)
            .where(UserPermissionOverride.permission_id == permission_id)
        )
        if role_refs or override_refs:
            raise ConflictError(
                f"Permission {perm.code} is referenced by "
                f"{role_refs or 0} role assignment(s) and {override_refs or 0} override(s)"
            )
        await self.session.delete(perm)
        await self.session.flush()
        logger.info(f"Deleted permission {perm.code}")
        return perm

    # ══════════════════════════════════════════════════════════
    # ROLES
    # ══════════════════════════════════════════════════════════

    @_translate_db_errors
    async def list_roles(self, tenant_id: str, include_inactive: bool = True) -> list[Role]:
        query = (
            select(Role)
            .where(_visible_to_tenant(tenant_id))
            .order_by(Role.sort_order, Role.code)
        )
        if not include_inactive:
            query = query.where(Role.is_active == True)  # noqa: E712
        result = await self.session.execute(query)
        return list(result.scalars().all())

    @_translate_db_errors
    async def get_role(self, role_id: str, tenant_id: str) -> Role:
        result = await self.session.execute(
            select(Role).where(Role.id == role_id, _visible_to_tenant(tenant_id))
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFoundError("Role", role_id)
        return role

    async def _get_tenant_role(self, role_id: str, tenant_id: str) -> Role:
        """Role that the tenant may modify (global roles are read-only)."""
        role = await self.get_role(role_id, tenant_id)
        if role.tenant_id is None:
            raise ForbiddenError(f"Global role '{role.code}' cannot be modified by a tenant")
        return role

    @_translate_db_errors
    async def list_role_permission_codes(self, role_id: str) -> list[str]:
        result = await self.session.execute(
            select(Permission.code)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role_id == role_id)
            .order_by(Permission.code)
        )
        return list(result.scalars().all())

    @_translate_db_errors
    async def create_role(
        self,
        tenant_id: str,
        *,
        code: str,
        name: str,
        description: str | None = None,
        sort_order: int = 100,
        color: str | None = None,
        permission_codes: list[str] | None = None,
    ) -> Role:
        """Create a tenant-defined (non-system) role."""
        existing = await self.session.execute(
            select(Role.id).where(Role.code == code, _visible_to_tenant(tenant_id))
        )
        if existing.scalar_one_or_none():
            raise ConflictError(f"Role code already in use: {code}")

        perms = await self._resolve_codes(permission_codes or [])

        role = Role(
            tenant_id=tenant_id,
            code=code,
            name=name,
            description=description,
            sort_order=sort_order,
            color=color,
            is_system=False,
            is_active=True,
        )
        self.session.add(role)
        await self.session.flush()

        for perm in perms:
            self.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
        await self.session.flush()
        logger.info(f"Created role {code} in tenant {tenant_id}")
        return role

    @_translate_db_errors
    async def update_role(self, role_id: str, tenant_id: str, **changes) -> Role:
        role = await self._get_tenant_role(role_id, tenant_id)
        unknown = set(changes) - _ROLE_DISPLAY_FIELDS
        if unknown:
            raise InvalidArgumentError(
                f"Cannot change role fields: {', '.join(sorted(unknown))}"
            )
        if role.is_system and changes.get("is_active") is False:
            raise ForbiddenError(f"System role '{role.code}' cannot be deactivated")

        for key, value in changes.items():
            setattr(role, key, value)
        await self.session.flush()
        return role

    @_translate_db_errors
    async def delete_role(self, role_id: str, tenant_id: str) -> Role:
        """Delete a custom role: assignments and memberships first, then the role."""
        role = await self._get_tenant_role(role_id, tenant_id)
        if role.is_system:
            raise ForbiddenError(f"System role '{role.code}' cannot be deleted")

        await self.session.execute(
            sa_delete(RolePermission).where(RolePermission.role_id == role.id)
        )
        await self.session.execute(
            sa_delete(UserRoleAssignment).where(
                UserRoleAssignment.role_id == role.id,
                UserRoleAssignment.tenant_id == tenant_id,
            )
        )
        await self.session.delete(role)
        await self.session.flush()
        logger.info(f"Deleted role {role.code} in tenant {tenant_id}")
        return role

    @_translate_db_errors
    async def replace_role_permissions(
        self, role_id: str, tenant_id: str, codes: list[str]
    ) -> list[str]:
        """Total replace of a role's assignments.

        Every code is validated before anything is deleted, and the delete
        and inserts share the caller's transaction, so readers see either
        the old set or the new one.
        """
        role = await self._get_tenant_role(role_id, tenant_id)
        perms = await self._resolve_codes(codes)

        await self.session.execute(
            sa_delete(RolePermission).where(RolePermission.role_id == role.id)
        )
        for perm in perms:
            self.session.add(RolePermission(role_id=role.id, permission_id=perm.id))
        await self.session.flush()

        new_codes = sorted(p.code for p in perms)
        logger.info(
            f"Replaced permissions of role {role.code} in tenant {tenant_id} "
            f"({len(new_codes)} codes)"
        )
        return new_codes

    async def _resolve_codes(self, codes: list[str]) -> list[Permission]:
        wanted = list(dict.fromkeys(codes))
        found = await self.get_permissions_by_code(wanted)
        missing = [c for c in wanted if c not in found]
        if missing:
            raise InvalidArgumentError(f"Unknown permission codes: {', '.join(missing)}")
        return [found[c] for c in wanted]

    # ══════════════════════════════════════════════════════════
    # MEMBERSHIPS
    # ══════════════════════════════════════════════════════════

    @_translate_db_errors
    async def list_user_roles(self, user_id: str, tenant_id: str) -> list[Role]:
        result = await self.session.execute(
            select(Role)
            .join(UserRoleAssignment, UserRoleAssignment.role_id == Role.id)
            .where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.tenant_id == tenant_id,
            )
            .order_by(Role.sort_order, Role.code)
        )
        return list(result.unique().scalars().all())

    @_translate_db_errors
    async def assign_role(self, user_id: str, tenant_id: str, role_id: str) -> Role:
        """Grant `role_id` to the user. Assigning an already-held role is a no-op."""
        role = await self.get_role(role_id, tenant_id)
        existing = await self.session.execute(
            select(UserRoleAssignment.id).where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.tenant_id == tenant_id,
                UserRoleAssignment.role_id == role.id,
            )
        )
        if existing.scalar_one_or_none() is None:
            self.session.add(
                UserRoleAssignment(user_id=user_id, tenant_id=tenant_id, role_id=role.id)
            )
            await self.session.flush()
        return role

    @_translate_db_errors
    async def unassign_role(self, user_id: str, tenant_id: str, role_id: str) -> None:
        result = await self.session.execute(
            select(UserRoleAssignment).where(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.tenant_id == tenant_id,
                UserRoleAssignment.role_id == role_id,
            )
        )
        assignment = result.unique().scalar_one_or_none()
        if assignment is None:
            raise NotFoundError("Role assignment", f"{user_id}/{role_id}")
        await self.session.delete(assignment)
        await self.session.flush()

    # ══════════════════════════════════════════════════════════
    # OVERRIDES
    # ══════════════════════════════════════════════════════════

    @_translate_db_errors
    async def list_overrides(
        self, user_id: str, tenant_id: str
    ) -> list[UserPermissionOverride]:
        result = await self.session.execute(
            select(UserPermissionOverride)
            .where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.tenant_id == tenant_id,
            )
            .order_by(UserPermissionOverride.created_at)
        )
        return list(result.unique().scalars().all())

    @_translate_db_errors
    async def upsert_override(
        self,
        user_id: str,
        tenant_id: str,
        *,
        permission_code: str,
        effect: OverrideEffect | str,
        expires_at: datetime | None = None,
        reason: str | None = None,
        created_by: str | None = None,
    ) -> UserPermissionOverride:
        """Create the override for (user, tenant, permission) or replace its effect."""
        try:
            effect = OverrideEffect(effect)
        except ValueError:
            raise InvalidArgumentError(f"Invalid override effect: {effect!r}")

        perms = await self.get_permissions_by_code([permission_code])
        perm = perms.get(permission_code)
        if perm is None:
            raise NotFoundError("Permission", permission_code)

        result = await self.session.execute(
            select(UserPermissionOverride).where(
                UserPermissionOverride.user_id == user_id,
                UserPermissionOverride.tenant_id == tenant_id,
                UserPermissionOverride.permission_id == perm.id,
            )
        )
        override = result.unique().scalar_one_or_none()
        if override is None:
            override = UserPermissionOverride(
                user_id=user_id,
                tenant_id=tenant_id,
                permission_id=perm.id,
            )
            self.session.add(override)

        override.effect = effect
        override.expires_at = to_naive_utc(expires_at)
        override.reason = reason
        override.created_by = created_by
        override.permission = perm
        await self.session.flush()
        return override

    @_translate_db_errors
    async def delete_override(
        self, user_id: str, tenant_id: str, override_id: str
    ) -> UserPermissionOverride:
        """Delete an override after checking it belongs to `user_id`."""
        result = await self.session.execute(
            select(UserPermissionOverride).where(
                UserPermissionOverride.id == override_id,
                UserPermissionOverride.tenant_id == tenant_id,
            )
        )
        override = result.unique().scalar_one_or_none()
        if override is None:
            raise NotFoundError("Override", override_id)
        if override.user_id != user_id:
            raise ForbiddenError("Override does not belong to this user")

        await self.session.delete(override)
        await self.session.flush()
        return override
