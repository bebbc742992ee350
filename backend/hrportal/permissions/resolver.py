"""Permission resolution: roles ∪ assignments, then overrides.

    1. Load the user's active role memberships in the tenant.
    2. Union the permissions assigned to those roles.
    3. Load the user's active (unexpired) overrides in the tenant.
    4. Apply overrides last: grant adds, deny removes.

Overrides therefore always have the final say for their permission. A user
with no roles and no grants resolves to an empty set, which is a normal
state for newly provisioned accounts.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Protocol

from hrportal.middleware.exceptions import InvalidArgumentError
from hrportal.models.override import OverrideEffect
from hrportal.permissions.resolved import (
    OverrideRule,
    PermissionRef,
    ResolvedPermissionSet,
    to_naive_utc,
)
from hrportal.utils.cache import get_cached_permissions, set_cached_permissions

logger = logging.getLogger(__name__)


class ResolutionStore(Protocol):
    async def find_roles_for_user(self, user_id: str, tenant_id: str) -> list: ...

    async def find_role_permissions(self, role_ids: list[str]) -> list[PermissionRef]: ...

    async def find_active_overrides(
        self, user_id: str, tenant_id: str, now: datetime | None = None
    ) -> list[OverrideRule]: ...


def combine(
    role_permissions: Iterable[PermissionRef],
    overrides: Iterable[OverrideRule],
    now: datetime | None = None,
) -> list[PermissionRef]:
    """Merge role-derived permissions with overrides. Pure and deterministic."""
    now = now or datetime.utcnow()
    effective: dict[str, PermissionRef] = {}
    for ref in role_permissions:
        effective.setdefault(ref.code, ref)

    for rule in overrides:
        if not rule.is_active(now):
            continue
        if rule.effect == OverrideEffect.GRANT:
            effective[rule.permission.code] = rule.permission
        else:
            effective.pop(rule.permission.code, None)

    return sorted(effective.values(), key=lambda r: r.code)


async def resolve_permissions(
    store: ResolutionStore,
    user_id: str,
    tenant_id: str,
    now: datetime | None = None,
) -> ResolvedPermissionSet:
    """Compute the effective permission set of `user_id` within `tenant_id`."""
    if not user_id:
        raise InvalidArgumentError("user_id is required")
    if not tenant_id:
        raise InvalidArgumentError("tenant_id is required")

    now = to_naive_utc(now) or datetime.utcnow()
    roles = await store.find_roles_for_user(user_id, tenant_id)
    role_permissions = await store.find_role_permissions([r.id for r in roles])
    overrides = await store.find_active_overrides(user_id, tenant_id, now)

    refs = combine(role_permissions, overrides, now)
    logger.debug(
        f"Resolved {len(refs)} permissions for user {user_id} in tenant {tenant_id} "
        f"({len(roles)} roles, {len(overrides)} overrides)"
    )
    return ResolvedPermissionSet.from_refs(user_id, tenant_id, refs, resolved_at=now)


class CachedResolver:
    """Resolver backed by the shared Redis cache, falling back to the store."""

    def __init__(self, store: ResolutionStore):
        self.store = store

    async def __call__(self, user_id: str, tenant_id: str) -> ResolvedPermissionSet:
        if user_id and tenant_id:
            cached = await get_cached_permissions(tenant_id, user_id)
            if cached is not None:
                return ResolvedPermissionSet.from_dict(cached)

        resolved = await resolve_permissions(self.store, user_id, tenant_id)
        await set_cached_permissions(tenant_id, user_id, resolved.to_dict())
        return resolved
