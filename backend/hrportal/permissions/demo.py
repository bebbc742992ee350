"""Static permission table for the unauthenticated demo path.

Demo sessions never touch the store: a demo role maps straight to the
default assignments of the matching system role. Unknown demo roles get
an empty table.
"""

from __future__ import annotations

from hrportal.permissions.catalog import PERMISSIONS_BY_CODE, ROLE_PERMISSION_MAP
from hrportal.permissions.resolved import PermissionRef, ResolvedPermissionSet

DEMO_TENANT_ID = "demo"

DEMO_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    role: frozenset(codes) for role, codes in ROLE_PERMISSION_MAP.items()
}


def demo_roles() -> list[str]:
    return list(DEMO_ROLE_PERMISSIONS)


def demo_permission_set(role: str) -> ResolvedPermissionSet:
    codes = DEMO_ROLE_PERMISSIONS.get(role, frozenset())
    refs = []
    for code in sorted(codes):
        perm = PERMISSIONS_BY_CODE.get(code)
        if perm is None:
            refs.append(PermissionRef(code=code))
        else:
            refs.append(PermissionRef(code=code, category=perm.category, menu_key=perm.menu_key))
    return ResolvedPermissionSet.from_refs(f"demo:{role}", DEMO_TENANT_ID, refs)
