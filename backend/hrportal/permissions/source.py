"""Where a session's permissions come from.

A session is either backed by real resolution for a (user, tenant) pair or
by the demo table for a fixed role. The variant is chosen once, when the
session's PermissionContext is built.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class RealSource:
    user_id: str
    tenant_id: str


@dataclass(frozen=True)
class DemoSource:
    role: str


PermissionSource = Union[RealSource, DemoSource]


def select_source(
    user_id: str | None,
    tenant_id: str | None,
    demo_role: str | None = None,
    demo_enabled: bool = False,
) -> PermissionSource | None:
    """Pick the session's source. Real credentials always win over a demo role."""
    if user_id and tenant_id:
        return RealSource(user_id, tenant_id)
    if demo_enabled and demo_role:
        return DemoSource(demo_role)
    return None
