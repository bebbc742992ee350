"""Value types flowing through resolution.

PermissionRef        one catalog row as the resolver sees it
OverrideRule         one per-user override (grant / deny, optional expiry)
ResolvedPermissionSet  the effective permissions of a user in a tenant
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from hrportal.models.override import OverrideEffect
from hrportal.permissions.catalog import MENU
from hrportal.permissions.scope import Scope, covering_scopes, make_code


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Normalise to the naive-UTC form every timestamp column stores."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class PermissionRef:
    code: str
    category: str = "feature"
    menu_key: str | None = None

    @property
    def unlocks_menu(self) -> bool:
        return self.category == MENU and bool(self.menu_key)


@dataclass(frozen=True)
class OverrideRule:
    permission: PermissionRef
    effect: OverrideEffect
    expires_at: datetime | None = None

    def is_active(self, now: datetime) -> bool:
        expires_at = to_naive_utc(self.expires_at)
        return expires_at is None or expires_at > to_naive_utc(now)


@dataclass(frozen=True)
class ResolvedPermissionSet:
    """Materialised permissions for one (user, tenant) pair."""

    user_id: str
    tenant_id: str
    codes: frozenset[str] = frozenset()
    menu_keys: frozenset[str] = frozenset()
    resolved_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_refs(
        cls,
        user_id: str,
        tenant_id: str,
        refs: list[PermissionRef],
        resolved_at: datetime | None = None,
    ) -> ResolvedPermissionSet:
        return cls(
            user_id=user_id,
            tenant_id=tenant_id,
            codes=frozenset(r.code for r in refs),
            menu_keys=frozenset(r.menu_key for r in refs if r.unlocks_menu),
            resolved_at=resolved_at or datetime.utcnow(),
        )

    @property
    def is_empty(self) -> bool:
        return not self.codes

    def has(self, code: str) -> bool:
        return code in self.codes

    def has_menu(self, menu_key: str) -> bool:
        return menu_key in self.menu_keys

    def satisfies(self, resource: str, action: str, scope: Scope | str) -> bool:
        """True if any held scope for resource/action covers `scope`."""
        requested = Scope.parse(scope)
        return any(
            make_code(resource, action, s) in self.codes
            for s in covering_scopes(requested)
        )

    # ── Serialisation (shared cache) ─────────────────────────

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "tenant_id": self.tenant_id,
            "codes": sorted(self.codes),
            "menu_keys": sorted(self.menu_keys),
            "resolved_at": self.resolved_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> ResolvedPermissionSet:
        return cls(
            user_id=data["user_id"],
            tenant_id=data["tenant_id"],
            codes=frozenset(data.get("codes", [])),
            menu_keys=frozenset(data.get("menu_keys", [])),
            resolved_at=datetime.fromisoformat(data["resolved_at"]),
        )
