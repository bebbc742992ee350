"""Permission codes and scope containment.

Codes are `<resource>:<action>:<scope>`, e.g. `leave:approve:team`.

Scopes form a fixed containment order:

    own  <  team  <  company

Holding a permission at a broader scope satisfies a request for the same
resource/action at any narrower (or equal) scope, never the reverse.
"""

from __future__ import annotations

import enum
from typing import NamedTuple


class Scope(str, enum.Enum):
    OWN = "own"
    TEAM = "team"
    COMPANY = "company"

    @classmethod
    def parse(cls, value: str | Scope) -> Scope:
        """Return the Scope for `value`, accepting `self` as an alias of `own`."""
        if isinstance(value, Scope):
            return value
        value = str(value).strip().lower()
        if value == "self":
            return cls.OWN
        return cls(value)

    @property
    def rank(self) -> int:
        return _SCOPE_RANK[self]

    def covers(self, requested: Scope) -> bool:
        """True if holding this scope satisfies a request for `requested`."""
        return self.rank >= requested.rank


_SCOPE_RANK: dict[Scope, int] = {Scope.OWN: 0, Scope.TEAM: 1, Scope.COMPANY: 2}


def covering_scopes(requested: Scope) -> list[Scope]:
    """All scopes that satisfy `requested`, narrowest first."""
    return [s for s in Scope if s.covers(requested)]


class PermissionCode(NamedTuple):
    resource: str
    action: str
    scope: Scope

    def __str__(self) -> str:
        return make_code(self.resource, self.action, self.scope)

    @classmethod
    def parse(cls, code: str) -> PermissionCode:
        """Split a `resource:action:scope` string. Raises ValueError if malformed."""
        parts = code.split(":") if isinstance(code, str) else []
        if len(parts) != 3 or not all(parts):
            raise ValueError(f"Invalid permission code: {code!r}")
        return cls(parts[0], parts[1], Scope.parse(parts[2]))


def make_code(resource: str, action: str, scope: Scope | str) -> str:
    return f"{resource}:{action}:{Scope.parse(scope).value}"


def try_parse_code(code: str) -> PermissionCode | None:
    try:
        return PermissionCode.parse(code)
    except ValueError:
        return None
