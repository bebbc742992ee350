"""Per-session permission cache and check predicates.

A PermissionContext belongs to one request or session; it is never shared
process-wide. Callers issue `fetch_permissions()` once per (user, tenant)
context and then gate actions with the synchronous predicates:

    can(code)                          exact code held
    can_menu(menu_key)                 menu visibility
    can_any(codes) / can_all(codes)    combinators over can()
    can_resource(resource, action, scope)
                                       scope-aware check (broader satisfies narrower)

Predicates only read the last settled snapshot and fail closed: while
nothing is loaded, while loading for a new context, or after a failed
resolution, every check is False.

Concurrency (single event loop):
  - A fetch for a key that is already in flight awaits the same task.
  - Every fetch takes a sequence number; a completion is applied only if
    its number is still the latest for its key and the key is still the
    active context. Clearing or switching context makes in-flight work stale.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable

from hrportal.middleware.exceptions import (
    HRPortalException,
    InvalidArgumentError,
    StoreUnavailableError,
)
from hrportal.permissions.demo import demo_permission_set
from hrportal.permissions.resolved import ResolvedPermissionSet
from hrportal.permissions.scope import Scope, covering_scopes, make_code
from hrportal.permissions.source import DemoSource, PermissionSource, RealSource

logger = logging.getLogger(__name__)

Resolver = Callable[[str, str], Awaitable[ResolvedPermissionSet]]
CacheKey = tuple[str, str]


class PermissionContext:
    def __init__(self, resolver: Resolver):
        self._resolver = resolver
        self._resolved: dict[CacheKey, ResolvedPermissionSet] = {}
        self._inflight: dict[CacheKey, tuple[int, asyncio.Task]] = {}
        self._latest: dict[CacheKey, int] = {}
        self._sequence = 0
        self._active_key: CacheKey | None = None
        self._loading = True
        self._demo: DemoSource | None = None
        self._demo_set: ResolvedPermissionSet | None = None
        self.error: HRPortalException | None = None

    # ── State ────────────────────────────────────────────────

    @property
    def source(self) -> PermissionSource | None:
        if self._demo is not None:
            return self._demo
        if self._active_key is not None:
            return RealSource(*self._active_key)
        return None

    @property
    def demo_mode(self) -> bool:
        return self._demo is not None

    @property
    def is_loading(self) -> bool:
        return self._demo is None and self._loading

    @property
    def resolved(self) -> ResolvedPermissionSet | None:
        if self._demo is not None:
            return self._demo_set
        if self._active_key is None:
            return None
        return self._resolved.get(self._active_key)

    # ── Loading ──────────────────────────────────────────────

    async def load(self, source: PermissionSource) -> ResolvedPermissionSet | None:
        """Bind the context to `source` (demo table or real resolution)."""
        if isinstance(source, DemoSource):
            self.set_demo_mode(True, source.role)
            return self._demo_set
        self.set_demo_mode(False)
        return await self.fetch_permissions(source.user_id, source.tenant_id)

    async def fetch_permissions(
        self,
        user_id: str,
        tenant_id: str,
        refresh: bool = False,
    ) -> ResolvedPermissionSet:
        """Resolve and cache permissions for (user_id, tenant_id).

        Reuses an in-flight resolution for the same key unless `refresh`
        is set, in which case a new resolution supersedes it.
        """
        if not user_id or not tenant_id:
            raise InvalidArgumentError("user_id and tenant_id are required")

        key = (user_id, tenant_id)
        if key != self._active_key:
            self._switch_to(key)

        pending = self._inflight.get(key)
        if pending is not None and not refresh:
            return await asyncio.shield(pending[1])

        self._sequence += 1
        seq = self._sequence
        self._latest[key] = seq
        self._loading = True
        self.error = None

        task = asyncio.ensure_future(self._run(key, seq))
        self._inflight[key] = (seq, task)
        return await asyncio.shield(task)

    async def _run(self, key: CacheKey, seq: int) -> ResolvedPermissionSet:
        try:
            result = await self._resolver(*key)
        except HRPortalException as exc:
            self._record_failure(key, seq, exc)
            raise
        except Exception as exc:
            err = StoreUnavailableError(f"Permission resolution failed: {exc}")
            self._record_failure(key, seq, err)
            raise err from exc
        finally:
            if self._inflight.get(key, (None,))[0] == seq:
                del self._inflight[key]

        if self._is_current(key, seq):
            self._resolved[key] = result
            self._loading = False
            self.error = None
        else:
            logger.debug(f"Discarding stale permission resolution for {key} (seq {seq})")
        return result

    def _is_current(self, key: CacheKey, seq: int) -> bool:
        return key == self._active_key and self._latest.get(key) == seq

    def _record_failure(self, key: CacheKey, seq: int, exc: HRPortalException) -> None:
        if not self._is_current(key, seq):
            return
        logger.warning(f"Permission resolution failed for {key}: {exc.message}")
        self._resolved.pop(key, None)
        self._loading = False
        self.error = exc

    def _switch_to(self, key: CacheKey) -> None:
        old = self._active_key
        if old is not None:
            self._resolved.pop(old, None)
            self._inflight.pop(old, None)
            self._latest.pop(old, None)
        self._active_key = key
        self._loading = True
        self.error = None

    def clear(self) -> None:
        """Forget everything; in-flight resolutions are discarded when they land."""
        self._resolved.clear()
        self._inflight.clear()
        self._latest.clear()
        self._active_key = None
        self._loading = True
        self.error = None

    def set_demo_mode(self, enabled: bool, role: str | None = None) -> None:
        """Serve predicates from the static demo table for `role` (or stop doing so)."""
        if enabled:
            if not role:
                raise InvalidArgumentError("A demo role is required")
            self._demo = DemoSource(role)
            self._demo_set = demo_permission_set(role)
        else:
            self._demo = None
            self._demo_set = None

    # ── Predicates ───────────────────────────────────────────

    def _snapshot(self) -> ResolvedPermissionSet | None:
        if self._demo is not None:
            return self._demo_set
        if self.error is not None:
            return None
        return self.resolved

    def can(self, permission_code: str) -> bool:
        snapshot = self._snapshot()
        if snapshot is None or not isinstance(permission_code, str):
            return False
        return snapshot.has(permission_code)

    def can_menu(self, menu_key: str) -> bool:
        snapshot = self._snapshot()
        if snapshot is None or not isinstance(menu_key, str):
            return False
        return snapshot.has_menu(menu_key)

    def can_any(self, codes: Iterable[str]) -> bool:
        return any(self.can(c) for c in codes or ())

    def can_all(self, codes: Iterable[str]) -> bool:
        if self._snapshot() is None or codes is None:
            return False
        return all(self.can(c) for c in codes)

    def can_resource(self, resource: str, action: str, scope: Scope | str) -> bool:
        try:
            requested = Scope.parse(scope)
        except ValueError:
            return False
        return any(
            self.can(make_code(resource, action, s)) for s in covering_scopes(requested)
        )
