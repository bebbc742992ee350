"""Multi-tenancy: request-scoped tenant context.

Key components:
  - _tenant_ctx           ContextVar holding the tenant id for the current request
  - set / clear           helpers for the ContextVar
  - validate_tenant_id()  rejects ids that cannot be a tenant key
"""

import re
from contextvars import ContextVar

# ── Request-scoped tenant context ───────────────────────────

_tenant_ctx: ContextVar[str | None] = ContextVar("_tenant_ctx", default=None)


def set_current_tenant_id(tenant_id: str) -> None:
    _tenant_ctx.set(tenant_id)


def clear_tenant_context() -> None:
    _tenant_ctx.set(None)


# ── Validation ──────────────────────────────────────────────

_TENANT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")


def validate_tenant_id(tenant_id: str) -> str:
    """Ensure tenant ids are safe to use as cache-key segments."""
    if not _TENANT_ID_RE.match(tenant_id):
        raise ValueError(f"Invalid tenant id: {tenant_id!r}")
    return tenant_id
