"""Pydantic schemas for the permission catalog, roles, memberships and overrides."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from hrportal.permissions.resolved import to_naive_utc


# ── Catalog ──────────────────────────────────────────────────

class PermissionCreate(BaseModel):
    resource: str = Field(..., min_length=1, max_length=50)
    action: str = Field(..., min_length=1, max_length=30)
    scope: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=200)
    category: Literal["menu", "feature"] = "feature"
    menu_key: str | None = Field(None, max_length=50)
    description: str | None = None


class PermissionUpdate(BaseModel):
    """Display fields only; resource/action/scope are immutable."""
    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    category: Literal["menu", "feature"] | None = None
    menu_key: str | None = Field(None, max_length=50)


class PermissionOut(BaseModel):
    id: str
    resource: str
    action: str
    scope: str
    code: str
    name: str
    description: str | None
    category: str
    menu_key: str | None

    model_config = {"from_attributes": True}


# ── Roles ────────────────────────────────────────────────────

class RoleCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50, pattern=r"^[a-z0-9_-]+$")
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = None
    sort_order: int = 100
    color: str | None = Field(None, max_length=20)
    permission_codes: list[str] = []


class RoleUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = None
    sort_order: int | None = None
    color: str | None = Field(None, max_length=20)
    is_active: bool | None = None


class RoleOut(BaseModel):
    id: str
    tenant_id: str | None
    code: str
    name: str
    description: str | None
    is_system: bool
    is_active: bool
    sort_order: int
    color: str | None

    model_config = {"from_attributes": True}


class RoleDetail(RoleOut):
    permission_codes: list[str] = []


class RolePermissionsReplace(BaseModel):
    permission_codes: list[str]


class RolePermissionsOut(BaseModel):
    role_id: str
    permission_codes: list[str]


# ── Memberships ──────────────────────────────────────────────

class RoleAssign(BaseModel):
    role_id: str


# ── Overrides ────────────────────────────────────────────────

class OverrideCreate(BaseModel):
    permission_code: str = Field(..., min_length=1)
    effect: Literal["grant", "deny"]
    expires_at: datetime | None = None
    reason: str | None = None

    @field_validator("expires_at")
    @classmethod
    def normalise_expiry(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)


class OverrideOut(BaseModel):
    id: str
    user_id: str
    tenant_id: str
    permission_code: str
    effect: str
    expires_at: datetime | None
    reason: str | None
    created_by: str | None
    created_at: datetime


# ── Resolved permissions ─────────────────────────────────────

class ResolvedPermissionsOut(BaseModel):
    user_id: str
    tenant_id: str
    permissions: list[str]
    menu_keys: list[str]
    resolved_at: datetime
    demo: bool = False


class PermissionCheckOut(BaseModel):
    allowed: bool
    code: str | None = None
    resource: str | None = None
    action: str | None = None
    scope: str | None = None
