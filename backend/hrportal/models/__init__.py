"""Aggregate model imports for Alembic auto-detection."""

from hrportal.models.tenant import Tenant  # noqa: F401
from hrportal.models.user import User  # noqa: F401

# Permission engine
from hrportal.models.permission import Permission  # noqa: F401
from hrportal.models.role import Role, RolePermission, UserRoleAssignment  # noqa: F401
from hrportal.models.override import OverrideEffect, UserPermissionOverride  # noqa: F401

# Audit
from hrportal.models.activity_log import ActivityLog  # noqa: F401
