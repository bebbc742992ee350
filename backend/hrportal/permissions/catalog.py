"""Default permission catalog and system-role baseline.

Design:
  - The catalog (resource/action/scope triples) is global and lives in the
    `permissions` table; this module holds the defaults it is seeded from.
  - Menu-category permissions are `<area>:read:own` and carry the menu key
    they unlock. Feature permissions gate operations.
  - Six system roles are seeded into every tenant with the assignments in
    ROLE_PERMISSION_MAP. Tenants may add custom roles on top.
  - The demo (unauthenticated) path reads ROLE_PERMISSION_MAP directly.
"""

from __future__ import annotations

from dataclasses import dataclass

from hrportal.permissions.scope import Scope, make_code

MENU = "menu"
FEATURE = "feature"


@dataclass(frozen=True)
class PermissionDef:
    resource: str
    action: str
    scope: Scope
    name: str
    category: str = FEATURE
    menu_key: str | None = None
    description: str | None = None

    @property
    def code(self) -> str:
        return make_code(self.resource, self.action, self.scope)


@dataclass(frozen=True)
class SystemRoleDef:
    code: str
    name: str
    sort_order: int
    color: str


# ── System roles ────────────────────────────────────────────

SYSTEM_ROLES: list[SystemRoleDef] = [
    SystemRoleDef("employee", "Employee", 1, "#6B7280"),
    SystemRoleDef("manager", "Manager", 2, "#3B82F6"),
    SystemRoleDef("executive", "Executive", 3, "#8B5CF6"),
    SystemRoleDef("hr", "HR", 4, "#10B981"),
    SystemRoleDef("admin", "System administrator", 5, "#EF4444"),
    SystemRoleDef("applicant", "New hire (pre-start)", 6, "#F59E0B"),
]

SYSTEM_ROLE_CODES: frozenset[str] = frozenset(r.code for r in SYSTEM_ROLES)


# ── Menu visibility ─────────────────────────────────────────

def _menu(resource: str, menu_key: str, name: str) -> PermissionDef:
    return PermissionDef(resource, "read", Scope.OWN, name, MENU, menu_key)


MENU_PERMISSIONS: list[PermissionDef] = [
    _menu("dashboard", "dashboard", "Show dashboard"),
    _menu("announcements", "announcements", "Show announcements"),
    _menu("users", "users", "Show user management"),
    _menu("members", "members", "Show member directory"),
    _menu("attendance", "attendance", "Show attendance"),
    _menu("leave", "leave", "Show leave"),
    _menu("workflow", "workflow", "Show workflow"),
    _menu("approval", "approval", "Show approvals"),
    _menu("payroll", "payroll", "Show payroll"),
    _menu("evaluation", "evaluation", "Show evaluations"),
    _menu("organization", "organization", "Show organization"),
    _menu("scheduled_changes", "scheduledChanges", "Show scheduled changes"),
    _menu("legal_updates", "legalUpdates", "Show legal updates"),
    _menu("announcements_admin", "announcementsAdmin", "Show announcement admin"),
    _menu("assets", "assets", "Show asset management"),
    _menu("saas", "saas", "Show SaaS management"),
    _menu("onboarding", "onboarding", "Show onboarding"),
    _menu("settings", "settings", "Show settings"),
    _menu("audit", "audit", "Show audit log"),
    _menu("health", "health", "Show health management"),
]


# ── Feature permissions ─────────────────────────────────────

_O, _T, _C = Scope.OWN, Scope.TEAM, Scope.COMPANY

FEATURE_PERMISSIONS: list[PermissionDef] = [
    # User management
    PermissionDef("users", "create", _C, "Create users"),
    PermissionDef("users", "read", _C, "View all users"),
    PermissionDef("users", "update", _C, "Update users"),
    PermissionDef("users", "delete", _C, "Delete users"),

    # Attendance
    PermissionDef("attendance", "create", _O, "Clock in / out"),
    PermissionDef("attendance", "read", _T, "View team attendance"),
    PermissionDef("attendance", "read", _C, "View company attendance"),
    PermissionDef("attendance", "update", _C, "Correct attendance"),
    PermissionDef("attendance", "approve", _T, "Approve team attendance"),

    # Leave
    PermissionDef("leave", "create", _O, "Request leave"),
    PermissionDef("leave", "read", _T, "View team leave"),
    PermissionDef("leave", "read", _C, "View company leave"),
    PermissionDef("leave", "approve", _T, "Approve leave"),

    # Workflow
    PermissionDef("workflow", "create", _O, "Create workflow requests"),
    PermissionDef("workflow", "read", _T, "View team workflows"),
    PermissionDef("workflow", "read", _C, "View company workflows"),

    # Approval
    PermissionDef("approval", "approve", _T, "Team approval"),
    PermissionDef("approval", "approve", _C, "Company approval"),

    # Payroll
    PermissionDef("payroll", "read", _T, "View team payroll"),
    PermissionDef("payroll", "read", _C, "View company payroll"),
    PermissionDef("payroll", "create", _C, "Run payroll"),
    PermissionDef("payroll", "update", _C, "Edit payroll"),

    # Evaluation
    PermissionDef("evaluation", "read", _T, "View team evaluations"),
    PermissionDef("evaluation", "read", _C, "View company evaluations"),
    PermissionDef("evaluation", "create", _T, "Enter team evaluations"),
    PermissionDef("evaluation", "approve", _C, "Approve evaluations"),

    # Organization
    PermissionDef("organization", "read", _C, "View organization"),
    PermissionDef("organization", "manage", _C, "Manage organization and roles"),

    # Announcements
    PermissionDef("announcements_admin", "create", _C, "Create announcements"),
    PermissionDef("announcements_admin", "update", _C, "Edit announcements"),
    PermissionDef("announcements_admin", "delete", _C, "Delete announcements"),

    # Assets
    PermissionDef("assets", "create", _C, "Register assets"),
    PermissionDef("assets", "update", _C, "Update assets"),
    PermissionDef("assets", "delete", _C, "Delete assets"),

    # SaaS
    PermissionDef("saas", "manage", _C, "Manage SaaS accounts"),

    # Onboarding
    PermissionDef("onboarding", "manage", _C, "Manage onboarding"),

    # Settings
    PermissionDef("settings", "manage", _C, "Manage system settings"),

    # Audit
    PermissionDef("audit", "read", _C, "View audit log"),

    # Health
    PermissionDef("health", "read", _C, "View health records"),
    PermissionDef("health", "manage", _C, "Manage health records"),

    # Members
    PermissionDef("members", "read", _C, "View all members"),
    PermissionDef("members", "read", _T, "View team members"),

    # Scheduled changes
    PermissionDef("scheduled_changes", "manage", _C, "Manage scheduled changes"),

    # Legal updates
    PermissionDef("legal_updates", "read", _C, "View legal updates"),
    PermissionDef("legal_updates", "manage", _C, "Manage legal updates"),
]


def _dedupe(defs: list[PermissionDef]) -> list[PermissionDef]:
    # First definition of a code wins (menu rows come first).
    seen: dict[str, PermissionDef] = {}
    for d in defs:
        seen.setdefault(d.code, d)
    return list(seen.values())


DEFAULT_PERMISSIONS: list[PermissionDef] = _dedupe(MENU_PERMISSIONS + FEATURE_PERMISSIONS)

PERMISSIONS_BY_CODE: dict[str, PermissionDef] = {p.code: p for p in DEFAULT_PERMISSIONS}


# ── Role → default permissions ──────────────────────────────

_BASE_MENUS = [
    "dashboard:read:own", "announcements:read:own",
    "attendance:read:own", "leave:read:own", "workflow:read:own",
]
_SELF_SERVICE = [
    "attendance:create:own", "leave:create:own", "workflow:create:own",
]

ROLE_PERMISSION_MAP: dict[str, list[str]] = {
    "employee": [
        *_BASE_MENUS, "members:read:own",
        *_SELF_SERVICE,
        "payroll:read:own", "members:read:team",
    ],
    "manager": [
        *_BASE_MENUS, "users:read:own", "members:read:own",
        "approval:read:own", "evaluation:read:own",
        *_SELF_SERVICE,
        "attendance:read:team", "attendance:approve:team",
        "leave:read:team", "leave:approve:team",
        "workflow:read:team",
        "approval:approve:team",
        "payroll:read:own", "payroll:read:team",
        "evaluation:read:team", "evaluation:create:team",
        "organization:read:company",
        "members:read:company",
    ],
    "executive": [
        *_BASE_MENUS, "users:read:own", "members:read:own",
        "approval:read:own", "payroll:read:own", "evaluation:read:own",
        "organization:read:own", "assets:read:own", "saas:read:own",
        "settings:read:own",
        *_SELF_SERVICE,
        "attendance:read:company", "leave:read:company", "workflow:read:company",
        "approval:approve:company",
        "payroll:read:company",
        "evaluation:read:company", "evaluation:approve:company",
        "organization:read:company", "organization:manage:company",
        "users:read:company",
        "members:read:company",
        "settings:manage:company",
    ],
    "hr": [
        *_BASE_MENUS, "users:read:own", "members:read:own",
        "approval:read:own", "payroll:read:own", "evaluation:read:own",
        "organization:read:own", "scheduled_changes:read:own",
        "legal_updates:read:own", "announcements_admin:read:own",
        "assets:read:own", "saas:read:own", "onboarding:read:own",
        "settings:read:own", "health:read:own",
        "users:create:company", "users:read:company",
        "users:update:company", "users:delete:company",
        *_SELF_SERVICE,
        "attendance:read:company", "attendance:update:company",
        "leave:read:company", "leave:approve:team",
        "workflow:read:company",
        "approval:approve:team",
        "payroll:read:company", "payroll:create:company", "payroll:update:company",
        "evaluation:read:company", "evaluation:approve:company",
        "organization:read:company", "organization:manage:company",
        "announcements_admin:create:company", "announcements_admin:update:company",
        "announcements_admin:delete:company",
        "assets:create:company", "assets:update:company", "assets:delete:company",
        "saas:manage:company",
        "onboarding:manage:company",
        "scheduled_changes:manage:company",
        "legal_updates:read:company", "legal_updates:manage:company",
        "health:read:company", "health:manage:company",
        "members:read:company",
        "settings:manage:company",
    ],
    "admin": [
        *_BASE_MENUS, "members:read:own", "organization:read:own",
        "legal_updates:read:own", "announcements_admin:read:own",
        "assets:read:own", "saas:read:own", "settings:read:own",
        "audit:read:own", "health:read:own",
        "users:create:company", "users:read:company",
        "users:update:company", "users:delete:company",
        *_SELF_SERVICE,
        "attendance:read:company", "attendance:update:company",
        "leave:read:company", "workflow:read:company",
        "organization:read:company", "organization:manage:company",
        "announcements_admin:create:company", "announcements_admin:update:company",
        "announcements_admin:delete:company",
        "assets:create:company", "assets:update:company", "assets:delete:company",
        "saas:manage:company",
        "settings:manage:company",
        "audit:read:company",
        "legal_updates:read:company", "legal_updates:manage:company",
        "health:read:company", "health:manage:company",
        "members:read:company",
        "payroll:read:own",
    ],
    "applicant": [
        *_BASE_MENUS, "onboarding:read:own",
        *_SELF_SERVICE,
    ],
}


def menu_key_for(code: str) -> str | None:
    """Menu key unlocked by `code` in the default catalog, if any."""
    perm = PERMISSIONS_BY_CODE.get(code)
    if perm is None or perm.category != MENU:
        return None
    return perm.menu_key
