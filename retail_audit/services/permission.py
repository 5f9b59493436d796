"""
Role & Capability Resolver.

Maps a caller's role set to a fixed table of allowed actions.  Every check
is a pure function of an explicit ``SessionContext`` (plus, for contextual
checks, the entity fields involved); nothing reads ambient session state.

Rules:
  - Capabilities are the union over all roles held (a DOT+AMONT user gets
    both sets), never just the top-priority role's.
  - Default-dashboard routing is the only place role priority applies:
    ADMIN > AMONT > ADERENTE > DOT.
  - ``can_*`` helpers never raise; they return False and nothing is granted
    by default.  ``check_capability`` is the raising variant for services.

Usage:
    from retail_audit.services.permission import SessionContext, can_create_audit

    ctx = SessionContext(user_id=7, roles=frozenset({"DOT"}))
    if can_create_audit(ctx):
        ...
"""

from __future__ import annotations

from dataclasses import dataclass

from retail_audit.models.audit import AuditStatus
from retail_audit.models.action_plan import RESPONSIBLE_ADERENTE, RESPONSIBLE_BOTH
from retail_audit.models.user import (
    ROLE_ADERENTE,
    ROLE_ADMIN,
    ROLE_AMONT,
    ROLE_DOT,
    normalize_roles,
)

# ── Capabilities ─────────────────────────────────────────────────────────────

CAP_CREATE_AUDIT = "create_audit"
CAP_CREATE_ACTIONS = "create_actions"
CAP_MANAGE_ACTIONS = "manage_actions"
CAP_VIEW_REPORTS = "view_reports"
CAP_IMPORT_AUDITS_CSV = "import_audits_csv"
CAP_MANAGE_USERS = "manage_users"
CAP_ASSIGN_STORES = "assign_stores"
CAP_CLOSE_AUDIT = "close_audit"
CAP_CANCEL_AUDIT = "cancel_audit"
CAP_APPROVE_AUDIT = "approve_audit"
CAP_ADD_INTERNAL_COMMENTS = "add_internal_comments"
CAP_DASHBOARD_ADMIN = "dashboard_admin"
CAP_DASHBOARD_AMONT = "dashboard_amont"
CAP_DASHBOARD_DOT = "dashboard_dot"
CAP_DASHBOARD_ADERENTE = "dashboard_aderente"

CAPABILITY_MATRIX: dict[str, frozenset[str]] = {
    ROLE_ADMIN: frozenset({
        CAP_CREATE_AUDIT, CAP_CREATE_ACTIONS, CAP_MANAGE_ACTIONS, CAP_VIEW_REPORTS,
        CAP_IMPORT_AUDITS_CSV, CAP_MANAGE_USERS, CAP_ASSIGN_STORES, CAP_CLOSE_AUDIT,
        CAP_CANCEL_AUDIT, CAP_APPROVE_AUDIT, CAP_ADD_INTERNAL_COMMENTS,
        CAP_DASHBOARD_ADMIN, CAP_DASHBOARD_AMONT, CAP_DASHBOARD_DOT,
    }),
    ROLE_AMONT: frozenset({
        CAP_CREATE_AUDIT, CAP_MANAGE_ACTIONS, CAP_VIEW_REPORTS, CAP_IMPORT_AUDITS_CSV,
        CAP_ASSIGN_STORES, CAP_CLOSE_AUDIT, CAP_CANCEL_AUDIT, CAP_APPROVE_AUDIT,
        CAP_DASHBOARD_AMONT,
    }),
    ROLE_DOT: frozenset({
        CAP_CREATE_AUDIT, CAP_CREATE_ACTIONS, CAP_MANAGE_ACTIONS,
        CAP_ADD_INTERNAL_COMMENTS, CAP_DASHBOARD_DOT,
    }),
    ROLE_ADERENTE: frozenset({
        CAP_MANAGE_ACTIONS, CAP_DASHBOARD_ADERENTE,
    }),
}

# Roles that approve, close and edit metadata across stores.
SUPERVISORY_ROLES = frozenset({ROLE_ADMIN, ROLE_AMONT})

# Roles that execute audits in the field.
PERFORMER_ROLES = frozenset({ROLE_DOT, ROLE_ADERENTE})

DASHBOARD_PRECEDENCE: tuple[tuple[str, str], ...] = (
    (ROLE_ADMIN, "/admin/dashboard"),
    (ROLE_AMONT, "/amont/dashboard"),
    (ROLE_ADERENTE, "/aderente/dashboard"),
    (ROLE_DOT, "/dashboard"),
)
FALLBACK_DASHBOARD = "/"


class PermissionDenied(Exception):
    """Raised when the caller lacks the capability for an action."""

    def __init__(self, user_id, capability: str):
        super().__init__(f"User {user_id} does not have permission for '{capability}'")
        self.user_id = user_id
        self.capability = capability


@dataclass(frozen=True)
class SessionContext:
    """Identity and role claim of the caller, trusted as supplied."""

    user_id: int | None
    roles: frozenset[str] = frozenset()

    @classmethod
    def build(cls, user_id, roles) -> "SessionContext":
        try:
            uid = int(user_id) if user_id not in (None, "") else None
        except (TypeError, ValueError):
            uid = None
        return cls(user_id=uid, roles=frozenset(normalize_roles(roles)))

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles) -> bool:
        return bool(self.roles & frozenset(roles))

    @property
    def primary_role(self) -> str | None:
        """Highest-precedence active role (used for comment role snapshots)."""
        for role, _ in DASHBOARD_PRECEDENCE:
            if role in self.roles:
                return role
        return None


ANONYMOUS = SessionContext(user_id=None)


# ── Generic checks ───────────────────────────────────────────────────────────


def get_capabilities_for_roles(roles) -> frozenset[str]:
    """Union of capabilities granted by every role in ``roles``."""
    granted: set[str] = set()
    for role in roles:
        granted |= CAPABILITY_MATRIX.get(role, frozenset())
    return frozenset(granted)


def has_capability(ctx: SessionContext | None, capability: str) -> bool:
    if ctx is None or ctx.is_anonymous:
        return False
    return capability in get_capabilities_for_roles(ctx.roles)


def check_capability(ctx: SessionContext | None, capability: str) -> None:
    """Assert capability; raise PermissionDenied if missing."""
    if not has_capability(ctx, capability):
        raise PermissionDenied(getattr(ctx, "user_id", None), capability)


def is_supervisor(ctx: SessionContext | None) -> bool:
    return ctx is not None and not ctx.is_anonymous and ctx.has_any_role(SUPERVISORY_ROLES)


# ── Audit capabilities ───────────────────────────────────────────────────────


def can_create_audit(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_CREATE_AUDIT)


def can_edit_audit(ctx: SessionContext | None, status, owner_id: int | None = None) -> bool:
    """Whether the caller may edit an audit in ``status``.

    Supervisors may always edit metadata.  DOT and Aderente performers may
    edit only before submission and only an audit assigned to them.
    """
    if ctx is None or ctx.is_anonymous:
        return False
    if is_supervisor(ctx):
        return True
    if not ctx.has_any_role(PERFORMER_ROLES):
        return False
    try:
        current = AuditStatus(int(status))
    except (TypeError, ValueError):
        return False
    if current >= AuditStatus.SUBMITTED:
        return False
    return owner_id is not None and owner_id == ctx.user_id


def can_edit_audit_date(ctx: SessionContext | None, created_by: int | None = None) -> bool:
    """Supervisors always; a DOT only for audits it scheduled itself."""
    if ctx is None or ctx.is_anonymous:
        return False
    if is_supervisor(ctx):
        return True
    if ctx.has_role(ROLE_DOT) and created_by:
        return ctx.user_id == created_by
    return False


def can_delete_audit(ctx: SessionContext | None, created_by: int | None = None) -> bool:
    """ADMIN always; a DOT only for audits it created (not AMONT-scheduled ones)."""
    if ctx is None or ctx.is_anonymous:
        return False
    if ctx.has_role(ROLE_ADMIN):
        return True
    if ctx.has_role(ROLE_DOT) and created_by:
        return ctx.user_id == created_by
    return False


def can_submit_audit(ctx: SessionContext | None, status, performer_id: int | None = None) -> bool:
    """Only the performer (DOT or Aderente) may finalize, before submission."""
    if ctx is None or ctx.is_anonymous:
        return False
    if not ctx.has_any_role(PERFORMER_ROLES):
        return False
    try:
        current = AuditStatus(int(status))
    except (TypeError, ValueError):
        return False
    if current not in (AuditStatus.NEW, AuditStatus.IN_PROGRESS):
        return False
    return performer_id is not None and performer_id == ctx.user_id


def can_approve_audit(ctx: SessionContext | None, performer_roles=()) -> bool:
    """AMONT/ADMIN approve anything; a DOT approves Aderente-performed audits."""
    if has_capability(ctx, CAP_APPROVE_AUDIT):
        return True
    performer = frozenset(normalize_roles(performer_roles))
    return (
        ctx is not None
        and not ctx.is_anonymous
        and ctx.has_role(ROLE_DOT)
        and ROLE_ADERENTE in performer
        and ROLE_DOT not in performer
    )


def can_close_audit(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_CLOSE_AUDIT)


def can_cancel_audit(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_CANCEL_AUDIT)


def can_view_audit(ctx: SessionContext | None) -> bool:
    return ctx is not None and not ctx.is_anonymous


# ── Actions, reports, admin ──────────────────────────────────────────────────


def can_create_actions(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_CREATE_ACTIONS)


def can_manage_actions(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_MANAGE_ACTIONS)


def can_update_action_status(ctx: SessionContext | None, responsible: str | None) -> bool:
    """ADMIN and DOT always; an Aderente only when the action is theirs."""
    if ctx is None or ctx.is_anonymous:
        return False
    if ctx.has_any_role({ROLE_ADMIN, ROLE_DOT}):
        return True
    if ctx.has_role(ROLE_ADERENTE):
        return responsible in (RESPONSIBLE_ADERENTE, RESPONSIBLE_BOTH)
    return False


def can_view_reports(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_VIEW_REPORTS)


def can_import_audits_csv(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_IMPORT_AUDITS_CSV)


def can_manage_users(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_MANAGE_USERS)


def can_assign_stores(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_ASSIGN_STORES)


def can_add_internal_comments(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_ADD_INTERNAL_COMMENTS)


# ── Dashboards ───────────────────────────────────────────────────────────────


def can_access_admin_dashboard(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_DASHBOARD_ADMIN)


def can_access_amont_dashboard(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_DASHBOARD_AMONT)


def can_access_dot_dashboard(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_DASHBOARD_DOT)


def can_access_aderente_dashboard(ctx: SessionContext | None) -> bool:
    return has_capability(ctx, CAP_DASHBOARD_ADERENTE)


def get_default_dashboard(ctx: SessionContext | None) -> str:
    """Routing target after login, first match in DASHBOARD_PRECEDENCE."""
    if ctx is None:
        return FALLBACK_DASHBOARD
    for role, path in DASHBOARD_PRECEDENCE:
        if ctx.has_role(role):
            return path
    return FALLBACK_DASHBOARD


def get_capabilities(ctx: SessionContext | None) -> dict:
    """Boolean capability table for UI gating (non-contextual checks only)."""
    return {
        "can_create_audit": can_create_audit(ctx),
        "can_create_actions": can_create_actions(ctx),
        "can_manage_actions": can_manage_actions(ctx),
        "can_view_reports": can_view_reports(ctx),
        "can_import_audits_csv": can_import_audits_csv(ctx),
        "can_manage_users": can_manage_users(ctx),
        "can_assign_stores": can_assign_stores(ctx),
        "can_close_audit": can_close_audit(ctx),
        "can_cancel_audit": can_cancel_audit(ctx),
        "can_add_internal_comments": can_add_internal_comments(ctx),
        "can_access_admin_dashboard": can_access_admin_dashboard(ctx),
        "can_access_amont_dashboard": can_access_amont_dashboard(ctx),
        "can_access_dot_dashboard": can_access_dot_dashboard(ctx),
        "can_access_aderente_dashboard": can_access_aderente_dashboard(ctx),
        "default_dashboard": get_default_dashboard(ctx),
    }
