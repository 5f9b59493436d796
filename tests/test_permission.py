"""
Role & Capability Resolver Tests:
  - capability union across multi-role users
  - default dashboard precedence
  - contextual audit checks (edit, delete, submit, approve)
  - action status ownership for Aderentes
  - SessionContext construction from raw header values
"""

import pytest

from retail_audit.models.audit import AuditStatus
from retail_audit.services.permission import (
    ANONYMOUS,
    PermissionDenied,
    SessionContext,
    can_add_internal_comments,
    can_approve_audit,
    can_assign_stores,
    can_close_audit,
    can_create_actions,
    can_create_audit,
    can_delete_audit,
    can_edit_audit,
    can_edit_audit_date,
    can_manage_actions,
    can_manage_users,
    can_submit_audit,
    can_update_action_status,
    check_capability,
    get_capabilities,
    get_default_dashboard,
)


def _ctx(user_id=1, *roles):
    return SessionContext.build(user_id, list(roles))


class TestCapabilityMatrix:

    def test_dot_and_amont_get_the_union(self):
        ctx = _ctx(1, "DOT", "AMONT")
        assert can_create_actions(ctx)      # DOT only
        assert can_close_audit(ctx)         # AMONT only
        assert can_assign_stores(ctx)
        assert not can_manage_users(ctx)

    def test_aderente_cannot_create_audits(self):
        ctx = _ctx(2, "ADERENTE")
        assert not can_create_audit(ctx)
        assert not can_create_actions(ctx)
        assert can_manage_actions(ctx)

    def test_admin_has_everything_but_aderente_dashboard(self):
        caps = get_capabilities(_ctx(3, "ADMIN"))
        assert caps["can_manage_users"]
        assert caps["can_add_internal_comments"]
        assert caps["can_access_dot_dashboard"]
        assert not caps["can_access_aderente_dashboard"]

    def test_internal_comments_are_dot_tier(self):
        assert can_add_internal_comments(_ctx(1, "DOT"))
        assert not can_add_internal_comments(_ctx(1, "AMONT"))
        assert not can_add_internal_comments(_ctx(1, "ADERENTE"))

    @pytest.mark.parametrize("roles", [(), ("AUDITOR",), ("USER", "LEADER")])
    def test_legacy_or_missing_roles_grant_nothing(self, roles):
        caps = get_capabilities(_ctx(9, *roles))
        assert not any(v for k, v in caps.items() if k != "default_dashboard")

    def test_anonymous_is_denied(self):
        assert not can_create_audit(ANONYMOUS)
        assert not can_manage_actions(ANONYMOUS)
        assert get_default_dashboard(ANONYMOUS) == "/"

    def test_check_capability_raises(self):
        with pytest.raises(PermissionDenied) as exc:
            check_capability(_ctx(5, "ADERENTE"), "create_audit")
        assert exc.value.capability == "create_audit"
        assert exc.value.user_id == 5


class TestDefaultDashboard:

    @pytest.mark.parametrize("roles,expected", [
        (("ADMIN", "DOT"), "/admin/dashboard"),
        (("DOT", "AMONT"), "/amont/dashboard"),
        (("DOT", "ADERENTE"), "/aderente/dashboard"),
        (("DOT",), "/dashboard"),
        (("SUPERVISOR",), "/"),
    ])
    def test_precedence(self, roles, expected):
        assert get_default_dashboard(_ctx(1, *roles)) == expected


class TestAuditChecks:

    def test_performer_edits_own_audit_before_submit(self):
        dot = _ctx(10, "DOT")
        assert can_edit_audit(dot, AuditStatus.IN_PROGRESS, owner_id=10)
        assert not can_edit_audit(dot, AuditStatus.IN_PROGRESS, owner_id=11)
        assert not can_edit_audit(dot, AuditStatus.SUBMITTED, owner_id=10)

    def test_supervisor_edits_any_status(self):
        assert can_edit_audit(_ctx(1, "AMONT"), AuditStatus.ENDED, owner_id=10)

    def test_delete_only_by_admin_or_creating_dot(self):
        assert can_delete_audit(_ctx(1, "ADMIN"), created_by=99)
        assert can_delete_audit(_ctx(10, "DOT"), created_by=10)
        assert not can_delete_audit(_ctx(10, "DOT"), created_by=20)
        assert not can_delete_audit(_ctx(20, "AMONT"), created_by=20)

    def test_edit_date(self):
        assert can_edit_audit_date(_ctx(1, "AMONT"), created_by=2)
        assert can_edit_audit_date(_ctx(10, "DOT"), created_by=10)
        assert not can_edit_audit_date(_ctx(10, "DOT"), created_by=None)

    def test_submit_requires_performer_role_and_open_status(self):
        assert can_submit_audit(_ctx(10, "DOT"), AuditStatus.IN_PROGRESS, performer_id=10)
        assert can_submit_audit(_ctx(12, "ADERENTE"), AuditStatus.NEW, performer_id=12)
        assert not can_submit_audit(_ctx(10, "DOT"), AuditStatus.SUBMITTED, performer_id=10)
        assert not can_submit_audit(_ctx(1, "AMONT"), AuditStatus.IN_PROGRESS)

    def test_unassigned_audit_belongs_to_no_performer(self):
        assert not can_edit_audit(_ctx(10, "DOT"), AuditStatus.NEW, owner_id=None)
        assert not can_edit_audit(_ctx(12, "ADERENTE"), AuditStatus.IN_PROGRESS, owner_id=None)
        assert not can_submit_audit(_ctx(10, "DOT"), AuditStatus.IN_PROGRESS, performer_id=None)
        assert not can_submit_audit(_ctx(12, "ADERENTE"), AuditStatus.NEW, performer_id=None)
        assert can_edit_audit(_ctx(1, "AMONT"), AuditStatus.NEW, owner_id=None)

    def test_dot_approves_only_aderente_audits(self):
        dot = _ctx(10, "DOT")
        assert can_approve_audit(dot, performer_roles=["ADERENTE"])
        assert not can_approve_audit(dot, performer_roles=["DOT"])
        assert not can_approve_audit(dot, performer_roles=["DOT", "ADERENTE"])
        assert can_approve_audit(_ctx(1, "AMONT"), performer_roles=["DOT"])


class TestActionStatusOwnership:

    def test_aderente_limited_to_own_actions(self):
        ad = _ctx(12, "ADERENTE")
        assert can_update_action_status(ad, "Aderente")
        assert can_update_action_status(ad, "Both")
        assert not can_update_action_status(ad, "DOT")

    def test_dot_and_admin_update_any(self):
        assert can_update_action_status(_ctx(10, "DOT"), "Aderente")
        assert can_update_action_status(_ctx(1, "ADMIN"), "DOT")
        assert not can_update_action_status(_ctx(2, "AMONT"), "DOT")


class TestSessionContext:

    def test_build_normalises_header_values(self):
        ctx = SessionContext.build("7", " dot, amont ,DOT")
        assert ctx.user_id == 7
        assert ctx.roles == frozenset({"DOT", "AMONT"})
        assert ctx.primary_role == "AMONT"

    def test_build_with_bad_id_is_anonymous(self):
        ctx = SessionContext.build("abc", "ADMIN")
        assert ctx.is_anonymous
        assert not can_create_audit(ctx)
