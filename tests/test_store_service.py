"""
Store Service Tests:
  - duplicate store codes / user emails → ConflictError
  - DOT assignment overwrite and derived store sets
  - 1:1 Aderente binding (moving an Aderente releases the old store)
"""

import pytest

from retail_audit.core.exceptions import ConflictError, NotFoundError, ValidationError
from retail_audit.models import db
from retail_audit.models.activity_log import ActivityLog
from retail_audit.services import store_service
from retail_audit.services.permission import PermissionDenied, SessionContext


def _ctx(user):
    return SessionContext.build(user.id, user.roles)


def _store(ctx, code):
    store = store_service.create_store(ctx, codehex=code, brand="Intermarché", city="Braga")
    db.session.commit()
    return store


class TestStores:

    def test_duplicate_code_conflicts(self, people):
        ctx = _ctx(people["amont"])
        _store(ctx, "B200")
        with pytest.raises(ConflictError) as exc:
            store_service.create_store(ctx, codehex="B200")
        assert exc.value.field == "codehex"

    def test_rename_onto_existing_code_conflicts(self, people):
        ctx = _ctx(people["amont"])
        _store(ctx, "B200")
        other = _store(ctx, "B201")
        with pytest.raises(ConflictError):
            store_service.update_store(ctx, other.id, codehex="B200")

    def test_blank_code_rejected(self, people):
        with pytest.raises(ValidationError):
            store_service.create_store(_ctx(people["amont"]), codehex="  ")

    def test_dot_cannot_create_store(self, people):
        with pytest.raises(PermissionDenied):
            store_service.create_store(_ctx(people["dot"]), codehex="C300")

    def test_missing_store(self):
        with pytest.raises(NotFoundError):
            store_service.get_store(404)


class TestUsers:

    def test_duplicate_email_conflicts(self, people):
        with pytest.raises(ConflictError) as exc:
            store_service.create_user(
                _ctx(people["admin"]), email="DOT@example.com", roles=["DOT"],
            )
        assert exc.value.field == "email"

    def test_create_normalises_roles(self, people):
        user = store_service.create_user(
            _ctx(people["admin"]), email="new.dot@example.com", roles="dot, aderente",
        )
        assert user.roles == ["DOT", "ADERENTE"]

    def test_unknown_role_rejected(self, people):
        with pytest.raises(ValidationError):
            store_service.create_user(
                _ctx(people["admin"]), email="x@example.com", roles=["MANAGER"],
            )

    def test_only_admin_manages_users(self, people):
        with pytest.raises(PermissionDenied):
            store_service.create_user(_ctx(people["amont"]), email="y@example.com")

    def test_dots_for_amont(self, people):
        dots = store_service.get_dots_for_amont(people["amont"].id)
        assert [u.id for u in dots] == [people["dot"].id]


class TestAssignments:

    def test_assign_dot_overwrites(self, people, store):
        ctx = _ctx(people["amont"])
        other_dot = store_service.create_user(
            _ctx(people["admin"]), email="dot2@example.com", roles=["DOT"],
        )
        store_service.assign_dot_to_store(ctx, store.id, other_dot.id)
        assert store.dot_user_id == other_dot.id
        assert store_service.get_stores_for_dot(people["dot"].id) == []
        assert [s.id for s in store_service.get_stores_for_dot(other_dot.id)] == [store.id]

    def test_assign_dot_requires_dot_role(self, people, store):
        with pytest.raises(ValidationError):
            store_service.assign_dot_to_store(_ctx(people["amont"]), store.id, people["aderente"].id)

    def test_moving_aderente_releases_previous_store(self, people, store):
        ctx = _ctx(people["amont"])
        target = _store(ctx, "B900")
        store_service.assign_aderente_to_store(ctx, target.id, people["aderente"].id)
        db.session.commit()
        assert target.aderente_id == people["aderente"].id
        assert store.aderente_id is None
        assert store_service.get_store_for_aderente(people["aderente"].id).id == target.id

    def test_assignment_is_logged(self, people, store):
        ctx = _ctx(people["amont"])
        store_service.assign_aderente_to_store(ctx, store.id, None)
        log = ActivityLog.query.filter_by(action="store.assign_aderente").one()
        assert log.diff["aderente_id"] == {"old": people["aderente"].id, "new": None}

    def test_dot_cannot_assign(self, people, store):
        with pytest.raises(PermissionDenied):
            store_service.assign_dot_to_store(_ctx(people["dot"]), store.id, people["dot"].id)
