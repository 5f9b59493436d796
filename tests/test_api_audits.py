"""
API tests - audits, scores, comments, actions, capabilities and error shape.
"""

import pytest

from retail_audit.models import db
from retail_audit.models.audit import AuditStatus
from retail_audit.models.user import User


def _h(user):
    return {"X-User-Id": str(user.id), "X-User-Roles": ",".join(user.roles)}


def _other_dot():
    user = User(email="dot2@example.com", fullname="Other Dot", roles=["DOT"])
    db.session.add(user)
    db.session.commit()
    return user


def _create_audit(client, people, store, performer="dot"):
    r = client.post(
        "/api/v1/audits",
        json={"store_id": store.id, "user_id": people[performer].id},
        headers=_h(people["amont"]),
    )
    assert r.status_code == 201, r.get_json()
    return r.get_json()


def _criteria_ids(client, people):
    r = client.get("/api/v1/checklists?tree=true", headers=_h(people["dot"]))
    tree = r.get_json()[0]
    return [
        c["id"]
        for section in tree["sections"]
        for item in section["items"]
        for c in item["criteria"]
    ]


def _score(client, people, audit_id, criteria_id, value, who="dot", **extra):
    return client.put(
        f"/api/v1/audits/{audit_id}/scores/{criteria_id}",
        json={"score": value, **extra},
        headers=_h(people[who]),
    )


def _transition(client, people, audit_id, action, who, **extra):
    return client.post(
        f"/api/v1/audits/{audit_id}/transition",
        json={"action": action, **extra},
        headers=_h(people[who]),
    )


class TestAuditEndpoints:

    def test_create_and_get(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        assert audit["status"] == AuditStatus.NEW
        assert audit["storage_status"] == "SCHEDULED"

        r = client.get(f"/api/v1/audits/{audit['id']}", headers=_h(people["dot"]))
        assert r.status_code == 200
        assert r.get_json()["available_transitions"] == ["start"]

    def test_anonymous_create_is_forbidden(self, client, people, store, checklist):
        r = client.post("/api/v1/audits", json={"store_id": store.id})
        assert r.status_code == 403
        assert r.get_json()["code"] == "ERR_FORBIDDEN"

    def test_missing_store_id(self, client, people):
        r = client.post("/api/v1/audits", json={}, headers=_h(people["amont"]))
        assert r.status_code == 400
        assert r.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_not_found(self, client, people):
        r = client.get("/api/v1/audits/999", headers=_h(people["dot"]))
        assert r.status_code == 404
        assert r.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_filters_by_status_name(self, client, people, store, checklist):
        _create_audit(client, people, store)
        r = client.get("/api/v1/audits?status=SCHEDULED", headers=_h(people["amont"]))
        assert len(r.get_json()) == 1
        r = client.get("/api/v1/audits?status=CLOSED", headers=_h(people["amont"]))
        assert r.get_json() == []

    def test_bad_status_filter(self, client, people):
        r = client.get("/api/v1/audits?status=ARCHIVED", headers=_h(people["amont"]))
        assert r.status_code == 422


class TestScoreAndSubmitFlow:

    def test_full_flow(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        ids = _criteria_ids(client, people)

        assert _score(client, people, audit["id"], ids[0], 1).status_code == 200
        assert _score(client, people, audit["id"], ids[1], 5).status_code == 200
        assert _score(client, people, audit["id"], ids[2], 0).status_code == 200

        summary = client.get(f"/api/v1/audits/{audit['id']}/summary", headers=_h(people["dot"]))
        assert summary.get_json()["total"]["percentage"] == 60.0

        r = _transition(client, people, audit["id"], "submit", "dot")
        assert r.status_code == 200
        body = r.get_json()
        assert body["new_status"] == AuditStatus.SUBMITTED
        assert body["score"] == pytest.approx(60.0)
        assert len(body["generated_action_ids"]) == 1

        r = _score(client, people, audit["id"], ids[0], 5)
        assert r.status_code == 409
        assert r.get_json()["code"] == "ERR_CONFLICT_STATE"

        r = client.get(f"/api/v1/audits/{audit['id']}/history", headers=_h(people["dot"]))
        assert r.get_json()["statuses"] == [1, 2, 3]

    def test_invalid_score_is_422(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        ids = _criteria_ids(client, people)
        r = _score(client, people, audit["id"], ids[0], 9)
        assert r.status_code == 422

    def test_close_from_in_progress_flags_permission(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        ids = _criteria_ids(client, people)
        _score(client, people, audit["id"], ids[0], 3)
        r = _transition(client, people, audit["id"], "close", "dot")
        assert r.status_code == 409
        assert r.get_json()["details"]["permission_denied"] is True

    def test_other_dot_closing_flags_permission_on_both_paths(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        ids = _criteria_ids(client, people)
        _score(client, people, audit["id"], ids[0], 3)
        stranger = _other_dot()

        r = client.post(
            f"/api/v1/audits/{audit['id']}/transition",
            json={"action": "close"}, headers=_h(stranger),
        )
        assert r.status_code == 409
        assert r.get_json()["details"]["permission_denied"] is True

        r = client.patch(
            f"/api/v1/audits/{audit['id']}", json={"status": "CLOSED"}, headers=_h(stranger),
        )
        assert r.status_code == 409
        assert r.get_json()["code"] == "ERR_CONFLICT_STATE"
        assert r.get_json()["details"]["permission_denied"] is True

        r = client.get(f"/api/v1/audits/{audit['id']}", headers=_h(people["dot"]))
        assert r.get_json()["status"] == AuditStatus.IN_PROGRESS

    def test_unassigned_audit_rejects_aderente_scores(self, client, people, store, checklist):
        r = client.post(
            "/api/v1/audits",
            json={"store_id": store.id, "user_id": None},
            headers=_h(people["amont"]),
        )
        assert r.status_code == 201
        audit = r.get_json()
        ids = _criteria_ids(client, people)

        r = _score(client, people, audit["id"], ids[0], 1, who="aderente")
        assert r.status_code == 403
        r = _transition(client, people, audit["id"], "submit", "aderente")
        assert r.status_code == 409
        assert r.get_json()["details"]["permission_denied"] is True

    def test_patch_status_routes_through_state_machine(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        r = client.patch(
            f"/api/v1/audits/{audit['id']}", json={"status": "IN_PROGRESS"},
            headers=_h(people["dot"]),
        )
        assert r.status_code == 200
        assert r.get_json()["status"] == AuditStatus.IN_PROGRESS

        r = client.patch(
            f"/api/v1/audits/{audit['id']}", json={"status": "CLOSED"},
            headers=_h(people["amont"]),
        )
        assert r.status_code == 409


class TestComments:

    def test_internal_comments_hidden_from_aderente(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        url = f"/api/v1/audits/{audit['id']}/comments"
        client.post(url, json={"content": "Public note"}, headers=_h(people["dot"]))
        client.post(url, json={"content": "DOT only", "is_internal": True}, headers=_h(people["dot"]))

        seen_by_dot = client.get(url, headers=_h(people["dot"])).get_json()
        seen_by_aderente = client.get(url, headers=_h(people["aderente"])).get_json()
        assert len(seen_by_dot) == 2
        assert [c["content"] for c in seen_by_aderente] == ["Public note"]

    def test_aderente_internal_flag_ignored(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        r = client.post(
            f"/api/v1/audits/{audit['id']}/comments",
            json={"content": "Hi", "is_internal": True},
            headers=_h(people["aderente"]),
        )
        assert r.status_code == 201
        assert r.get_json()["is_internal"] is False
        assert r.get_json()["user_role"] == "ADERENTE"


class TestActionEndpoints:

    def test_generate_and_complete(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        ids = _criteria_ids(client, people)
        _score(client, people, audit["id"], ids[0], 2)

        r = client.post(
            f"/api/v1/audits/{audit['id']}/generate-actions", headers=_h(people["dot"]),
        )
        assert r.status_code == 201
        action = r.get_json()["created"][0]

        r = client.post(
            f"/api/v1/audits/{audit['id']}/generate-actions", headers=_h(people["dot"]),
        )
        assert r.status_code == 200
        assert r.get_json()["count"] == 0

        r = client.post(
            f"/api/v1/actions/{action['id']}/status",
            json={"status": "completed"},
            headers=_h(people["aderente"]),
        )
        assert r.status_code == 200
        assert r.get_json()["progress"] == 100
        assert r.get_json()["completed_date"] is not None

    def test_manual_action_due_date(self, client, people, store, checklist):
        audit = _create_audit(client, people, store)
        r = client.post(
            f"/api/v1/audits/{audit['id']}/actions",
            json={"title": "Fix lights", "due_date": "31.12.2030", "responsible": "DOT"},
            headers=_h(people["dot"]),
        )
        assert r.status_code == 201
        assert r.get_json()["due_date"].startswith("2030-12-31")


class TestVisitEndpoints:

    def _create_visit(self, client, people, store):
        r = client.post(
            "/api/v1/visits",
            json={
                "store_id": store.id,
                "user_id": people["dot"].id,
                "type": "acompanhamento",
                "title": "Follow-up",
            },
            headers=_h(people["amont"]),
        )
        assert r.status_code == 201, r.get_json()
        return r.get_json()

    def test_edit_open_visit(self, client, people, store):
        visit = self._create_visit(client, people, store)
        r = client.patch(
            f"/api/v1/visits/{visit['id']}", json={"title": "Follow-up #2"},
            headers=_h(people["dot"]),
        )
        assert r.status_code == 200
        assert r.get_json()["title"] == "Follow-up #2"

    def test_closed_visit_is_read_only(self, client, people, store):
        visit = self._create_visit(client, people, store)
        for action, who in (("complete", "dot"), ("close", "amont")):
            r = client.post(
                f"/api/v1/visits/{visit['id']}/transition",
                json={"action": action}, headers=_h(people[who]),
            )
            assert r.status_code == 200, r.get_json()

        r = client.patch(
            f"/api/v1/visits/{visit['id']}", json={"title": "Rewritten"},
            headers=_h(people["amont"]),
        )
        assert r.status_code == 409
        assert r.get_json()["code"] == "ERR_CONFLICT_STATE"

        r = client.get(f"/api/v1/visits/{visit['id']}", headers=_h(people["amont"]))
        assert r.get_json()["title"] == "Follow-up"


class TestCapabilities:

    def test_me_capabilities(self, client, people):
        r = client.get("/api/v1/me/capabilities", headers=_h(people["dot"]))
        body = r.get_json()
        assert body["default_dashboard"] == "/dashboard"
        assert body["capabilities"]["can_create_audit"] is True
        assert body["capabilities"]["can_close_audit"] is False

    def test_health(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        r = client.get("/api/v1/health/live")
        assert r.get_json()["checks"]["database"]["status"] == "ok"
        assert "X-Request-ID" in r.headers
