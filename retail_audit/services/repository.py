"""
Visit/Audit Repository - the persistence boundary.

Thin CRUD over the SQLAlchemy models, shaped after the logical operations
the lifecycle consumes (get/create/update audit, score upsert, action CRUD,
checklists, comments, visits).  No business rules live here: permission
and state checks belong to the calling services.

Conventions:
    - Lookups by id raise NotFoundError on a miss; list queries return [].
    - Writes ``flush`` only; the caller owns the commit.
    - Score writes upsert on (audit_id, criteria_id); last write wins.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from retail_audit.core.exceptions import NotFoundError, ValidationError
from retail_audit.models import db
from retail_audit.models.action_plan import ActionPlan
from retail_audit.models.audit import (
    Audit,
    AuditComment,
    AuditScore,
    AuditStatus,
    Visit,
    VISIT_TYPES,
)
from retail_audit.models.checklist import Checklist
from retail_audit.models.user import Store, User

logger = logging.getLogger(__name__)

UNSET = object()

AUDIT_UPDATABLE_FIELDS = frozenset({
    "status", "dtstart", "dtend", "score", "auditorcomments", "ownercomments", "submitted_at",
})
VISIT_UPDATABLE_FIELDS = frozenset({"title", "description", "status", "dtstart", "dtend"})


def _get_or_raise(model, pk, label=None):
    obj = db.session.get(model, pk) if pk is not None else None
    if obj is None:
        raise NotFoundError(label or model.__name__, pk)
    return obj


# ── Audits ───────────────────────────────────────────────────────────────────


def get_audit_by_id(audit_id: int) -> Audit:
    return _get_or_raise(Audit, audit_id)


def list_audits(
    *,
    user_id: int | None = None,
    store_id: int | None = None,
    status: int | None = None,
) -> list[Audit]:
    stmt = select(Audit)
    if user_id is not None:
        stmt = stmt.where(Audit.user_id == user_id)
    if store_id is not None:
        stmt = stmt.where(Audit.store_id == store_id)
    if status is not None:
        stmt = stmt.where(Audit.status == int(status))
    stmt = stmt.order_by(Audit.dtstart.desc(), Audit.id.desc())
    return list(db.session.execute(stmt).scalars().all())


def create_audit(
    *,
    store_id: int,
    user_id: int | None,
    checklist_id: int | None = None,
    dtstart=None,
    status=AuditStatus.NEW,
    created_by: int | None = None,
) -> Audit:
    """Insert a scheduled audit.  Falls back to the first checklist when none is given."""
    _get_or_raise(Store, store_id)
    if user_id is not None:
        _get_or_raise(User, user_id)
    if checklist_id is None:
        checklist = get_checklist()
        if checklist is None:
            raise ValidationError("No checklist available to bind the audit to")
        checklist_id = checklist.id
    else:
        _get_or_raise(Checklist, checklist_id)

    audit = Audit(
        store_id=store_id,
        user_id=user_id,
        checklist_id=checklist_id,
        status=int(status),
        created_by=created_by,
    )
    if dtstart is not None:
        audit.dtstart = dtstart
    db.session.add(audit)
    db.session.flush()
    return audit


def update_audit(audit_id: int, **partial) -> Audit:
    """Write the given fields as-is.  Unknown fields are a ValidationError."""
    unknown = set(partial) - AUDIT_UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields not updatable on an audit: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    audit = get_audit_by_id(audit_id)
    for field, value in partial.items():
        setattr(audit, field, int(value) if field == "status" else value)
    db.session.flush()
    return audit


def delete_audit(audit_id: int) -> None:
    audit = get_audit_by_id(audit_id)
    for model in (ActionPlan, AuditScore, AuditComment):
        model.query.filter_by(audit_id=audit.id).delete(synchronize_session="fetch")
    db.session.delete(audit)
    db.session.flush()


# ── Scores ───────────────────────────────────────────────────────────────────


def get_scores(audit_id: int) -> list[AuditScore]:
    get_audit_by_id(audit_id)
    return (
        AuditScore.query
        .filter_by(audit_id=audit_id)
        .order_by(AuditScore.criteria_id.asc())
        .all()
    )


def get_score_by_id(score_id: int) -> AuditScore:
    return _get_or_raise(AuditScore, score_id)


def _apply_score(row: AuditScore, value, comment, photos) -> None:
    row.score = value
    if comment is not UNSET:
        row.comment = comment
    if photos is not UNSET:
        row.photos = list(photos or [])


def upsert_score(
    audit_id: int,
    criteria_id: int,
    value,
    comment=UNSET,
    photos=UNSET,
) -> AuditScore:
    """Insert or overwrite the score row for (audit_id, criteria_id)."""
    row = AuditScore.query.filter_by(audit_id=audit_id, criteria_id=criteria_id).first()
    if row is None:
        row = AuditScore(audit_id=audit_id, criteria_id=criteria_id, photos=[])
        db.session.add(row)
    _apply_score(row, value, comment, photos)
    db.session.flush()
    return row


def update_score(score_id: int, value, comment=UNSET, photos=UNSET) -> AuditScore:
    row = get_score_by_id(score_id)
    _apply_score(row, value, comment, photos)
    db.session.flush()
    return row


# ── Actions ──────────────────────────────────────────────────────────────────


def get_actions(audit_id: int | None = None) -> list[ActionPlan]:
    query = ActionPlan.query
    if audit_id is not None:
        query = query.filter_by(audit_id=audit_id)
    return query.order_by(ActionPlan.due_date.asc(), ActionPlan.id.asc()).all()


def get_action_by_id(action_id: int) -> ActionPlan:
    return _get_or_raise(ActionPlan, action_id)


def create_action(**fields) -> ActionPlan:
    get_audit_by_id(fields.get("audit_id"))
    action = ActionPlan(**fields)
    db.session.add(action)
    db.session.flush()
    return action


def update_action(action: ActionPlan) -> ActionPlan:
    db.session.add(action)
    db.session.flush()
    return action


def delete_action(action_id: int) -> None:
    db.session.delete(get_action_by_id(action_id))
    db.session.flush()


# ── Checklists ───────────────────────────────────────────────────────────────


def get_checklist() -> Checklist | None:
    """The default checklist (lowest id), or None when none is seeded."""
    return Checklist.query.order_by(Checklist.id.asc()).first()


def get_checklists() -> list[Checklist]:
    return Checklist.query.order_by(Checklist.id.asc()).all()


def get_checklist_by_id(checklist_id: int) -> Checklist:
    return _get_or_raise(Checklist, checklist_id)


# ── Comments ─────────────────────────────────────────────────────────────────


def get_comments(audit_id: int) -> list[AuditComment]:
    get_audit_by_id(audit_id)
    return (
        AuditComment.query
        .filter_by(audit_id=audit_id)
        .order_by(AuditComment.created_at.asc(), AuditComment.id.asc())
        .all()
    )


def create_comment(
    *,
    audit_id: int,
    user_id: int | None,
    content: str,
    is_internal: bool = False,
    user_role: str | None = None,
) -> AuditComment:
    get_audit_by_id(audit_id)
    comment = AuditComment(
        audit_id=audit_id,
        user_id=user_id,
        content=content,
        is_internal=bool(is_internal),
        user_role=user_role,
    )
    db.session.add(comment)
    db.session.flush()
    return comment


# ── Visits ───────────────────────────────────────────────────────────────────


def get_visit_by_id(visit_id: int) -> Visit:
    return _get_or_raise(Visit, visit_id)


def list_visits(
    *,
    user_id: int | None = None,
    store_id: int | None = None,
    visit_type: str | None = None,
) -> list[Visit]:
    query = Visit.query
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if store_id is not None:
        query = query.filter_by(store_id=store_id)
    if visit_type:
        query = query.filter_by(type=visit_type.upper())
    return query.order_by(Visit.dtstart.desc(), Visit.id.desc()).all()


def create_visit(
    *,
    store_id: int,
    user_id: int | None,
    visit_type: str,
    title: str,
    description: str = "",
    dtstart=None,
    status=AuditStatus.NEW,
    created_by: int | None = None,
) -> Visit:
    _get_or_raise(Store, store_id)
    vtype = (visit_type or "").strip().upper()
    if vtype not in VISIT_TYPES:
        raise ValidationError(
            f"Invalid visit type '{visit_type}'",
            details={"type": sorted(VISIT_TYPES)},
        )
    if not (title or "").strip():
        raise ValidationError("title is required", details={"title": "required"})
    visit = Visit(
        store_id=store_id,
        user_id=user_id,
        type=vtype,
        title=title.strip(),
        description=description or "",
        status=int(status),
        created_by=created_by,
    )
    if dtstart is not None:
        visit.dtstart = dtstart
    db.session.add(visit)
    db.session.flush()
    return visit


def update_visit(visit_id: int, **partial) -> Visit:
    unknown = set(partial) - VISIT_UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields not updatable on a visit: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    visit = get_visit_by_id(visit_id)
    for field, value in partial.items():
        setattr(visit, field, int(value) if field == "status" else value)
    db.session.flush()
    return visit


def delete_visit(visit_id: int) -> None:
    db.session.delete(get_visit_by_id(visit_id))
    db.session.flush()
