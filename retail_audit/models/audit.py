"""
Retail Audit Platform
Audit domain model.

Models:
    - Audit:        one checklist execution at one store
    - Visit:        non-scored sibling (training, follow-up, other)
    - AuditScore:   one row per (audit, criterion), upserted
    - AuditComment: append-only discussion thread, optionally internal

Status vocabulary:
    The domain works with the five-step ``AuditStatus`` enum.  The legacy
    storage/export vocabulary is coarser (SCHEDULED, IN_PROGRESS, COMPLETED,
    CANCELLED) and SUBMITTED/ENDED/CLOSED all collapse to COMPLETED.  The
    ``status`` column keeps the full numeric value; the coarse value is only
    ever produced through ``to_storage_status`` and exposed as
    ``storage_status`` for consumers of the legacy vocabulary.
"""

from datetime import datetime, timezone
from enum import IntEnum

from retail_audit.models import db


class AuditStatus(IntEnum):
    NEW = 1
    IN_PROGRESS = 2
    SUBMITTED = 3
    ENDED = 4
    CLOSED = 5
    CANCELLED = 6


TERMINAL_STATUSES = frozenset({AuditStatus.CLOSED, AuditStatus.CANCELLED})

# ── Storage vocabulary adapter ───────────────────────────────────────────────

STORAGE_SCHEDULED = "SCHEDULED"
STORAGE_IN_PROGRESS = "IN_PROGRESS"
STORAGE_COMPLETED = "COMPLETED"
STORAGE_CANCELLED = "CANCELLED"

_TO_STORAGE = {
    AuditStatus.NEW: STORAGE_SCHEDULED,
    AuditStatus.IN_PROGRESS: STORAGE_IN_PROGRESS,
    AuditStatus.SUBMITTED: STORAGE_COMPLETED,
    AuditStatus.ENDED: STORAGE_COMPLETED,
    AuditStatus.CLOSED: STORAGE_COMPLETED,
    AuditStatus.CANCELLED: STORAGE_CANCELLED,
}

# COMPLETED is ambiguous; legacy rows are read back as ENDED (validated
# but not yet filed) so a supervisor can still close them.
_FROM_STORAGE = {
    STORAGE_SCHEDULED: AuditStatus.NEW,
    STORAGE_IN_PROGRESS: AuditStatus.IN_PROGRESS,
    STORAGE_COMPLETED: AuditStatus.ENDED,
    STORAGE_CANCELLED: AuditStatus.CANCELLED,
}

STORAGE_STATUSES = frozenset(_FROM_STORAGE)


def to_storage_status(status) -> str:
    """Map a domain status to the coarse storage vocabulary."""
    return _TO_STORAGE[AuditStatus(status)]


def from_storage_status(value: str) -> AuditStatus:
    """Map a storage value back to a domain status (lossy for COMPLETED)."""
    try:
        return _FROM_STORAGE[str(value).strip().upper()]
    except KeyError:
        raise ValueError(f"Unknown storage status: {value!r}") from None


def coerce_status(value) -> AuditStatus:
    """Accept an int, a numeric string, an enum name or a storage value."""
    if isinstance(value, AuditStatus):
        return value
    if isinstance(value, int):
        return AuditStatus(value)
    text = str(value).strip().upper()
    if text.isdigit():
        return AuditStatus(int(text))
    if text in AuditStatus.__members__:
        return AuditStatus[text]
    return from_storage_status(text)


# ── Visit types ──────────────────────────────────────────────────────────────

VISIT_TYPES = frozenset({"AUDITORIA", "FORMACAO", "ACOMPANHAMENTO", "OUTROS"})


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Audit(db.Model):
    """
    Audit execution bound to a store, a performer and a checklist.

    ``user_id`` is who performs it (DOT or Aderente); ``created_by`` is who
    scheduled it.  ``score`` is frozen at submission.  Cancellation is a
    status, never a delete.
    """

    __tablename__ = "audits"
    __table_args__ = (
        db.Index("idx_audit_store", "store_id"),
        db.Index("idx_audit_user", "user_id"),
        db.Index("idx_audit_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(
        db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Performer (DOT or Aderente)",
    )
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="RESTRICT"), nullable=False,
    )
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
        comment="Scheduler (AMONT, DOT or the Aderente itself)",
    )
    dtstart = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    dtend = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.Integer, nullable=False, default=int(AuditStatus.NEW))
    score = db.Column(db.Float, nullable=True, comment="Percentage frozen at submit")
    auditorcomments = db.Column(db.Text, nullable=True)
    ownercomments = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    store = db.relationship("Store", foreign_keys=[store_id])
    performer = db.relationship("User", foreign_keys=[user_id])
    checklist = db.relationship("Checklist", foreign_keys=[checklist_id])

    @property
    def audit_status(self) -> AuditStatus:
        return AuditStatus(self.status)

    @property
    def storage_status(self) -> str:
        return to_storage_status(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "checklist_id": self.checklist_id,
            "created_by": self.created_by,
            "dtstart": _iso(self.dtstart),
            "dtend": _iso(self.dtend),
            "status": self.status,
            "status_name": self.audit_status.name,
            "storage_status": self.storage_status,
            "score": self.score,
            "auditorcomments": self.auditorcomments,
            "ownercomments": self.ownercomments,
            "submitted_at": _iso(self.submitted_at),
        }

    def __repr__(self) -> str:
        return f"<Audit #{self.id} store={self.store_id} status={self.audit_status.name}>"


class Visit(db.Model):
    """Non-scored visit; shares the status enum but never uses SUBMITTED."""

    __tablename__ = "visits"

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(
        db.Integer, db.ForeignKey("stores.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    type = db.Column(db.String(30), nullable=False, default="OUTROS")
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    dtstart = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    dtend = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.Integer, nullable=False, default=int(AuditStatus.NEW))
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    @property
    def storage_status(self) -> str:
        return to_storage_status(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "dtstart": _iso(self.dtstart),
            "dtend": _iso(self.dtend),
            "status": self.status,
            "status_name": AuditStatus(self.status).name,
            "storage_status": self.storage_status,
            "created_by": self.created_by,
        }


class AuditScore(db.Model):
    """
    Score of one criterion within one audit.

    ``score``: None = unscored, 0 = Not Applicable, 1..5 = rated.
    """

    __tablename__ = "audit_scores"
    __table_args__ = (
        db.UniqueConstraint("audit_id", "criteria_id", name="uq_audit_score_criterion"),
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    criteria_id = db.Column(
        db.Integer, db.ForeignKey("criteria.id", ondelete="CASCADE"), nullable=False,
    )
    score = db.Column(db.Integer, nullable=True)
    comment = db.Column(db.Text, nullable=True)
    photos = db.Column(db.JSON, nullable=False, default=list)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "criteria_id": self.criteria_id,
            "score": self.score,
            "comment": self.comment,
            "photos": list(self.photos or []),
        }


class AuditComment(db.Model):
    """Append-only discussion entry; internal entries are DOT-tier only."""

    __tablename__ = "audit_comments"

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    user_role = db.Column(db.String(20), nullable=True, comment="Author role snapshot")
    content = db.Column(db.Text, nullable=False)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "user_id": self.user_id,
            "user_role": self.user_role,
            "content": self.content,
            "is_internal": self.is_internal,
            "created_at": _iso(self.created_at),
        }
