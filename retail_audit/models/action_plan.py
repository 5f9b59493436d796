"""
Retail Audit Platform
Corrective action plans attached to an audit.

Criteria-linked actions come from the generator (or an auditor picking a
criterion); criteria-less actions are free-form.  Actions are never
deleted automatically.
"""

from datetime import datetime, timezone

from retail_audit.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTION_PENDING = "pending"
ACTION_IN_PROGRESS = "in_progress"
ACTION_COMPLETED = "completed"
ACTION_CANCELLED = "cancelled"

ACTION_STATUSES = frozenset({
    ACTION_PENDING, ACTION_IN_PROGRESS, ACTION_COMPLETED, ACTION_CANCELLED,
})

OPEN_ACTION_STATUSES = frozenset({ACTION_PENDING, ACTION_IN_PROGRESS})

RESPONSIBLE_DOT = "DOT"
RESPONSIBLE_ADERENTE = "Aderente"
RESPONSIBLE_BOTH = "Both"

ACTION_RESPONSIBLES = frozenset({RESPONSIBLE_DOT, RESPONSIBLE_ADERENTE, RESPONSIBLE_BOTH})

ACTION_TRANSITIONS = {
    ACTION_PENDING:     [ACTION_IN_PROGRESS, ACTION_COMPLETED, ACTION_CANCELLED],
    ACTION_IN_PROGRESS: [ACTION_COMPLETED, ACTION_PENDING, ACTION_CANCELLED],
    ACTION_COMPLETED:   [ACTION_IN_PROGRESS],   # reopen
    ACTION_CANCELLED:   [ACTION_PENDING],       # reopen
}


def validate_action_transition(old_status, new_status):
    """Return True if ActionPlan status transition is valid."""
    return new_status in ACTION_TRANSITIONS.get(old_status, [])


def _utcnow():
    return datetime.now(timezone.utc)


class ActionPlan(db.Model):
    __tablename__ = "action_plans"
    __table_args__ = (
        db.Index("idx_action_audit_criteria", "audit_id", "criteria_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    audit_id = db.Column(
        db.Integer, db.ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    criteria_id = db.Column(
        db.Integer, db.ForeignKey("criteria.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    responsible = db.Column(
        db.String(20), nullable=False, default=RESPONSIBLE_ADERENTE,
        comment="DOT | Aderente | Both",
    )
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=ACTION_PENDING)
    progress = db.Column(db.Integer, nullable=False, default=0)
    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def is_overdue(self) -> bool:
        if self.status not in OPEN_ACTION_STATUSES or self.due_date is None:
            return False
        due = self.due_date
        if due.tzinfo is None:
            due = due.replace(tzinfo=timezone.utc)
        return due < _utcnow()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audit_id": self.audit_id,
            "criteria_id": self.criteria_id,
            "title": self.title,
            "description": self.description,
            "responsible": self.responsible,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "progress": self.progress,
            "created_by": self.created_by,
            "completed_date": self.completed_date.isoformat() if self.completed_date else None,
            "notes": self.notes,
            "overdue": self.is_overdue,
        }

    def __repr__(self) -> str:
        return f"<ActionPlan #{self.id} audit={self.audit_id} {self.status}>"
