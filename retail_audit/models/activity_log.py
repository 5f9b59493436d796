"""
Retail Audit Platform
Activity trail for lifecycle events.

Models:
    - ActivityLog: immutable, append-only record of status changes,
      generated actions and store assignments.
"""

import json
from datetime import datetime, timezone

from retail_audit.models import db

ACTIVITY_ENTITY_TYPES = {"audit", "visit", "action_plan", "store"}


class ActivityLog(db.Model):
    """
    One row per lifecycle event.  ``diff_json`` carries old→new snapshots,
    e.g. ``{"status": {"old": 2, "new": 3}}``.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_action", "action"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False, comment="audit.submit | visit.close | …")
    actor_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    diff_json = db.Column(db.Text, default="{}")
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


def write_activity(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.
    """
    log = ActivityLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_user_id=actor_user_id,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def status_history(entity_type: str, entity_id) -> list[int]:
    """Return the ordered list of statuses an entity has moved into."""
    rows = (
        ActivityLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(ActivityLog.id.asc())
        .all()
    )
    history = []
    for row in rows:
        change = row.diff.get("status")
        if change and change.get("new") is not None:
            history.append(change["new"])
    return history
