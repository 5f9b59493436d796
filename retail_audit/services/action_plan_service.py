"""
Action-Plan Service - generator, manual creation and status lifecycle.

Generator rule:
    Every AuditScore with 0 < score <= threshold (default 2) yields one
    ActionPlan, unless an action for this audit already references the same
    criterion.  Running it twice never duplicates.

    title       = "<item name> - <criterion name>"
    description = score comment, or a generic placeholder
    responsible = Aderente
    due_date    = audit finalization time (submitted_at, else now) + 7 days
    status      = pending, progress = 0

Manual creation bypasses the rule entirely and is gated only by the
create_actions capability.

Usage:
    from retail_audit.services.action_plan_service import auto_generate

    created = auto_generate(audit_id, ctx=ctx)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context

from retail_audit.core.exceptions import ValidationError
from retail_audit.models.action_plan import (
    ACTION_COMPLETED,
    ACTION_PENDING,
    ACTION_RESPONSIBLES,
    ACTION_STATUSES,
    OPEN_ACTION_STATUSES,
    RESPONSIBLE_ADERENTE,
    ActionPlan,
    validate_action_transition,
)
from retail_audit.models.activity_log import write_activity
from retail_audit.services import repository
from retail_audit.services.permission import (
    CAP_CREATE_ACTIONS,
    PermissionDenied,
    SessionContext,
    can_update_action_status,
    check_capability,
)

logger = logging.getLogger(__name__)

DEFAULT_DUE_DAYS = 7
DEFAULT_SCORE_THRESHOLD = 2
DEFAULT_DESCRIPTION = "Corrective action required"


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _as_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ── Generator ────────────────────────────────────────────────────────────────


def plan_actions(
    audit_id: int,
    scores,
    checklist,
    existing_actions,
    *,
    base_time: datetime,
    due_days: int = DEFAULT_DUE_DAYS,
    threshold: int = DEFAULT_SCORE_THRESHOLD,
    created_by: int | None = None,
) -> list[dict]:
    """Pure part of the generator: return field dicts for the actions to create.

    Scores whose criterion is not part of ``checklist`` are skipped.
    """
    criterion_index = {
        criterion.id: (item, criterion)
        for _, item, criterion in checklist.iter_criteria()
    }
    covered = {
        a.criteria_id for a in existing_actions
        if a.criteria_id is not None and a.audit_id == audit_id
    }
    due_date = _as_aware(base_time) + timedelta(days=due_days)

    planned = []
    for score in scores:
        value = score.score
        if value is None or not (0 < value <= threshold):
            continue
        if score.criteria_id in covered:
            continue
        located = criterion_index.get(score.criteria_id)
        if located is None:
            continue
        item, criterion = located
        planned.append({
            "audit_id": audit_id,
            "criteria_id": criterion.id,
            "title": f"{item.name} - {criterion.name}",
            "description": (score.comment or "").strip() or DEFAULT_DESCRIPTION,
            "responsible": RESPONSIBLE_ADERENTE,
            "due_date": due_date,
            "status": ACTION_PENDING,
            "progress": 0,
            "created_by": created_by,
        })
        covered.add(criterion.id)
    return planned


def auto_generate(
    audit_id: int,
    scores=None,
    checklist=None,
    existing_actions=None,
    *,
    ctx: SessionContext | None = None,
    now: datetime | None = None,
) -> list[ActionPlan]:
    """Create corrective actions for low-scored criteria of an audit.

    Inputs not supplied are loaded through the repository.  When ``ctx`` is
    given (a user-triggered run) the caller needs create_actions; the
    submit transition runs it as a system step without a context.

    Returns:
        The newly created ActionPlan rows (empty on a repeat run).
    """
    if ctx is not None:
        check_capability(ctx, CAP_CREATE_ACTIONS)

    audit = repository.get_audit_by_id(audit_id)
    if scores is None:
        scores = repository.get_scores(audit_id)
    if checklist is None:
        checklist = repository.get_checklist_by_id(audit.checklist_id)
    if existing_actions is None:
        existing_actions = repository.get_actions(audit_id)

    base_time = audit.submitted_at or now or datetime.now(timezone.utc)
    created_by = ctx.user_id if ctx is not None else audit.user_id

    planned = plan_actions(
        audit_id,
        scores,
        checklist,
        existing_actions,
        base_time=base_time,
        due_days=int(_config("ACTION_PLAN_DUE_DAYS", DEFAULT_DUE_DAYS)),
        threshold=int(_config("ACTION_PLAN_SCORE_THRESHOLD", DEFAULT_SCORE_THRESHOLD)),
        created_by=created_by,
    )

    created = [repository.create_action(**fields) for fields in planned]
    for action in created:
        write_activity(
            entity_type="action_plan",
            entity_id=action.id,
            action="action_plan.generate",
            actor_user_id=created_by,
            diff={"audit_id": audit_id, "criteria_id": action.criteria_id},
        )
    if created:
        logger.info(
            "Generated %d corrective action(s)",
            len(created),
            extra={"audit_id": audit_id, "user_id": created_by},
        )
    return created


# ── Manual actions ───────────────────────────────────────────────────────────


def _validate_responsible(responsible: str) -> str:
    if responsible not in ACTION_RESPONSIBLES:
        raise ValidationError(
            f"Invalid responsible '{responsible}'",
            details={"responsible": sorted(ACTION_RESPONSIBLES)},
        )
    return responsible


def _validate_progress(progress) -> int:
    if isinstance(progress, bool) or not isinstance(progress, int) or not 0 <= progress <= 100:
        raise ValidationError(
            "progress must be an integer between 0 and 100",
            details={"progress": progress},
        )
    return progress


def create_manual_action(
    ctx: SessionContext,
    audit_id: int,
    *,
    title: str,
    description: str = "",
    responsible: str = RESPONSIBLE_ADERENTE,
    due_date: datetime | None = None,
    criteria_id: int | None = None,
    notes: str | None = None,
) -> ActionPlan:
    """Free-form action; only the create_actions capability is checked."""
    check_capability(ctx, CAP_CREATE_ACTIONS)
    if not (title or "").strip():
        raise ValidationError("title is required", details={"title": "required"})
    _validate_responsible(responsible)

    if due_date is None:
        days = int(_config("ACTION_PLAN_DUE_DAYS", DEFAULT_DUE_DAYS))
        due_date = datetime.now(timezone.utc) + timedelta(days=days)

    action = repository.create_action(
        audit_id=audit_id,
        criteria_id=criteria_id,
        title=title.strip(),
        description=description or "",
        responsible=responsible,
        due_date=due_date,
        status=ACTION_PENDING,
        progress=0,
        created_by=ctx.user_id,
        notes=notes,
    )
    logger.info(
        "Manual action created",
        extra={"audit_id": audit_id, "user_id": ctx.user_id},
    )
    return action


def update_action_details(ctx: SessionContext, action_id: int, **changes) -> ActionPlan:
    """Edit title/description/responsible/due_date/notes/progress."""
    check_capability(ctx, CAP_CREATE_ACTIONS)
    action = repository.get_action_by_id(action_id)

    if "responsible" in changes:
        _validate_responsible(changes["responsible"])
    if "progress" in changes:
        _validate_progress(changes["progress"])
    if "title" in changes and not (changes["title"] or "").strip():
        raise ValidationError("title is required", details={"title": "required"})

    allowed = {"title", "description", "responsible", "due_date", "notes", "progress"}
    unknown = set(changes) - allowed
    if unknown:
        raise ValidationError(
            f"Fields not updatable on an action: {', '.join(sorted(unknown))}",
            details={"fields": sorted(unknown)},
        )
    for field, value in changes.items():
        setattr(action, field, value)
    return repository.update_action(action)


def change_action_status(
    ctx: SessionContext,
    action_id: int,
    new_status: str,
    *,
    progress: int | None = None,
) -> ActionPlan:
    """Move an action through its lifecycle.

    Completing forces progress to 100 and stamps completed_date; reopening a
    completed action clears completed_date.
    """
    action = repository.get_action_by_id(action_id)
    if not can_update_action_status(ctx, action.responsible):
        raise PermissionDenied(getattr(ctx, "user_id", None), "update_action_status")

    if new_status not in ACTION_STATUSES:
        raise ValidationError(
            f"Invalid action status '{new_status}'",
            details={"status": sorted(ACTION_STATUSES)},
        )
    if not validate_action_transition(action.status, new_status):
        raise ValidationError(
            f"Cannot move action {action.id} from '{action.status}' to '{new_status}'",
            details={"from": action.status, "to": new_status},
        )

    previous = action.status
    action.status = new_status
    if new_status == ACTION_COMPLETED:
        action.progress = 100
        action.completed_date = datetime.now(timezone.utc)
    else:
        action.completed_date = None
        if progress is not None:
            action.progress = _validate_progress(progress)

    repository.update_action(action)
    write_activity(
        entity_type="action_plan",
        entity_id=action.id,
        action=f"action_plan.{new_status}",
        actor_user_id=ctx.user_id,
        diff={"status": {"old": previous, "new": new_status}},
    )
    return action


def delete_action(ctx: SessionContext, action_id: int) -> None:
    check_capability(ctx, CAP_CREATE_ACTIONS)
    repository.delete_action(action_id)


def pending_actions(audit_id: int) -> list[ActionPlan]:
    """Actions still open (pending or in progress) for an audit."""
    return [a for a in repository.get_actions(audit_id) if a.status in OPEN_ACTION_STATUSES]
