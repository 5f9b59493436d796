"""
Audit / Visit Lifecycle Service - the status state machine.

Audit states:  NEW(1) → IN_PROGRESS(2) → SUBMITTED(3) → ENDED(4) → CLOSED(5)
               and CANCELLED(6) from any pre-ENDED state.

6 audit actions:
  start    NEW → IN_PROGRESS          (automatic on the first non-null score)
  submit   IN_PROGRESS → SUBMITTED    (performer; freezes ``score``)
  approve  SUBMITTED → ENDED          (AMONT/ADMIN, or DOT for Aderente audits)
  reject   SUBMITTED → IN_PROGRESS    (same approvers; reason appended as comment)
  close    ENDED → CLOSED             (AMONT/ADMIN; stamps dtend, warns on open actions)
  cancel   NEW|IN_PROGRESS|SUBMITTED → CANCELLED   (AMONT/ADMIN)

Visits use the same enum without SUBMITTED:
  start, complete (→ ENDED), close, cancel.

Status only moves forward; ``reject`` is the single backward edge.  Scores
and auditor comments are writable only below SUBMITTED.

Every transition is validated before any write.  An invalid transition
raises TransitionError (``permission_denied`` records whether the caller
would also have been refused); a valid transition the caller may not
perform raises PermissionDenied.

Usage:
    from retail_audit.services.audit_lifecycle import transition_audit

    result = transition_audit(ctx, audit_id=12, action="submit")
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app, has_app_context

from retail_audit.core.exceptions import ValidationError
from retail_audit.models.activity_log import write_activity
from retail_audit.models.audit import Audit, AuditStatus, Visit, coerce_status
from retail_audit.models.user import ROLE_ADERENTE, ROLE_DOT, Store
from retail_audit.services import repository, scoring
from retail_audit.services.permission import (
    CAP_CREATE_AUDIT,
    PermissionDenied,
    SessionContext,
    can_approve_audit,
    can_cancel_audit,
    can_close_audit,
    can_create_audit,
    can_delete_audit,
    can_edit_audit,
    can_edit_audit_date,
    can_submit_audit,
    is_supervisor,
)

logger = logging.getLogger(__name__)

S = AuditStatus

AUDIT_TRANSITIONS = {
    "start":   {"from": [S.NEW], "to": S.IN_PROGRESS},
    "submit":  {"from": [S.IN_PROGRESS], "to": S.SUBMITTED},
    "approve": {"from": [S.SUBMITTED], "to": S.ENDED},
    "reject":  {"from": [S.SUBMITTED], "to": S.IN_PROGRESS},
    "close":   {"from": [S.ENDED], "to": S.CLOSED},
    "cancel":  {"from": [S.NEW, S.IN_PROGRESS, S.SUBMITTED], "to": S.CANCELLED},
}

VISIT_TRANSITIONS = {
    "start":    {"from": [S.NEW], "to": S.IN_PROGRESS},
    "complete": {"from": [S.NEW, S.IN_PROGRESS], "to": S.ENDED},
    "close":    {"from": [S.ENDED], "to": S.CLOSED},
    "cancel":   {"from": [S.NEW, S.IN_PROGRESS], "to": S.CANCELLED},
}


class TransitionError(Exception):
    """Raised when a lifecycle action is not legal from the current status."""

    def __init__(
        self,
        entity: str,
        action: str,
        current,
        reason: str | None = None,
        *,
        permission_denied: bool = False,
    ):
        current_name = S(current).name if current is not None else "?"
        msg = f"Cannot '{action}' {entity} (status={current_name})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.entity = entity
        self.action = action
        self.current_status = current
        self.reason = reason
        self.permission_denied = permission_denied


def _config(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Validation helpers ───────────────────────────────────────────────────────


def validate_transition(current, action: str, transitions=AUDIT_TRANSITIONS) -> dict:
    """
    Validate whether an action is legal for the current status.

    Returns:
        {"valid": bool, "from": int, "to": int|None, "reason": str|None}
    """
    rule = transitions.get(action)
    if not rule:
        return {"valid": False, "from": current, "to": None,
                "reason": f"Unknown action: {action}"}
    if S(current) not in rule["from"]:
        return {"valid": False, "from": current, "to": int(rule["to"]),
                "reason": f"Cannot '{action}' from status {S(current).name}"}
    return {"valid": True, "from": current, "to": int(rule["to"]), "reason": None}


def _target_status(value) -> AuditStatus:
    try:
        return coerce_status(value)
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown status '{value}'", details={"status": value})


def resolve_action(current, target, transitions=AUDIT_TRANSITIONS) -> str | None:
    """Name of the action that moves ``current`` to ``target``, if any."""
    target = coerce_status(target)
    for action, rule in transitions.items():
        if S(current) in rule["from"] and rule["to"] == target:
            return action
    return None


def _action_into(target, transitions=AUDIT_TRANSITIONS) -> str | None:
    """Name of the action whose destination is ``target``, from any status."""
    for action, rule in transitions.items():
        if rule["to"] == target:
            return action
    return None


def _performer_roles(audit: Audit) -> list[str]:
    performer = audit.performer
    return list(performer.roles or []) if performer is not None else []


def _audit_action_allowed(ctx: SessionContext, audit: Audit, action: str) -> bool:
    if action == "start":
        return can_edit_audit(ctx, audit.status, audit.user_id)
    if action == "submit":
        return can_submit_audit(ctx, audit.status, audit.user_id)
    if action in ("approve", "reject"):
        return can_approve_audit(ctx, _performer_roles(audit))
    if action == "close":
        return can_close_audit(ctx)
    if action == "cancel":
        return can_cancel_audit(ctx)
    return False


def get_available_transitions(ctx: SessionContext, audit: Audit) -> list[str]:
    """Actions legal from the audit's status that ``ctx`` may perform."""
    return [
        action for action, rule in AUDIT_TRANSITIONS.items()
        if S(audit.status) in rule["from"] and _audit_action_allowed(ctx, audit, action)
    ]


# ── Audit transitions ────────────────────────────────────────────────────────


def _apply_status(audit: Audit, action: str, new_status, actor_id, **changes) -> int:
    previous = audit.status
    repository.update_audit(audit.id, status=int(new_status), **changes)
    write_activity(
        entity_type="audit",
        entity_id=audit.id,
        action=f"audit.{action}",
        actor_user_id=actor_id,
        diff={"status": {"old": previous, "new": int(new_status)}},
    )
    return previous


def transition_audit(
    ctx: SessionContext,
    audit_id: int,
    action: str,
    *,
    reason: str | None = None,
) -> dict:
    """
    Execute an audit lifecycle transition.

    Args:
        ctx: Caller identity and roles.
        audit_id: Audit primary key.
        action: One of AUDIT_TRANSITIONS.
        reason: Required for 'reject'.

    Returns:
        {"audit_id", "action", "previous_status", "new_status",
         "score", "warnings", "generated_action_ids"}

    Raises:
        NotFoundError, TransitionError, PermissionDenied
    """
    audit = repository.get_audit_by_id(audit_id)
    entity = f"audit #{audit.id}"

    # 1. Validate transition and permission before touching anything
    validation = validate_transition(audit.status, action)
    allowed = _audit_action_allowed(ctx, audit, action)
    if not validation["valid"]:
        logger.warning(
            "Rejected audit transition: %s",
            validation["reason"],
            extra={"audit_id": audit.id, "user_id": ctx.user_id, "action": action},
        )
        raise TransitionError(
            entity, action, audit.status, validation["reason"],
            permission_denied=not allowed,
        )
    if not allowed:
        raise PermissionDenied(ctx.user_id, f"audit_{action}")

    # 2. Pre-transition checks
    if action == "reject" and not (reason or "").strip():
        raise TransitionError(entity, action, audit.status, "a rejection reason is required")

    scores = None
    if action == "submit":
        scores = repository.get_scores(audit.id)
        if _config("AUDIT_REQUIRE_COMPLETE_SCORING", False):
            missing = scoring.missing_criteria(audit.checklist, scores)
            if missing:
                raise TransitionError(
                    entity, action, audit.status,
                    f"{len(missing)} criteria not yet scored or marked N/A",
                )

    # 3. Execute transition + side effects
    now = _utcnow()
    changes: dict = {}
    warnings: list[dict] = []
    generated: list[int] = []

    if action == "submit":
        changes["score"] = scoring.total_score(scores).percentage
        changes["submitted_at"] = now
    elif action == "close":
        changes["dtend"] = now
        from retail_audit.services.action_plan_service import pending_actions
        pending = pending_actions(audit.id)
        if pending:
            warnings.append({
                "code": "PENDING_ACTIONS",
                "message": f"{len(pending)} action(s) still open",
                "action_ids": [a.id for a in pending],
            })

    previous = _apply_status(audit, action, validation["to"], ctx.user_id, **changes)

    if action == "reject":
        repository.create_comment(
            audit_id=audit.id,
            user_id=ctx.user_id,
            content=f"Rejected: {reason.strip()}",
            is_internal=False,
            user_role=ctx.primary_role,
        )
    if action == "submit" and _config("ACTION_PLAN_AUTO_GENERATE_ON_SUBMIT", True):
        from retail_audit.services.action_plan_service import auto_generate
        generated = [a.id for a in auto_generate(audit.id, scores=scores)]

    logger.info(
        "Audit transition %s: %s -> %s",
        action, S(previous).name, S(audit.status).name,
        extra={"audit_id": audit.id, "user_id": ctx.user_id, "action": action},
    )
    return {
        "audit_id": audit.id,
        "action": action,
        "previous_status": previous,
        "new_status": audit.status,
        "score": audit.score,
        "warnings": warnings,
        "generated_action_ids": generated,
    }


def set_audit_status(ctx: SessionContext, audit_id: int, target, *, reason: str | None = None) -> dict:
    """Status-style entry point: translate a target status into its action."""
    audit = repository.get_audit_by_id(audit_id)
    target_status = _target_status(target)
    action = resolve_action(audit.status, target_status)
    if action is None:
        # judge permission by the action that would normally reach the target
        intended = _action_into(target_status)
        raise TransitionError(
            f"audit #{audit.id}", f"move to {target_status.name}", audit.status,
            "no such transition",
            permission_denied=(
                intended is not None and not _audit_action_allowed(ctx, audit, intended)
            ),
        )
    return transition_audit(ctx, audit_id, action, reason=reason)


# ── Content mutation ─────────────────────────────────────────────────────────


def ensure_content_editable(ctx: SessionContext, audit: Audit) -> None:
    """Scores and auditor comments are frozen from SUBMITTED onwards."""
    if S(audit.status) >= S.SUBMITTED:
        raise TransitionError(
            f"audit #{audit.id}", "edit", audit.status,
            "content is locked once submitted",
            permission_denied=not can_edit_audit(ctx, audit.status, audit.user_id),
        )
    if not can_edit_audit(ctx, audit.status, audit.user_id):
        raise PermissionDenied(ctx.user_id, "edit_audit")


def record_score(
    ctx: SessionContext,
    audit_id: int,
    criteria_id: int,
    value,
    *,
    comment=repository.UNSET,
    photos=repository.UNSET,
):
    """Upsert one criterion score; the first non-null score starts the audit."""
    audit = repository.get_audit_by_id(audit_id)
    ensure_content_editable(ctx, audit)

    if not scoring.is_valid_score(value):
        raise ValidationError(
            "score must be null, 0 (N/A) or an integer from 1 to 5",
            details={"score": value},
        )
    if criteria_id not in audit.checklist.criteria_ids():
        raise ValidationError(
            f"Criterion {criteria_id} is not part of checklist {audit.checklist_id}",
            details={"criteria_id": criteria_id},
        )

    row = repository.upsert_score(audit.id, criteria_id, value, comment=comment, photos=photos)

    if value is not None and S(audit.status) == S.NEW:
        _apply_status(audit, "start", S.IN_PROGRESS, ctx.user_id)
        logger.info(
            "Audit started on first score",
            extra={"audit_id": audit.id, "user_id": ctx.user_id},
        )
    return row


def update_auditor_comments(ctx: SessionContext, audit_id: int, text: str | None) -> Audit:
    audit = repository.get_audit_by_id(audit_id)
    ensure_content_editable(ctx, audit)
    return repository.update_audit(audit.id, auditorcomments=text)


def reschedule_audit(ctx: SessionContext, audit_id: int, dtstart: datetime) -> Audit:
    audit = repository.get_audit_by_id(audit_id)
    if not can_edit_audit_date(ctx, audit.created_by):
        raise PermissionDenied(ctx.user_id, "edit_audit_date")
    if S(audit.status) >= S.SUBMITTED:
        raise TransitionError(
            f"audit #{audit.id}", "reschedule", audit.status, "already submitted",
        )
    return repository.update_audit(audit.id, dtstart=dtstart)


# ── Scheduling / deletion ────────────────────────────────────────────────────


def _can_schedule_for(ctx: SessionContext, store: Store, performer_id: int | None) -> bool:
    if is_supervisor(ctx):
        return True
    if ctx.has_role(ROLE_DOT) and can_create_audit(ctx):
        if performer_id == ctx.user_id and store.dot_user_id == ctx.user_id:
            return True
    # Aderentes schedule their own (possibly cross-store) visits
    if ctx.has_role(ROLE_ADERENTE) and performer_id == ctx.user_id:
        return True
    return False


def schedule_audit(
    ctx: SessionContext,
    *,
    store_id: int,
    user_id: int | None,
    checklist_id: int | None = None,
    dtstart: datetime | None = None,
) -> Audit:
    """Create an audit in NEW, recording ``ctx`` as the scheduler."""
    store = repository._get_or_raise(Store, store_id)
    if not _can_schedule_for(ctx, store, user_id):
        raise PermissionDenied(ctx.user_id, CAP_CREATE_AUDIT)
    audit = repository.create_audit(
        store_id=store.id,
        user_id=user_id,
        checklist_id=checklist_id,
        dtstart=dtstart,
        status=S.NEW,
        created_by=ctx.user_id,
    )
    write_activity(
        entity_type="audit",
        entity_id=audit.id,
        action="audit.create",
        actor_user_id=ctx.user_id,
        diff={"status": {"old": None, "new": int(S.NEW)}},
    )
    logger.info(
        "Audit scheduled",
        extra={"audit_id": audit.id, "user_id": ctx.user_id},
    )
    return audit


def delete_audit(ctx: SessionContext, audit_id: int) -> None:
    """Administrative cleanup; normal flow cancels instead."""
    audit = repository.get_audit_by_id(audit_id)
    if not can_delete_audit(ctx, audit.created_by):
        raise PermissionDenied(ctx.user_id, "delete_audit")
    repository.delete_audit(audit.id)
    logger.info("Audit deleted", extra={"audit_id": audit_id, "user_id": ctx.user_id})


def score_summary(audit_id: int) -> dict:
    """Live percentages (per section and total) for an audit."""
    audit = repository.get_audit_by_id(audit_id)
    scores = repository.get_scores(audit.id)
    breakdown = scoring.score_breakdown(audit.checklist, scores)
    breakdown["audit_id"] = audit.id
    breakdown["frozen_score"] = audit.score
    return breakdown


# ── Visits ───────────────────────────────────────────────────────────────────


def _visit_action_allowed(ctx: SessionContext, visit: Visit, action: str) -> bool:
    if ctx is None or ctx.is_anonymous:
        return False
    if action in ("start", "complete"):
        return is_supervisor(ctx) or (visit.user_id is not None and visit.user_id == ctx.user_id)
    if action == "close":
        return can_close_audit(ctx)
    if action == "cancel":
        return can_cancel_audit(ctx)
    return False


def schedule_visit(
    ctx: SessionContext,
    *,
    store_id: int,
    user_id: int | None,
    visit_type: str,
    title: str,
    description: str = "",
    dtstart: datetime | None = None,
) -> Visit:
    store = repository._get_or_raise(Store, store_id)
    if not _can_schedule_for(ctx, store, user_id):
        raise PermissionDenied(ctx.user_id, CAP_CREATE_AUDIT)
    visit = repository.create_visit(
        store_id=store.id,
        user_id=user_id,
        visit_type=visit_type,
        title=title,
        description=description,
        dtstart=dtstart,
        created_by=ctx.user_id,
    )
    logger.info("Visit scheduled", extra={"user_id": ctx.user_id})
    return visit


def transition_visit(ctx: SessionContext, visit_id: int, action: str) -> dict:
    visit = repository.get_visit_by_id(visit_id)
    entity = f"visit #{visit.id}"

    validation = validate_transition(visit.status, action, VISIT_TRANSITIONS)
    allowed = _visit_action_allowed(ctx, visit, action)
    if not validation["valid"]:
        raise TransitionError(
            entity, action, visit.status, validation["reason"],
            permission_denied=not allowed,
        )
    if not allowed:
        raise PermissionDenied(ctx.user_id, f"visit_{action}")

    changes = {}
    if action in ("complete", "close") and visit.dtend is None:
        changes["dtend"] = _utcnow()

    previous = visit.status
    repository.update_visit(visit.id, status=validation["to"], **changes)
    write_activity(
        entity_type="visit",
        entity_id=visit.id,
        action=f"visit.{action}",
        actor_user_id=ctx.user_id,
        diff={"status": {"old": previous, "new": validation["to"]}},
    )
    logger.info(
        "Visit transition %s: %s -> %s", action, S(previous).name, S(visit.status).name,
        extra={"user_id": ctx.user_id, "action": action},
    )
    return {
        "visit_id": visit.id,
        "action": action,
        "previous_status": previous,
        "new_status": visit.status,
    }


def set_visit_status(ctx: SessionContext, visit_id: int, target) -> dict:
    visit = repository.get_visit_by_id(visit_id)
    target_status = _target_status(target)
    action = resolve_action(visit.status, target_status, VISIT_TRANSITIONS)
    if action is None:
        intended = _action_into(target_status, VISIT_TRANSITIONS)
        raise TransitionError(
            f"visit #{visit.id}", f"move to {target_status.name}", visit.status,
            "no such transition",
            permission_denied=(
                intended is not None and not _visit_action_allowed(ctx, visit, intended)
            ),
        )
    return transition_visit(ctx, visit_id, action)
