"""
Retail Audit Platform
Audit Blueprint - scheduling, lifecycle transitions, scores and comments.

Thin transport: every rule lives in the services; domain exceptions are
turned into JSON by the app-level error handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from retail_audit.core.exceptions import ValidationError
from retail_audit.middleware.session_context import current_session
from retail_audit.models.activity_log import status_history
from retail_audit.models.audit import coerce_status
from retail_audit.services import audit_lifecycle, comment_service, repository
from retail_audit.services.action_plan_service import auto_generate
from retail_audit.services.permission import PermissionDenied, can_view_audit
from retail_audit.utils.errors import E, api_error
from retail_audit.utils.helpers import db_commit_or_error, require_datetime

logger = logging.getLogger(__name__)

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")


# ── helpers ──────────────────────────────────────────────────────────────

def _viewer():
    ctx = current_session()
    if not can_view_audit(ctx):
        raise PermissionDenied(ctx.user_id, "view_audit")
    return ctx


def _status_arg(value):
    if value in (None, ""):
        return None
    try:
        return coerce_status(value)
    except ValueError:
        raise ValidationError(f"Unknown status '{value}'", details={"status": value})


def _audit_payload(audit, ctx):
    data = audit.to_dict()
    data["available_transitions"] = audit_lifecycle.get_available_transitions(ctx, audit)
    return data


# ═════════════════════════════════════════════════════════════════════════
# AUDITS
# ═════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audits", methods=["GET"])
def list_audits():
    """List audits.

    Query params:
        user_id, store_id, status (number, name or storage value)
    """
    _viewer()
    audits = repository.list_audits(
        user_id=request.args.get("user_id", type=int),
        store_id=request.args.get("store_id", type=int),
        status=_status_arg(request.args.get("status")),
    )
    return jsonify([a.to_dict() for a in audits]), 200


@audit_bp.route("/audits", methods=["POST"])
def create_audit():
    ctx = current_session()
    data = request.get_json(silent=True) or {}
    if not data.get("store_id"):
        return api_error(E.VALIDATION_REQUIRED, "store_id is required")

    audit = audit_lifecycle.schedule_audit(
        ctx,
        store_id=data["store_id"],
        user_id=data.get("user_id", ctx.user_id),
        checklist_id=data.get("checklist_id"),
        dtstart=require_datetime(data.get("dtstart"), "dtstart"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(audit.to_dict()), 201


@audit_bp.route("/audits/<int:audit_id>", methods=["GET"])
def get_audit(audit_id):
    ctx = _viewer()
    audit = repository.get_audit_by_id(audit_id)
    return jsonify(_audit_payload(audit, ctx)), 200


@audit_bp.route("/audits/<int:audit_id>", methods=["PATCH", "PUT"])
def update_audit(audit_id):
    """Partial update.

    Body keys:
        status           → routed through the state machine
        auditorcomments  → content edit (locked from SUBMITTED)
        dtstart          → reschedule
        reason           → rejection reason when status moves back
    """
    ctx = current_session()
    data = request.get_json(silent=True) or {}

    if "dtstart" in data:
        audit_lifecycle.reschedule_audit(
            ctx, audit_id, require_datetime(data["dtstart"], "dtstart"),
        )
    if "auditorcomments" in data:
        audit_lifecycle.update_auditor_comments(ctx, audit_id, data["auditorcomments"])
    result = None
    if data.get("status") is not None:
        result = audit_lifecycle.set_audit_status(
            ctx, audit_id, _status_arg(data["status"]), reason=data.get("reason"),
        )

    err = db_commit_or_error()
    if err:
        return err
    payload = _audit_payload(repository.get_audit_by_id(audit_id), ctx)
    if result:
        payload["transition"] = result
    return jsonify(payload), 200


@audit_bp.route("/audits/<int:audit_id>", methods=["DELETE"])
def delete_audit(audit_id):
    audit_lifecycle.delete_audit(current_session(), audit_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Audit deleted"}), 200


@audit_bp.route("/audits/<int:audit_id>/transition", methods=["POST"])
def transition_audit(audit_id):
    """Execute a lifecycle action: start, submit, approve, reject, close, cancel."""
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    result = audit_lifecycle.transition_audit(
        current_session(), audit_id, action, reason=data.get("reason"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200


@audit_bp.route("/audits/<int:audit_id>/history", methods=["GET"])
def audit_history(audit_id):
    _viewer()
    repository.get_audit_by_id(audit_id)
    return jsonify({"audit_id": audit_id, "statuses": status_history("audit", audit_id)}), 200


# ═════════════════════════════════════════════════════════════════════════
# SCORES
# ═════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audits/<int:audit_id>/scores", methods=["GET"])
def list_scores(audit_id):
    _viewer()
    return jsonify([s.to_dict() for s in repository.get_scores(audit_id)]), 200


@audit_bp.route("/audits/<int:audit_id>/scores/<int:criteria_id>", methods=["PUT"])
def put_score(audit_id, criteria_id):
    """Upsert one criterion score.  ``score`` may be null, 0 (N/A) or 1..5."""
    data = request.get_json(silent=True) or {}
    if "score" not in data:
        return api_error(E.VALIDATION_REQUIRED, "score is required (null allowed)")

    kwargs = {}
    if "comment" in data:
        kwargs["comment"] = data["comment"]
    if "photos" in data:
        photos = data["photos"]
        if photos is not None and not isinstance(photos, list):
            return api_error(E.VALIDATION_INVALID, "photos must be a list")
        kwargs["photos"] = photos

    row = audit_lifecycle.record_score(
        current_session(), audit_id, criteria_id, data["score"], **kwargs,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(row.to_dict()), 200


@audit_bp.route("/audits/<int:audit_id>/summary", methods=["GET"])
def score_summary(audit_id):
    """Live per-section and total percentages."""
    _viewer()
    return jsonify(audit_lifecycle.score_summary(audit_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# COMMENTS + ACTION GENERATION
# ═════════════════════════════════════════════════════════════════════════

@audit_bp.route("/audits/<int:audit_id>/comments", methods=["GET"])
def list_comments(audit_id):
    ctx = _viewer()
    comments = comment_service.list_comments(ctx, audit_id)
    return jsonify([c.to_dict() for c in comments]), 200


@audit_bp.route("/audits/<int:audit_id>/comments", methods=["POST"])
def add_comment(audit_id):
    data = request.get_json(silent=True) or {}
    comment = comment_service.add_comment(
        current_session(), audit_id, data.get("content", ""),
        is_internal=bool(data.get("is_internal", False)),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(comment.to_dict()), 201


@audit_bp.route("/audits/<int:audit_id>/generate-actions", methods=["POST"])
def generate_actions(audit_id):
    """Run the low-score action generator on demand (idempotent)."""
    created = auto_generate(audit_id, ctx=current_session())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "audit_id": audit_id,
        "created": [a.to_dict() for a in created],
        "count": len(created),
    }), 201 if created else 200
