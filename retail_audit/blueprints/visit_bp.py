"""
Retail Audit Platform
Visit Blueprint - non-scored visits (training, follow-up, other).
"""

from flask import Blueprint, jsonify, request

from retail_audit.middleware.session_context import current_session
from retail_audit.models.audit import TERMINAL_STATUSES
from retail_audit.services import audit_lifecycle, repository
from retail_audit.services.permission import (
    PermissionDenied,
    can_edit_audit,
    can_view_audit,
    can_delete_audit,
)
from retail_audit.utils.errors import E, api_error
from retail_audit.utils.helpers import db_commit_or_error, require_datetime

visit_bp = Blueprint("visit", __name__, url_prefix="/api/v1")


def _viewer():
    ctx = current_session()
    if not can_view_audit(ctx):
        raise PermissionDenied(ctx.user_id, "view_visit")
    return ctx


@visit_bp.route("/visits", methods=["GET"])
def list_visits():
    """Query params: user_id, store_id, type"""
    _viewer()
    visits = repository.list_visits(
        user_id=request.args.get("user_id", type=int),
        store_id=request.args.get("store_id", type=int),
        visit_type=request.args.get("type"),
    )
    return jsonify([v.to_dict() for v in visits]), 200


@visit_bp.route("/visits", methods=["POST"])
def create_visit():
    ctx = current_session()
    data = request.get_json(silent=True) or {}
    for field in ("store_id", "type", "title"):
        if not data.get(field):
            return api_error(E.VALIDATION_REQUIRED, f"{field} is required")

    visit = audit_lifecycle.schedule_visit(
        ctx,
        store_id=data["store_id"],
        user_id=data.get("user_id", ctx.user_id),
        visit_type=data["type"],
        title=data["title"],
        description=data.get("description", ""),
        dtstart=require_datetime(data.get("dtstart"), "dtstart"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(visit.to_dict()), 201


@visit_bp.route("/visits/<int:visit_id>", methods=["GET"])
def get_visit(visit_id):
    _viewer()
    return jsonify(repository.get_visit_by_id(visit_id).to_dict()), 200


@visit_bp.route("/visits/<int:visit_id>", methods=["PATCH", "PUT"])
def update_visit(visit_id):
    """Edit title/description/dtstart; ``status`` goes through the state machine."""
    ctx = current_session()
    visit = repository.get_visit_by_id(visit_id)
    data = request.get_json(silent=True) or {}

    changes = {k: data[k] for k in ("title", "description") if k in data}
    if "dtstart" in data:
        changes["dtstart"] = require_datetime(data["dtstart"], "dtstart")
    if changes:
        if visit.status in TERMINAL_STATUSES:
            raise audit_lifecycle.TransitionError(
                f"visit #{visit.id}", "edit", visit.status, "visit is closed or cancelled",
            )
        if not can_edit_audit(ctx, visit.status, visit.user_id):
            raise PermissionDenied(ctx.user_id, "edit_visit")
        repository.update_visit(visit.id, **changes)
    if data.get("status") is not None:
        audit_lifecycle.set_visit_status(ctx, visit.id, data["status"])

    err = db_commit_or_error()
    if err:
        return err
    return jsonify(repository.get_visit_by_id(visit_id).to_dict()), 200


@visit_bp.route("/visits/<int:visit_id>/transition", methods=["POST"])
def transition_visit(visit_id):
    """Execute a visit action: start, complete, close, cancel."""
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    result = audit_lifecycle.transition_visit(current_session(), visit_id, action)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result), 200


@visit_bp.route("/visits/<int:visit_id>", methods=["DELETE"])
def delete_visit(visit_id):
    ctx = current_session()
    visit = repository.get_visit_by_id(visit_id)
    if not can_delete_audit(ctx, visit.created_by):
        raise PermissionDenied(ctx.user_id, "delete_visit")
    repository.delete_visit(visit.id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Visit deleted"}), 200
