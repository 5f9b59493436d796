"""
Retail Audit Platform
Action Plan Blueprint - corrective actions attached to audits.
"""

from flask import Blueprint, jsonify, request

from retail_audit.middleware.session_context import current_session
from retail_audit.models.action_plan import RESPONSIBLE_ADERENTE
from retail_audit.services import action_plan_service, repository
from retail_audit.services.permission import PermissionDenied, can_manage_actions
from retail_audit.utils.errors import E, api_error
from retail_audit.utils.helpers import db_commit_or_error, require_datetime

action_bp = Blueprint("action", __name__, url_prefix="/api/v1")


def _require_manage():
    ctx = current_session()
    if not can_manage_actions(ctx):
        raise PermissionDenied(ctx.user_id, "manage_actions")
    return ctx


@action_bp.route("/actions", methods=["GET"])
def list_actions():
    """List actions, optionally for one audit.

    Query params:
        audit_id, status, responsible, overdue=true
    """
    _require_manage()
    actions = repository.get_actions(request.args.get("audit_id", type=int))

    status = request.args.get("status")
    if status:
        actions = [a for a in actions if a.status == status]
    responsible = request.args.get("responsible")
    if responsible:
        actions = [a for a in actions if a.responsible == responsible]
    if request.args.get("overdue", "").lower() == "true":
        actions = [a for a in actions if a.is_overdue]
    return jsonify([a.to_dict() for a in actions]), 200


@action_bp.route("/actions/<int:action_id>", methods=["GET"])
def get_action(action_id):
    _require_manage()
    return jsonify(repository.get_action_by_id(action_id).to_dict()), 200


@action_bp.route("/audits/<int:audit_id>/actions", methods=["POST"])
def create_action(audit_id):
    data = request.get_json(silent=True) or {}
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")

    action = action_plan_service.create_manual_action(
        current_session(),
        audit_id,
        title=data["title"],
        description=data.get("description", ""),
        responsible=data.get("responsible", RESPONSIBLE_ADERENTE),
        due_date=require_datetime(data.get("due_date"), "due_date"),
        criteria_id=data.get("criteria_id"),
        notes=data.get("notes"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(action.to_dict()), 201


@action_bp.route("/actions/<int:action_id>", methods=["PUT", "PATCH"])
def update_action(action_id):
    data = request.get_json(silent=True) or {}
    changes = {
        k: data[k]
        for k in ("title", "description", "responsible", "notes", "progress")
        if k in data
    }
    if "due_date" in data:
        due = require_datetime(data["due_date"], "due_date")
        if due is None:
            return api_error(E.VALIDATION_REQUIRED, "due_date cannot be cleared")
        changes["due_date"] = due

    action = action_plan_service.update_action_details(current_session(), action_id, **changes)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(action.to_dict()), 200


@action_bp.route("/actions/<int:action_id>/status", methods=["POST", "PUT"])
def change_status(action_id):
    """Body: {"status": "pending|in_progress|completed|cancelled", "progress": 0..100}"""
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip()
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required")

    action = action_plan_service.change_action_status(
        current_session(), action_id, status, progress=data.get("progress"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(action.to_dict()), 200


@action_bp.route("/actions/<int:action_id>", methods=["DELETE"])
def delete_action(action_id):
    action_plan_service.delete_action(current_session(), action_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Action deleted"}), 200
