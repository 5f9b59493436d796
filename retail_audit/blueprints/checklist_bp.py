"""
Retail Audit Platform
Checklist Blueprint - read-only access to checklist templates.
"""

from flask import Blueprint, jsonify, request

from retail_audit.services import repository

checklist_bp = Blueprint("checklist", __name__, url_prefix="/api/v1")


@checklist_bp.route("/checklists", methods=["GET"])
def list_checklists():
    """Query params: tree=true to include sections/items/criteria."""
    include_tree = request.args.get("tree", "").lower() == "true"
    return jsonify([c.to_dict(include_tree=include_tree) for c in repository.get_checklists()]), 200


@checklist_bp.route("/checklists/<int:checklist_id>", methods=["GET"])
def get_checklist(checklist_id):
    return jsonify(repository.get_checklist_by_id(checklist_id).to_dict()), 200
