"""
Retail Audit Platform
Current-caller Blueprint - capability table and default dashboard.
"""

from flask import Blueprint, jsonify

from retail_audit.middleware.session_context import current_session
from retail_audit.services.permission import get_capabilities, get_default_dashboard

me_bp = Blueprint("me", __name__, url_prefix="/api/v1/me")


@me_bp.route("/capabilities", methods=["GET"])
def capabilities():
    ctx = current_session()
    return jsonify({
        "user_id": ctx.user_id,
        "roles": sorted(ctx.roles),
        "default_dashboard": get_default_dashboard(ctx),
        "capabilities": get_capabilities(ctx),
    }), 200
