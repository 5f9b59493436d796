"""
Retail Audit Platform
Store & User Blueprint - network directory and DOT / Aderente assignment.
"""

from flask import Blueprint, jsonify, request

from retail_audit.middleware.session_context import current_session
from retail_audit.services import store_service
from retail_audit.services.permission import PermissionDenied, can_view_audit
from retail_audit.utils.errors import E, api_error
from retail_audit.utils.helpers import db_commit_or_error

store_bp = Blueprint("store", __name__, url_prefix="/api/v1")

STORE_FIELDS = ("codehex", "brand", "size", "city", "gpslat", "gpslong")
USER_FIELDS = ("email", "fullname", "roles", "amont_id", "assigned_stores")


def _viewer():
    ctx = current_session()
    if not can_view_audit(ctx):
        raise PermissionDenied(ctx.user_id, "view_directory")
    return ctx


# ═════════════════════════════════════════════════════════════════════════
# STORES
# ═════════════════════════════════════════════════════════════════════════

@store_bp.route("/stores", methods=["GET"])
def list_stores():
    """Query params: dot_user_id, city"""
    _viewer()
    stores = store_service.list_stores(
        dot_user_id=request.args.get("dot_user_id", type=int),
        city=request.args.get("city"),
    )
    return jsonify([s.to_dict() for s in stores]), 200


@store_bp.route("/stores", methods=["POST"])
def create_store():
    data = request.get_json(silent=True) or {}
    if not (data.get("codehex") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "codehex is required")
    store = store_service.create_store(
        current_session(), **{k: data[k] for k in STORE_FIELDS if k in data},
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(store.to_dict()), 201


@store_bp.route("/stores/<int:store_id>", methods=["GET"])
def get_store(store_id):
    _viewer()
    return jsonify(store_service.get_store(store_id).to_dict()), 200


@store_bp.route("/stores/<int:store_id>", methods=["PUT", "PATCH"])
def update_store(store_id):
    data = request.get_json(silent=True) or {}
    store = store_service.update_store(
        current_session(), store_id, **{k: data[k] for k in STORE_FIELDS if k in data},
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(store.to_dict()), 200


@store_bp.route("/stores/<int:store_id>", methods=["DELETE"])
def delete_store(store_id):
    store_service.delete_store(current_session(), store_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Store deleted"}), 200


@store_bp.route("/stores/<int:store_id>/dot", methods=["PUT"])
def assign_dot(store_id):
    """Body: {"dot_user_id": int|null}"""
    data = request.get_json(silent=True) or {}
    if "dot_user_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "dot_user_id is required (null clears)")
    store = store_service.assign_dot_to_store(current_session(), store_id, data["dot_user_id"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(store.to_dict()), 200


@store_bp.route("/stores/<int:store_id>/aderente", methods=["PUT"])
def assign_aderente(store_id):
    """Body: {"aderente_id": int|null}; the Aderente leaves any other store."""
    data = request.get_json(silent=True) or {}
    if "aderente_id" not in data:
        return api_error(E.VALIDATION_REQUIRED, "aderente_id is required (null clears)")
    store = store_service.assign_aderente_to_store(current_session(), store_id, data["aderente_id"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(store.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# USERS
# ═════════════════════════════════════════════════════════════════════════

@store_bp.route("/users", methods=["GET"])
def list_users():
    """Query params: role"""
    _viewer()
    users = store_service.list_users(role=request.args.get("role"))
    return jsonify([u.to_dict() for u in users]), 200


@store_bp.route("/users", methods=["POST"])
def create_user():
    data = request.get_json(silent=True) or {}
    if not (data.get("email") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "email is required")
    user = store_service.create_user(
        current_session(),
        email=data["email"],
        fullname=data.get("fullname", ""),
        roles=data.get("roles"),
        amont_id=data.get("amont_id"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict()), 201


@store_bp.route("/users/<int:user_id>", methods=["GET"])
def get_user(user_id):
    _viewer()
    return jsonify(store_service.get_user(user_id).to_dict()), 200


@store_bp.route("/users/<int:user_id>", methods=["PUT", "PATCH"])
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    user = store_service.update_user(
        current_session(), user_id, **{k: data[k] for k in USER_FIELDS if k in data},
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict()), 200


@store_bp.route("/users/<int:user_id>", methods=["DELETE"])
def delete_user(user_id):
    store_service.delete_user(current_session(), user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "User deleted"}), 200


@store_bp.route("/users/<int:user_id>/stores", methods=["GET"])
def stores_for_dot(user_id):
    """Effective store set of a DOT (derived from store assignments)."""
    _viewer()
    return jsonify([s.to_dict() for s in store_service.get_stores_for_dot(user_id)]), 200


@store_bp.route("/users/<int:user_id>/dots", methods=["GET"])
def dots_for_amont(user_id):
    _viewer()
    return jsonify([u.to_dict() for u in store_service.get_dots_for_amont(user_id)]), 200
