"""
Playwright Test Manager
Admin blueprint — users, roles and permissions.

Endpoints:
    /api/v1/admin/users                       GET, POST        user.manage
    /api/v1/admin/users/<uid>/status          PUT              user.manage
    /api/v1/admin/users/<uid>/roles           PUT              user.manage
    /api/v1/admin/roles                       GET              role.manage
    /api/v1/admin/roles/<rid>/permissions     PUT              role.manage
    /api/v1/admin/permissions                 GET              role.manage
"""

import logging

from flask import Blueprint, jsonify, request

from testmanager.blueprints import json_body, paginate_query
from testmanager.middleware.permission_required import require_permission
from testmanager.models.auth import Permission, User
from testmanager.services import user_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_service_error_handlers(admin_bp)


# ── Users ────────────────────────────────────────────────────────────────────

@admin_bp.route("/users", methods=["GET"])
@require_permission("user.manage")
def list_users():
    users, total = paginate_query(user_service.list_users(request.args.get("status")))
    return jsonify({"items": [u.to_dict(include_roles=True) for u in users], "total": total})


@admin_bp.route("/users", methods=["POST"])
@require_permission("user.manage")
def create_user():
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    if not data.get("email") or not data.get("password"):
        return jsonify({"error": "email and password are required"}), 400
    roles = data.get("roles") or []
    if not isinstance(roles, list):
        return jsonify({"error": "roles must be a list"}), 400

    user = user_service.create_user(
        data["email"], data["password"],
        full_name=data.get("full_name"),
        username=data.get("username"),
        role_names=roles,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict(include_roles=True)), 201


@admin_bp.route("/users/<int:uid>/status", methods=["PUT"])
@require_permission("user.manage")
def set_user_status(uid):
    user, err = get_or_404(User, uid)
    if err:
        return err
    data = json_body()
    if data is None or not data.get("status"):
        return jsonify({"error": "status is required"}), 400
    user_service.set_status(user, data["status"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict(include_roles=True))


@admin_bp.route("/users/<int:uid>/roles", methods=["PUT"])
@require_permission("user.manage")
def set_user_roles(uid):
    user, err = get_or_404(User, uid)
    if err:
        return err
    data = json_body()
    if data is None or not isinstance(data.get("roles"), list):
        return jsonify({"error": "roles must be a list"}), 400
    user_service.assign_roles(user, data["roles"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict(include_roles=True))


# ── Roles & permissions ──────────────────────────────────────────────────────

@admin_bp.route("/roles", methods=["GET"])
@require_permission("role.manage")
def list_roles():
    return jsonify([r.to_dict(include_permissions=True) for r in user_service.list_roles()])


@admin_bp.route("/roles/<int:rid>/permissions", methods=["PUT"])
@require_permission("role.manage")
def set_role_permissions(rid):
    role = user_service.get_role(rid)
    data = json_body()
    if data is None or not isinstance(data.get("permissions"), list):
        return jsonify({"error": "permissions must be a list"}), 400
    user_service.set_role_permissions(role, data["permissions"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(role.to_dict(include_permissions=True))


@admin_bp.route("/permissions", methods=["GET"])
@require_permission("role.manage")
def list_permissions():
    perms = Permission.query.order_by(Permission.category, Permission.codename).all()
    return jsonify([p.to_dict() for p in perms])
