"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login       — Email + password → JWT pair
  POST /api/v1/auth/refresh     — Refresh token → new pair (rotation)
  POST /api/v1/auth/logout      — Revoke refresh token
  GET  /api/v1/auth/me          — Current user profile + permissions
"""

import logging

import jwt as pyjwt
from flask import Blueprint, g, jsonify, request

from testmanager.models import db
from testmanager.models.auth import User
from testmanager.services import permission_service, user_service
from testmanager.services.jwt_service import (
    create_session,
    decode_refresh_token,
    generate_token_pair,
    get_active_session_by_token,
    hash_token,
    revoke_session_by_token,
    rotate_session,
)
from testmanager.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


def _token_response(tokens, user=None, status=200):
    body = {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }
    if user is not None:
        body["user"] = user.to_dict(include_roles=True)
    return jsonify(body), status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return JWT pair.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    user = user_service.authenticate(email, password)
    if user is None:
        logger.info("Failed login for %s", email)
        return jsonify({"error": "Invalid email or password"}), 401

    tokens = generate_token_pair(user, user.role_names)
    create_session(
        user.id, tokens["token_hash"],
        request.remote_addr, request.headers.get("User-Agent", ""),
        tokens["expires_at"],
    )
    err = db_commit_or_error()
    if err:
        return err
    return _token_response(tokens, user)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """
    Exchange a refresh token for a new token pair (token rotation).

    Body: { "refresh_token": "..." }
    """
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token") or ""
    if not refresh_token:
        return jsonify({"error": "Refresh token is required"}), 400

    try:
        payload = decode_refresh_token(refresh_token)
        user_id = int(payload["sub"])
    except (pyjwt.InvalidTokenError, KeyError, ValueError):
        return jsonify({"error": "Invalid or expired refresh token"}), 401

    session = get_active_session_by_token(user_id, hash_token(refresh_token))
    if session is None:
        return jsonify({"error": "Session not found or revoked"}), 401

    user = db.session.get(User, user_id)
    if session.is_expired or user is None or not user.is_active:
        session.is_active = False
        db_commit_or_error()
        return jsonify({"error": "Session expired or user inactive"}), 401

    tokens = generate_token_pair(user, user.role_names)
    rotate_session(
        session, user.id, tokens["token_hash"], tokens["expires_at"],
        request.remote_addr, request.headers.get("User-Agent", ""),
    )
    err = db_commit_or_error()
    if err:
        return err
    return _token_response(tokens)


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Revoke the session of the given refresh token."""
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token") or ""
    if not refresh_token:
        return jsonify({"error": "Refresh token is required"}), 400

    revoke_session_by_token(hash_token(refresh_token))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Logged out successfully"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
def me():
    """Current user profile from the access token."""
    user_id = getattr(g, "jwt_user_id", None)
    if not user_id:
        return jsonify({"error": "Authentication required"}), 401

    user = db.session.get(User, user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404

    return jsonify({
        "user": user.to_dict(include_roles=True),
        "permissions": sorted(permission_service.get_user_permissions(user.id)),
    }), 200
