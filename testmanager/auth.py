"""
Playwright Test Manager
API key authentication gate.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - JSON Content-Type enforcement for state-changing requests

Security model:
    - All /api/v1/* endpoints require either a valid JWT access token
      (see testmanager.middleware.jwt_auth) or a valid API key, except
      /api/v1/health and the login/refresh endpoints
    - Fine-grained access for JWT users is enforced per route by
      testmanager.middleware.permission_required

Configuration (env vars):
    API_KEYS          — comma-separated list of valid API keys
                        e.g. "ci-runner-key,dashboard-key"
    API_AUTH_ENABLED  — set to "false" to disable auth (development only)
"""

import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

AUTH_SKIP_PATHS = (
    "/api/v1/health",
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/auth/logout",
)

_FALSE_VALUES = ("false", "0", "no", "off")


def _parse_api_keys() -> set[str]:
    """Parse API_KEYS (comma separated) into a set."""
    raw = os.getenv("API_KEYS", "") or current_app.config.get("API_KEYS", "")
    return {k.strip() for k in raw.split(",") if k.strip()}


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in _FALSE_VALUES
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in _FALSE_VALUES


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    return request.args.get("api_key", "").strip() or None


def _check_content_type():
    """
    State-changing requests with a body must be application/json.
    HTML forms cannot send that content type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def init_auth(app):
    """Install the authentication hook for /api/v1 routes."""

    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if request.path.startswith(AUTH_SKIP_PATHS):
            return None

        if not _is_auth_enabled():
            g.api_key = "dev-mode"
            return None

        if getattr(g, "jwt_user_id", None) is not None:
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide a Bearer token or X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        if api_key not in api_keys:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        g.api_key = api_key
        return None

    with app.app_context():
        logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
