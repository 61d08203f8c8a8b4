"""
JWT Auth Middleware — parses a Bearer token into g.jwt_*.

Runs before the API-key gate in testmanager.auth. A request carrying a
valid access token is authenticated as that user; without one the
request falls through to the API-key check.

    g.jwt_user_id     int user id, or None
    g.jwt_user_email  str, used for created_by / updated_by
    g.jwt_roles       list of role names
"""

import logging

import jwt as pyjwt
from flask import g, request

from testmanager.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_user_email = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
            g.jwt_user_id = int(payload["sub"])
            g.jwt_user_email = payload.get("email")
            g.jwt_roles = payload.get("roles", [])
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired access token on %s", path)
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            logger.debug("Invalid access token on %s", path)
