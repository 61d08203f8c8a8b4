"""
Permission Decorators — JWT-aware RBAC decorators for route protection.

Usage:
    @bp.route("/api/v1/projects/<int:project_id>", methods=["PUT"])
    @require_permission("project.update")
    def update_project(project_id):
        ...

    @bp.route("/api/v1/fixtures/<int:fixture_id>", methods=["PUT"])
    @require_resource_permission("fixture", "update", "fixture_id")
    def update_fixture(fixture_id):
        ...

When no JWT user is present (API-key auth), these decorators pass through
and the API-key gate in testmanager.auth governs access.
"""

import functools
import logging

from flask import g, jsonify

from testmanager.services.permission_service import has_permission, has_resource_permission

logger = logging.getLogger(__name__)


def _denied(codename):
    return jsonify({"error": "Permission denied", "required": codename}), 403


def require_permission(codename: str):
    """
    Decorator: require the JWT user to hold a specific permission.

    Administrators bypass all checks.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return f(*args, **kwargs)

            if not has_permission(user_id, codename):
                logger.warning(
                    "User %d denied: missing permission '%s' on %s",
                    user_id, codename, f.__name__,
                )
                return _denied(codename)

            return f(*args, **kwargs)
        return decorated
    return decorator


def require_resource_permission(resource: str, action: str, id_arg: str | None = None):
    """
    Decorator: require "<resource>.<action>" or, for project-owned
    resources, "project.<action>".

    Args:
        resource: "project", "testCase", "fixture" or "testResult".
        action: e.g. "view", "update", "run", "delete".
        id_arg: name of the view keyword argument holding the resource id.
    """
    codename = f"{resource}.{action}"

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return f(*args, **kwargs)

            resource_id = kwargs.get(id_arg) if id_arg else None
            if not has_resource_permission(user_id, resource, action, resource_id):
                logger.warning(
                    "User %d denied: '%s' on %s id=%s",
                    user_id, codename, f.__name__, resource_id,
                )
                return _denied(codename)

            return f(*args, **kwargs)
        return decorated
    return decorator


def require_parent_permission(action: str, kind_arg: str = "kind", id_arg: str = "parent_id"):
    """
    Decorator for routes shared by test cases and fixtures
    (/<kind>/<parent_id>/...): the resource is chosen from the URL segment.
    """
    from testmanager.blueprints import PARENT_KINDS

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                return f(*args, **kwargs)

            _, resource = PARENT_KINDS[kwargs[kind_arg]]
            resource_id = kwargs.get(id_arg)
            if not has_resource_permission(user_id, resource, action, resource_id):
                logger.warning(
                    "User %d denied: '%s.%s' on %s id=%s",
                    user_id, resource, action, f.__name__, resource_id,
                )
                return _denied(f"{resource}.{action}")

            return f(*args, **kwargs)
        return decorated
    return decorator
