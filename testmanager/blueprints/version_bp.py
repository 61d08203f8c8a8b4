"""
Playwright Test Manager
Version blueprint — history and revert for test cases and fixtures.

Endpoints (<kind> is "test-cases" or "fixtures"):
    /api/v1/<kind>/<id>/versions                    GET
    /api/v1/<kind>/<id>/versions/<vid>              GET
    /api/v1/<kind>/<id>/versions/<vid>/steps        GET
    /api/v1/<kind>/<id>/versions/<vid>/diff/<vid2>  GET
    /api/v1/<kind>/<id>/versions/<vid>/revert       POST
"""

import logging

from flask import Blueprint, jsonify

from testmanager.blueprints import get_parent_or_404
from testmanager.middleware.permission_required import require_parent_permission
from testmanager.models.base import same_instant
from testmanager.services import step_service, versioning_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error

logger = logging.getLogger(__name__)

version_bp = Blueprint("version", __name__, url_prefix="/api/v1")
register_service_error_handlers(version_bp)

PARENT_SEGMENT = "<any('test-cases', 'fixtures'):kind>/<int:parent_id>"


def _version_dict(parent, version, include_steps=False):
    d = version.to_dict(include_steps=include_steps)
    d["is_current"] = same_instant(version.created_at, parent.updated_at)
    return d


@version_bp.route(f"/{PARENT_SEGMENT}/versions", methods=["GET"])
@require_parent_permission("view")
def list_versions(kind, parent_id):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    versions = versioning_service.list_versions(parent)
    return jsonify({
        "items": [_version_dict(parent, v) for v in versions],
        "total": len(versions),
    })


@version_bp.route(f"/{PARENT_SEGMENT}/versions/<int:vid>", methods=["GET"])
@require_parent_permission("view")
def get_version(kind, parent_id, vid):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    version = versioning_service.get_version(parent, vid)
    return jsonify(_version_dict(parent, version, include_steps=True))


@version_bp.route(f"/{PARENT_SEGMENT}/versions/<int:vid>/steps", methods=["GET"])
@require_parent_permission("view")
def get_version_steps(kind, parent_id, vid):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    version = versioning_service.get_version(parent, vid)
    return jsonify(sorted(version.steps or [], key=lambda s: s.get("order", 0)))


@version_bp.route(f"/{PARENT_SEGMENT}/versions/<int:vid>/diff/<int:other_vid>", methods=["GET"])
@require_parent_permission("view")
def diff_versions(kind, parent_id, vid, other_vid):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    left = versioning_service.get_version(parent, vid)
    right = versioning_service.get_version(parent, other_vid)
    return jsonify({
        "from_version": left.version_no,
        "to_version": right.version_no,
        **versioning_service.diff_versions(left, right),
    })


@version_bp.route(f"/{PARENT_SEGMENT}/versions/<int:vid>/revert", methods=["POST"])
@require_parent_permission("update")
def revert_version(kind, parent_id, vid):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    target, preserved = step_service.revert_parent(parent, vid, actor=actor_from_request())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "message": f"Reverted to version {target.version_no}",
        "reverted_to": target.version_no,
        "saved_version": preserved.to_dict(),
        "current": parent.to_dict(include_steps=True),
    })
