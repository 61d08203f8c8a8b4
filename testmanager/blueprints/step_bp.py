"""
Playwright Test Manager
Step blueprint — ordered steps of test cases and fixtures.

Endpoints (<kind> is "test-cases" or "fixtures"):
    /api/v1/<kind>/<id>/steps             GET, POST
    /api/v1/<kind>/<id>/steps/bulk        POST   (append several, one version)
    /api/v1/<kind>/<id>/steps/reorder     PUT    {step_ids, expected_version?}
    /api/v1/steps/<sid>                   GET, PUT, DELETE
    /api/v1/steps/<sid>/move              PUT    {position, expected_version?}
    /api/v1/steps/<sid>/move-up           POST
    /api/v1/steps/<sid>/move-down         POST
    /api/v1/steps/duplicate/<sid>         POST

Every accepted mutation regenerates the Playwright file of the parent and
writes one version of it.
"""

import logging

from flask import Blueprint, jsonify

from testmanager.blueprints import get_parent_or_404, json_body
from testmanager.middleware.permission_required import (
    require_parent_permission,
    require_resource_permission,
)
from testmanager.services import step_ordering, step_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error

logger = logging.getLogger(__name__)

step_bp = Blueprint("step", __name__, url_prefix="/api/v1")
register_service_error_handlers(step_bp)

PARENT_SEGMENT = "<any('test-cases', 'fixtures'):kind>/<int:parent_id>"


def _steps_payload(parent):
    return {
        "parent_id": parent.id,
        "kind": parent.KIND,
        "steps": [s.to_dict() for s in parent.ordered_steps()],
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Parent-scoped
# ═══════════════════════════════════════════════════════════════════════════

@step_bp.route(f"/{PARENT_SEGMENT}/steps", methods=["GET"])
@require_parent_permission("view")
def list_steps(kind, parent_id):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    return jsonify(_steps_payload(parent))


@step_bp.route(f"/{PARENT_SEGMENT}/steps", methods=["POST"])
@require_parent_permission("update")
def add_step(kind, parent_id):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    if not (data.get("action") or "").strip():
        return jsonify({"error": "action is required"}), 400

    step = step_service.add_step(parent, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict()), 201


@step_bp.route(f"/{PARENT_SEGMENT}/steps/bulk", methods=["POST"])
@require_parent_permission("update")
def add_steps(kind, parent_id):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    data = json_body()
    items = data.get("steps") if data else None
    if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
        return jsonify({"error": "steps must be a list of objects"}), 400

    created = step_service.add_steps(parent, items, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"created": [s.to_dict() for s in created], **_steps_payload(parent)}), 201


@step_bp.route(f"/{PARENT_SEGMENT}/steps/reorder", methods=["PUT"])
@require_parent_permission("update")
def reorder_steps(kind, parent_id):
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    data = json_body()
    if data is None or not isinstance(data.get("step_ids"), list):
        return jsonify({"error": "step_ids must be a list"}), 400

    step_service.reorder_steps(
        parent, data["step_ids"],
        expected_version=data.get("expected_version"),
        actor=actor_from_request(data),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_steps_payload(parent))


# ═══════════════════════════════════════════════════════════════════════════
#  Single step
# ═══════════════════════════════════════════════════════════════════════════

@step_bp.route("/steps/<int:sid>", methods=["GET"])
@require_resource_permission("step", "view", "sid")
def get_step(sid):
    return jsonify(step_service.get_step(sid).to_dict())


@step_bp.route("/steps/<int:sid>", methods=["PUT"])
@require_resource_permission("step", "update", "sid")
def update_step(sid):
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    step = step_service.update_step(sid, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(step.to_dict())


@step_bp.route("/steps/<int:sid>", methods=["DELETE"])
@require_resource_permission("step", "update", "sid")
def delete_step(sid):
    parent = step_service.remove_step(sid, actor=actor_from_request())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Step deleted", **_steps_payload(parent)})


@step_bp.route("/steps/<int:sid>/move", methods=["PUT"])
@require_resource_permission("step", "update", "sid")
def move_step(sid):
    data = json_body()
    if data is None or "position" not in data:
        return jsonify({"error": "position is required"}), 400

    step = step_service.move_step(
        sid, data["position"],
        expected_version=data.get("expected_version"),
        actor=actor_from_request(data),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"step": step.to_dict(), **_steps_payload(step_ordering.parent_of(step))})


@step_bp.route("/steps/<int:sid>/move-up", methods=["POST"])
@require_resource_permission("step", "update", "sid")
def move_step_up(sid):
    step = step_service.move_step_up(sid, actor=actor_from_request())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"step": step.to_dict(), **_steps_payload(step_ordering.parent_of(step))})


@step_bp.route("/steps/<int:sid>/move-down", methods=["POST"])
@require_resource_permission("step", "update", "sid")
def move_step_down(sid):
    step = step_service.move_step_down(sid, actor=actor_from_request())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"step": step.to_dict(), **_steps_payload(step_ordering.parent_of(step))})


@step_bp.route("/steps/duplicate/<int:sid>", methods=["POST"])
@require_resource_permission("step", "update", "sid")
def duplicate_step(sid):
    copy = step_service.duplicate_step(sid, actor=actor_from_request())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(copy.to_dict()), 201
