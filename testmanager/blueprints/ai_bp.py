"""
Playwright Test Manager
AI blueprint — step import, text fixes and provider settings.

Endpoints:
    /api/v1/ai/fix-test-case-name                                  POST
    /api/v1/ai/fix-step-text                                       POST
    /api/v1/ai/generate-steps                                      POST  (preview, nothing saved)
    /api/v1/ai/settings                                            GET, PUT
    /api/v1/projects/<pid>/<kind>/<id>/steps/analyze               POST  {code_lines}

A provider failure never turns into an error response on the import and
fix endpoints: the heuristic steps or the unchanged text are returned.
"""

import logging

from flask import Blueprint, jsonify

from testmanager.ai.step_importer import StepImporter
from testmanager.blueprints import get_parent_or_404, json_body
from testmanager.middleware.permission_required import require_parent_permission, require_permission
from testmanager.services import settings_service, step_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error

logger = logging.getLogger(__name__)

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1")
register_service_error_handlers(ai_bp)

PARENT_SEGMENT = "<any('test-cases', 'fixtures'):kind>/<int:parent_id>"


@ai_bp.route("/ai/fix-test-case-name", methods=["POST"])
def fix_test_case_name():
    data = json_body() or {}
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return jsonify({"error": "name is required"}), 400
    fixed = StepImporter().fix_test_case_name(name.strip())
    return jsonify({"fixed_name": fixed})


@ai_bp.route("/ai/fix-step-text", methods=["POST"])
def fix_step_text():
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    if not any(isinstance(data.get(k), str) and data[k].strip() for k in ("action", "data", "expected")):
        return jsonify({"error": "at least one of action, data, expected is required"}), 400
    return jsonify(StepImporter().fix_step_text(data))


@ai_bp.route("/ai/generate-steps", methods=["POST"])
def generate_steps():
    data = json_body()
    lines = data.get("code_lines") if data else None
    if not isinstance(lines, list):
        return jsonify({"error": "code_lines must be a list"}), 400
    steps = StepImporter().generate_steps(lines)
    return jsonify({"steps": steps, "count": len(steps)})


@ai_bp.route("/ai/settings", methods=["GET"])
@require_permission("system.settings")
def get_settings():
    return jsonify(settings_service.public_settings())


@ai_bp.route("/ai/settings", methods=["PUT"])
@require_permission("system.settings")
def update_settings():
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    settings = settings_service.update_settings(data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(settings)


@ai_bp.route(f"/projects/<int:pid>/{PARENT_SEGMENT}/steps/analyze", methods=["POST"])
@require_parent_permission("update")
def analyze_steps(pid, kind, parent_id):
    """Turn pasted lines into steps appended after the current last step."""
    parent, err = get_parent_or_404(kind, parent_id)
    if err:
        return err
    if parent.project_id != pid:
        return jsonify({"error": "Test case not found" if kind == "test-cases" else "Fixture not found"}), 404

    data = json_body()
    lines = data.get("code_lines") if data else None
    if not isinstance(lines, list):
        return jsonify({"error": "code_lines must be a list"}), 400

    generated = StepImporter().generate_steps(lines)
    if not generated:
        return jsonify({"error": "No non-empty lines to import"}), 400

    payload = [{k: s[k] for k in ("action", "data", "expected", "playwright_script")} for s in generated]
    created = step_service.add_steps(
        parent, payload,
        actor=actor_from_request(data),
        summary=f"Imported {len(payload)} steps",
    )
    err = db_commit_or_error()
    if err:
        return err

    heuristic = sum(1 for s in generated if s.get("source") == "heuristic")
    return jsonify({
        "message": f"{len(created)} steps added",
        "steps": [s.to_dict() for s in created],
        "heuristic_count": heuristic,
    }), 201
