"""
Playwright Test Manager
Fixture blueprint.

Endpoints:
    /api/v1/projects/<pid>/fixtures     GET, POST
    /api/v1/fixtures/<fid>              GET, PUT, DELETE
    /api/v1/fixtures/<fid>/clone        POST
    /api/v1/fixtures/<fid>/file         GET   (generated .fixture.ts)
"""

import logging

from flask import Blueprint, jsonify, request

from testmanager.blueprints import json_body, paginate_query
from testmanager.middleware.permission_required import require_permission, require_resource_permission
from testmanager.models.project import Project
from testmanager.models.testing import Fixture
from testmanager.services import fixture_service, playwright_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

fixture_bp = Blueprint("fixture", __name__, url_prefix="/api/v1")
register_service_error_handlers(fixture_bp)


@fixture_bp.route("/projects/<int:pid>/fixtures", methods=["GET"])
@require_permission("project.view")
def list_fixtures(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    q = fixture_service.list_fixtures(project, search=request.args.get("search"))
    items, total = paginate_query(q)
    return jsonify({"items": [f.to_dict() for f in items], "total": total})


@fixture_bp.route("/projects/<int:pid>/fixtures", methods=["POST"])
@require_permission("project.update")
def create_fixture(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    if data.get("steps") is not None and not isinstance(data["steps"], list):
        return jsonify({"error": "steps must be a list"}), 400

    fixture = fixture_service.create_fixture(project, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(fixture.to_dict(include_steps=True)), 201


@fixture_bp.route("/fixtures/<int:fid>", methods=["GET"])
@require_resource_permission("fixture", "view", "fid")
def get_fixture(fid):
    fixture, err = get_or_404(Fixture, fid)
    if err:
        return err
    return jsonify(fixture.to_dict(include_steps=True))


@fixture_bp.route("/fixtures/<int:fid>", methods=["PUT"])
@require_resource_permission("fixture", "update", "fid")
def update_fixture(fid):
    fixture, err = get_or_404(Fixture, fid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    fixture_service.update_fixture(fixture, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(fixture.to_dict(include_steps=True))


@fixture_bp.route("/fixtures/<int:fid>", methods=["DELETE"])
@require_resource_permission("fixture", "delete", "fid")
def delete_fixture(fid):
    fixture, err = get_or_404(Fixture, fid)
    if err:
        return err
    fixture_service.delete_fixture(fixture)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Fixture deleted"}), 200


@fixture_bp.route("/fixtures/<int:fid>/clone", methods=["POST"])
@require_resource_permission("fixture", "update", "fid")
def clone_fixture(fid):
    fixture, err = get_or_404(Fixture, fid)
    if err:
        return err
    copy = fixture_service.clone_fixture(fixture, actor=actor_from_request())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(copy.to_dict(include_steps=True)), 201


@fixture_bp.route("/fixtures/<int:fid>/file", methods=["GET"])
@require_resource_permission("fixture", "view", "fid")
def get_fixture_file(fid):
    fixture, err = get_or_404(Fixture, fid)
    if err:
        return err
    return jsonify({
        "path": f"fixtures/{playwright_service.fixture_file_name(fixture)}",
        "content": playwright_service.render_fixture_file(fixture, fixture.ordered_steps()),
    })
