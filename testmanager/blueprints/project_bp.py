"""
Playwright Test Manager
Project blueprint — projects, their Playwright folder and tags.

Endpoints:
    /api/v1/projects                         GET, POST
    /api/v1/projects/<pid>                   GET, PUT, DELETE
    /api/v1/projects/<pid>/init-playwright   POST
    /api/v1/projects/<pid>/tags              GET, POST
"""

import logging

from flask import Blueprint, jsonify, request

from testmanager.blueprints import json_body, paginate_query
from testmanager.middleware.permission_required import require_permission
from testmanager.models.project import Project
from testmanager.services import project_service, test_case_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")
register_service_error_handlers(project_bp)


@project_bp.route("/projects", methods=["GET"])
@require_permission("project.view")
def list_projects():
    q = Project.query
    search = request.args.get("search")
    if search:
        q = q.filter(Project.name.ilike(f"%{search}%"))
    environment = request.args.get("environment")
    if environment:
        q = q.filter_by(environment=environment)
    projects, total = paginate_query(q.order_by(Project.name))
    return jsonify({"items": [p.to_dict(include_counts=True) for p in projects], "total": total})


@project_bp.route("/projects", methods=["POST"])
@require_permission("project.update")
def create_project():
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    project = project_service.create_project(data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<int:pid>", methods=["GET"])
@require_permission("project.view")
def get_project(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    return jsonify(project.to_dict(include_counts=True))


@project_bp.route("/projects/<int:pid>", methods=["PUT"])
@require_permission("project.update")
def update_project(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    project_service.update_project(project, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict())


@project_bp.route("/projects/<int:pid>", methods=["DELETE"])
@require_permission("project.delete")
def delete_project(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    name = project.name
    project_service.delete_project(project)
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Deleted project %s (%s)", pid, name)
    return jsonify({"message": f"Project '{name}' deleted"}), 200


@project_bp.route("/projects/<int:pid>/init-playwright", methods=["POST"])
@require_permission("project.update")
def init_playwright(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    project_service.init_playwright(project)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict())


# ── Tags ─────────────────────────────────────────────────────────────────────

@project_bp.route("/projects/<int:pid>/tags", methods=["GET"])
@require_permission("project.view")
def list_tags(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    return jsonify(test_case_service.list_tags(project))


@project_bp.route("/projects/<int:pid>/tags", methods=["POST"])
@require_permission("project.update")
def create_tag(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    tag = test_case_service.create_tag(project, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(tag.to_dict()), 201
