"""
Playwright Test Manager
Release blueprint.

Endpoints:
    /api/v1/releases                                              GET (all projects)
    /api/v1/projects/<pid>/releases                               GET, POST
    /api/v1/projects/<pid>/releases/<rid>                         GET, PUT, DELETE
    /api/v1/projects/<pid>/releases/<rid>/test-cases              GET, POST
    /api/v1/projects/<pid>/releases/<rid>/test-cases/<tcid>       DELETE
"""

import logging

from flask import Blueprint, jsonify, request

from testmanager.blueprints import json_body, paginate_query
from testmanager.middleware.permission_required import require_permission
from testmanager.models.project import Project
from testmanager.models.release import Release, ReleaseTestCase
from testmanager.services import release_service
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error, get_child_or_404, get_or_404

logger = logging.getLogger(__name__)

release_bp = Blueprint("release", __name__, url_prefix="/api/v1")
register_service_error_handlers(release_bp)


def _list_args():
    return dict(
        status=request.args.get("status"),
        search=request.args.get("search"),
        start_from=request.args.get("start_date"),
        end_until=request.args.get("end_date"),
        sort=request.args.get("sort", "updated_at"),
        order=request.args.get("order", "desc"),
    )


def _release_in_project(pid, rid):
    project, err = get_or_404(Project, pid)
    if err:
        return None, err
    return get_child_or_404(Release, rid, project.id, "Release")


@release_bp.route("/releases", methods=["GET"])
@require_permission("project.view")
def list_all_releases():
    q = release_service.list_releases(**_list_args())
    items, total = paginate_query(q, default_limit=50)
    return jsonify({"items": [r.to_dict(include_project=True) for r in items], "total": total})


@release_bp.route("/projects/<int:pid>/releases", methods=["GET"])
@require_permission("project.view")
def list_releases(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    q = release_service.list_releases(project, **_list_args())
    items, total = paginate_query(q, default_limit=50)
    return jsonify({"items": [r.to_dict() for r in items], "total": total})


@release_bp.route("/projects/<int:pid>/releases", methods=["POST"])
@require_permission("project.update")
def create_release(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    release = release_service.create_release(project, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(release.to_dict()), 201


@release_bp.route("/projects/<int:pid>/releases/<int:rid>", methods=["GET"])
@require_permission("project.view")
def get_release(pid, rid):
    release, err = _release_in_project(pid, rid)
    if err:
        return err
    return jsonify(release.to_dict(include_test_cases=True, include_project=True))


@release_bp.route("/projects/<int:pid>/releases/<int:rid>", methods=["PUT"])
@require_permission("project.update")
def update_release(pid, rid):
    release, err = _release_in_project(pid, rid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    release_service.update_release(release, data, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(release.to_dict())


@release_bp.route("/projects/<int:pid>/releases/<int:rid>", methods=["DELETE"])
@require_permission("project.update")
def delete_release(pid, rid):
    release, err = _release_in_project(pid, rid)
    if err:
        return err
    release_service.delete_release(release)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Release deleted"}), 200


@release_bp.route("/projects/<int:pid>/releases/<int:rid>/test-cases", methods=["GET"])
@require_permission("project.view")
def list_release_test_cases(pid, rid):
    release, err = _release_in_project(pid, rid)
    if err:
        return err
    links = release.test_case_links.order_by(ReleaseTestCase.id.asc()).all()
    return jsonify({"items": [link.to_dict() for link in links], "total": len(links)})


@release_bp.route("/projects/<int:pid>/releases/<int:rid>/test-cases", methods=["POST"])
@require_permission("project.update")
def add_release_test_cases(pid, rid):
    release, err = _release_in_project(pid, rid)
    if err:
        return err
    data = json_body()
    ids = (data or {}).get("test_case_ids")
    if not isinstance(ids, list) or not ids or not all(type(i) is int for i in ids):
        return jsonify({"error": "test_case_ids must be a non-empty list of ids"}), 400

    created = release_service.add_test_cases(release, ids, actor=actor_from_request(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "added": [link.to_dict() for link in created],
        "test_case_count": release.test_case_links.count(),
    }), 201


@release_bp.route("/projects/<int:pid>/releases/<int:rid>/test-cases/<int:tcid>", methods=["DELETE"])
@require_permission("project.update")
def remove_release_test_case(pid, rid, tcid):
    release, err = _release_in_project(pid, rid)
    if err:
        return err
    release_service.remove_test_case(release, tcid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Test case removed from release"}), 200
