"""
Playwright Test Manager
Run blueprint — start Playwright runs and read their history.

Endpoints:
    /api/v1/projects/<pid>/run-test                       POST
    /api/v1/projects/<pid>/test-results                   GET
    /api/v1/projects/<pid>/test-results/<rid>             GET   (poll target)
    /api/v1/projects/<pid>/test-cases/<tcid>/results      GET

run-test in background mode answers 202 {message, test_result_id} and the
client polls the result every 2 seconds until status is completed or
failed. With wait_for_result=true it answers 200 with the finished result.
"""

import logging

from flask import Blueprint, jsonify

from testmanager.blueprints import json_body, paginate_query
from testmanager.middleware.permission_required import require_permission, require_resource_permission
from testmanager.models.project import Project
from testmanager.models.run import TestResultHistory
from testmanager.models.testing import TestCase
from testmanager.services import run_orchestrator
from testmanager.utils.errors import register_service_error_handlers
from testmanager.utils.helpers import actor_from_request, db_commit_or_error, get_child_or_404, get_or_404

logger = logging.getLogger(__name__)

run_bp = Blueprint("run", __name__, url_prefix="/api/v1")
register_service_error_handlers(run_bp)


@run_bp.route("/projects/<int:pid>/run-test", methods=["POST"])
@require_permission("project.run")
def run_test(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = json_body()
    if data is None:
        return jsonify({"error": "JSON object body is required"}), 400
    if data.get("test_case_ids") is not None and not isinstance(data["test_case_ids"], list):
        return jsonify({"error": "test_case_ids must be a list"}), 400

    result, waited = run_orchestrator.start_run(project, data, actor=actor_from_request(data))
    if not waited:
        return jsonify({"message": "Test run started", "test_result_id": result.id}), 202

    err = db_commit_or_error()
    if err:
        return err
    message = "Test run completed" if result.status == "completed" else "Test run failed"
    return jsonify({
        "message": message,
        "test_result_id": result.id,
        "result": result.to_dict(include_executions=True),
    }), 200


@run_bp.route("/projects/<int:pid>/test-results", methods=["GET"])
@require_permission("project.view")
def list_test_results(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    items, total = paginate_query(run_orchestrator.list_results(project), default_limit=50)
    return jsonify({
        "items": [r.to_dict(include_output=False) for r in items],
        "total": total,
    })


@run_bp.route("/projects/<int:pid>/test-results/<int:rid>", methods=["GET"])
@require_resource_permission("testResult", "view", "rid")
def get_test_result(pid, rid):
    result, err = get_child_or_404(TestResultHistory, rid, pid, "Test result")
    if err:
        return err
    body = result.to_dict(include_executions=True)
    body["worker_alive"] = run_orchestrator.is_worker_alive(result.id)
    return jsonify(body)


@run_bp.route("/projects/<int:pid>/test-cases/<int:tcid>/results", methods=["GET"])
@require_resource_permission("testCase", "view", "tcid")
def test_case_results(pid, tcid):
    tc, err = get_child_or_404(TestCase, tcid, pid, "Test case")
    if err:
        return err
    items, total = paginate_query(run_orchestrator.results_for_test_case(tc), default_limit=50)
    return jsonify({
        "items": [r.to_dict(include_output=False) for r in items],
        "total": total,
    })
