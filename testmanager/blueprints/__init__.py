"""
Playwright Test Manager
Blueprint registry and shared request helpers.
"""

from flask import jsonify, request

from testmanager.models import db
from testmanager.models.testing import Fixture, TestCase

# URL segment -> (model, permission resource)
PARENT_KINDS = {
    "test-cases": (TestCase, "testCase"),
    "fixtures": (Fixture, "fixture"),
}


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def get_parent_or_404(kind, parent_id):
    """Resolve a step owner from its URL segment ("test-cases" or "fixtures")."""
    model, _ = PARENT_KINDS[kind]
    parent = db.session.get(model, parent_id)
    if parent is None:
        label = "Test case" if model is TestCase else "Fixture"
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return parent, None


def json_body():
    """Request JSON object, or None when the body is missing or not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def register_blueprints(app):
    from testmanager.blueprints.admin_bp import admin_bp
    from testmanager.blueprints.ai_bp import ai_bp
    from testmanager.blueprints.auth_bp import auth_bp
    from testmanager.blueprints.fixture_bp import fixture_bp
    from testmanager.blueprints.project_bp import project_bp
    from testmanager.blueprints.release_bp import release_bp
    from testmanager.blueprints.run_bp import run_bp
    from testmanager.blueprints.step_bp import step_bp
    from testmanager.blueprints.test_case_bp import test_case_bp
    from testmanager.blueprints.version_bp import version_bp

    for bp in (
        project_bp, test_case_bp, fixture_bp, step_bp, version_bp,
        release_bp, run_bp, ai_bp, auth_bp, admin_bp,
    ):
        app.register_blueprint(bp)
