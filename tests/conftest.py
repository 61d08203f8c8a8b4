"""
Shared pytest fixtures for the Playwright Test Manager test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - pw_root: temporary PLAYWRIGHT_PROJECTS_ROOT for file generation
    - inline_runs: run orchestrator executes inline with a fake runner
"""

import subprocess

import pytest

from testmanager import create_app
from testmanager.models import db as _db
from testmanager.services import run_orchestrator
from testmanager.services.permission_service import invalidate_all_cache


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # ids are reused after drop/create, so the RBAC cache must not survive a test
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def pw_root(app, tmp_path, monkeypatch):
    """Point PLAYWRIGHT_PROJECTS_ROOT at a per-test temporary folder."""
    monkeypatch.setitem(app.config, "PLAYWRIGHT_PROJECTS_ROOT", str(tmp_path))
    return tmp_path


class FakeRunner:
    """Stands in for subprocess.run; records every command it receives."""

    def __init__(self):
        self.returncode = 0
        self.stdout = '{"suites": []}'
        self.stderr = ""
        self.raises = None
        self.calls = []

    def __call__(self, command, cwd, timeout):
        self.calls.append({"command": command, "cwd": cwd, "timeout": timeout})
        if self.raises is not None:
            raise self.raises
        return subprocess.CompletedProcess(
            args=command, returncode=self.returncode, stdout=self.stdout, stderr=self.stderr,
        )


@pytest.fixture()
def inline_runs(monkeypatch):
    """Background runs execute synchronously; the runner process is faked."""
    runner = FakeRunner()
    monkeypatch.setattr(run_orchestrator, "_invoke", runner)
    monkeypatch.setattr(
        run_orchestrator, "_spawn",
        lambda app, result_id: run_orchestrator.execute_run(result_id),
    )
    return runner


# ── API helpers ──────────────────────────────────────────────────────────


def _create_project(client, **kw):
    payload = {"name": "Shop", "url": "https://shop.example.com"}
    payload.update(kw)
    res = client.post("/api/v1/projects", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_test_case(client, project_id, **kw):
    payload = {"name": "Verify login succeeds"}
    payload.update(kw)
    res = client.post(f"/api/v1/projects/{project_id}/test-cases", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_fixture(client, project_id, **kw):
    payload = {"name": "Logged in user"}
    payload.update(kw)
    res = client.post(f"/api/v1/projects/{project_id}/fixtures", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _add_step(client, kind, parent_id, action, **kw):
    payload = {"action": action}
    payload.update(kw)
    res = client.post(f"/api/v1/{kind}/{parent_id}/steps", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _actions(client, kind, parent_id):
    res = client.get(f"/api/v1/{kind}/{parent_id}/steps")
    assert res.status_code == 200
    return [s["action"] for s in res.get_json()["steps"]]
