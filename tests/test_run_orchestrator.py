"""
Tests — test run orchestrator and run API.

Covers:
    - state machine: legal transitions, terminal states are final
    - command building (file / list / project, browser, config options)
    - background (202) and wait (200) modes
    - non-zero exit, timeout and OS errors end as failed
    - execution rows, last_run, output truncation
    - result listing / polling endpoints, background worker liveness
    - unexpected runner errors still end the run as failed
"""

import subprocess

import pytest

from conftest import _create_project, _create_test_case
from testmanager.core.exceptions import ValidationError
from testmanager.models import db
from testmanager.models.run import TestResultHistory
from testmanager.models.testing import TestCase
from testmanager.services import playwright_service, run_orchestrator


@pytest.fixture()
def runnable(client, pw_root):
    p = _create_project(client, playwright_project_path="shop", init_playwright=True,
                        playwright_config={"retries": 1})
    a = _create_test_case(client, p["id"], name="Login works")
    b = _create_test_case(client, p["id"], name="Checkout works")
    return p, a, b


def _run(client, project_id, **body):
    return client.post(f"/api/v1/projects/{project_id}/run-test", json=body)


# ═════════════════════════════════════════════════════════════════════════════
# STATE MACHINE
# ═════════════════════════════════════════════════════════════════════════════

class TestTransitions:
    def _result(self):
        return TestResultHistory(project_id=1, command="true", status="pending")

    def test_happy_path(self):
        r = self._result()
        run_orchestrator.transition(r, "running")
        assert r.started_at is not None
        run_orchestrator.transition(r, "completed")
        assert r.finished_at is not None
        assert r.is_terminal

    def test_pending_can_fail_directly(self):
        r = self._result()
        run_orchestrator.transition(r, "failed")
        assert r.status == "failed"

    def test_terminal_is_final(self):
        r = self._result()
        run_orchestrator.transition(r, "running")
        run_orchestrator.transition(r, "failed")
        for status in ("pending", "running", "completed", "failed"):
            with pytest.raises(ValidationError):
                run_orchestrator.transition(r, status)
        assert r.status == "failed"

    def test_cannot_skip_running(self):
        with pytest.raises(ValidationError):
            run_orchestrator.transition(self._result(), "completed")


# ═════════════════════════════════════════════════════════════════════════════
# COMMAND
# ═════════════════════════════════════════════════════════════════════════════

class TestBuildCommand:
    def test_defaults(self):
        cmd = playwright_service.build_command(["tests/login.spec.ts"])
        assert cmd == "npx playwright test tests/login.spec.ts --project=chromium --reporter=json"

    def test_all_options(self):
        cmd = playwright_service.build_command(
            [], browser="firefox", headed=True,
            config={"timeout": 5000, "retries": 2, "workers": 4, "base_url": "https://x.test"},
        )
        assert cmd == (
            "BASE_URL=https://x.test npx playwright test --project=firefox --headed "
            "--timeout=5000 --retries=2 --workers=4 --reporter=json"
        )

    def test_paths_are_quoted(self):
        cmd = playwright_service.build_command(["tests/it's.spec.ts"])
        assert "'tests/it'\"'\"'s.spec.ts'" in cmd


# ═════════════════════════════════════════════════════════════════════════════
# RUN API
# ═════════════════════════════════════════════════════════════════════════════

class TestRunModes:
    def test_background_returns_202_and_completes(self, client, runnable, inline_runs):
        p, a, b = runnable
        res = _run(client, p["id"], mode="file", test_case_id=a["id"])
        assert res.status_code == 202
        body = res.get_json()
        assert body["message"] == "Test run started"

        poll = client.get(f"/api/v1/projects/{p['id']}/test-results/{body['test_result_id']}")
        assert poll.status_code == 200
        result = poll.get_json()
        assert result["status"] == "completed"
        assert result["success"] is True
        assert result["exit_code"] == 0
        assert [e["status"] for e in result["executions"]] == ["passed"]

        (call,) = inline_runs.calls
        assert call["command"] == (
            "BASE_URL=https://shop.example.com npx playwright test tests/login-works.spec.ts "
            "--project=chromium --timeout=30000 --retries=1 --reporter=json"
        )
        assert call["cwd"].endswith("shop")

    def test_wait_mode_returns_result(self, client, runnable, inline_runs):
        p, a, b = runnable
        res = _run(client, p["id"], mode="list", test_case_ids=[a["id"], b["id"]],
                   wait_for_result=True, browser="webkit", test_run_name="nightly")
        assert res.status_code == 200
        body = res.get_json()
        assert body["message"] == "Test run completed"
        result = body["result"]
        assert result["name"] == "nightly"
        assert result["browser"] == "webkit"
        assert len(result["executions"]) == 2
        assert "tests/login-works.spec.ts tests/checkout-works.spec.ts" in result["command"]

        tc = db.session.get(TestCase, a["id"])
        assert tc.last_run is not None

    def test_project_mode_runs_everything(self, client, runnable, inline_runs):
        p, a, b = runnable
        res = _run(client, p["id"], wait_for_result=True)
        result = res.get_json()["result"]
        assert result["mode"] == "project"
        assert "spec.ts" not in result["command"]
        assert {e["test_case_id"] for e in result["executions"]} == {a["id"], b["id"]}

    def test_command_override(self, client, runnable, inline_runs):
        p, a, b = runnable
        _run(client, p["id"], wait_for_result=True, command="npx playwright test --grep @smoke")
        assert inline_runs.calls[0]["command"] == "npx playwright test --grep @smoke"


class TestRunFailures:
    def test_non_zero_exit(self, client, runnable, inline_runs):
        p, a, b = runnable
        inline_runs.returncode = 1
        inline_runs.stderr = "1 failed"
        res = _run(client, p["id"], mode="file", test_case_id=a["id"], wait_for_result=True)
        assert res.status_code == 200
        body = res.get_json()
        assert body["message"] == "Test run failed"
        result = body["result"]
        assert result["status"] == "failed"
        assert result["success"] is False
        assert result["error_message"] == "1 failed"
        assert result["executions"][0]["status"] == "failed"

    def test_exit_code_without_stderr(self, client, runnable, inline_runs):
        p, a, b = runnable
        inline_runs.returncode = 3
        inline_runs.stderr = ""
        result = _run(client, p["id"], wait_for_result=True).get_json()["result"]
        assert result["error_message"] == "Process exited with code 3"

    def test_timeout(self, client, runnable, inline_runs, app, monkeypatch):
        p, a, b = runnable
        monkeypatch.setitem(app.config, "PLAYWRIGHT_RUN_TIMEOUT", 5)
        inline_runs.raises = subprocess.TimeoutExpired(cmd="npx", timeout=5)
        result = _run(client, p["id"], wait_for_result=True).get_json()["result"]
        assert result["status"] == "failed"
        assert result["error_message"] == "Test run timed out after 5 seconds"
        assert result["exit_code"] is None

    def test_os_error(self, client, runnable, inline_runs):
        p, a, b = runnable
        inline_runs.raises = FileNotFoundError("npx not found")
        result = _run(client, p["id"], wait_for_result=True).get_json()["result"]
        assert result["status"] == "failed"
        assert "npx not found" in result["error_message"]

    def test_undecodable_output_still_fails_run(self, client, runnable, inline_runs):
        p, a, b = runnable
        inline_runs.raises = UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
        result = _run(client, p["id"], wait_for_result=True).get_json()["result"]
        assert result["status"] == "failed"
        assert result["success"] is False
        assert result["exit_code"] is None
        assert "invalid start byte" in result["error_message"]
        assert result["finished_at"] is not None

    def test_unexpected_error_in_background_mode(self, client, runnable, inline_runs):
        p, a, b = runnable
        inline_runs.raises = RuntimeError("runner crashed")
        res = _run(client, p["id"])
        assert res.status_code == 202
        rid = res.get_json()["test_result_id"]

        poll = client.get(f"/api/v1/projects/{p['id']}/test-results/{rid}").get_json()
        assert poll["status"] == "failed"
        assert poll["error_message"] == "runner crashed"
        assert poll["worker_alive"] is False

    def test_invoke_replaces_undecodable_bytes(self, monkeypatch):
        seen = {}

        def fake_run(command, **kwargs):
            seen.update(kwargs)
            return subprocess.CompletedProcess(args=command, returncode=0, stdout="", stderr="")

        monkeypatch.setattr(run_orchestrator.subprocess, "run", fake_run)
        run_orchestrator._invoke("npx playwright test", cwd=".", timeout=5)
        assert seen["encoding"] == "utf-8"
        assert seen["errors"] == "replace"

    def test_output_truncated(self, client, runnable, inline_runs, app, monkeypatch):
        p, a, b = runnable
        monkeypatch.setitem(app.config, "RUN_OUTPUT_LIMIT", 100)
        inline_runs.stdout = "x" * 500
        rid = _run(client, p["id"], wait_for_result=True).get_json()["test_result_id"]
        result = client.get(f"/api/v1/projects/{p['id']}/test-results/{rid}").get_json()
        assert len(result["output"]) == 100

    def test_finished_run_is_not_executed_again(self, client, runnable, inline_runs):
        p, a, b = runnable
        rid = _run(client, p["id"], wait_for_result=True).get_json()["test_result_id"]
        with pytest.raises(ValidationError):
            run_orchestrator.execute_run(rid)
        assert len(inline_runs.calls) == 1


class TestRunValidation:
    def test_project_without_folder(self, client, inline_runs):
        p = _create_project(client)
        res = _run(client, p["id"])
        assert res.status_code == 422
        assert inline_runs.calls == []

    def test_unknown_mode_and_browser(self, client, runnable, inline_runs):
        p, a, b = runnable
        assert _run(client, p["id"], mode="suite").status_code == 422
        assert _run(client, p["id"], browser="ie6").status_code == 422

    def test_missing_test_case(self, client, runnable, inline_runs):
        p, a, b = runnable
        assert _run(client, p["id"], mode="file").status_code == 422
        assert _run(client, p["id"], mode="file", test_case_id=999).status_code == 404
        assert _run(client, p["id"], mode="list", test_case_ids="1").status_code == 400
        assert TestResultHistory.query.count() == 0


class TestResultListing:
    def test_list_and_per_test_case(self, client, runnable, inline_runs):
        p, a, b = runnable
        _run(client, p["id"], mode="file", test_case_id=a["id"], wait_for_result=True)
        _run(client, p["id"], wait_for_result=True)

        listing = client.get(f"/api/v1/projects/{p['id']}/test-results").get_json()
        assert listing["total"] == 2
        assert "output" not in listing["items"][0]

        per_case = client.get(f"/api/v1/projects/{p['id']}/test-cases/{b['id']}/results").get_json()
        assert per_case["total"] == 1

    def test_result_of_other_project_is_not_found(self, client, runnable, inline_runs):
        p, a, b = runnable
        other = _create_project(client, name="Other")
        rid = _run(client, p["id"], wait_for_result=True).get_json()["test_result_id"]
        res = client.get(f"/api/v1/projects/{other['id']}/test-results/{rid}")
        assert res.status_code == 404

    def test_poll_reports_worker_liveness(self, client, runnable, inline_runs, monkeypatch):
        p, a, b = runnable
        rid = _run(client, p["id"], wait_for_result=True).get_json()["test_result_id"]
        url = f"/api/v1/projects/{p['id']}/test-results/{rid}"
        assert client.get(url).get_json()["worker_alive"] is False

        class BusyThread:
            def is_alive(self):
                return True

        monkeypatch.setitem(run_orchestrator._running_runs, rid, BusyThread())
        assert run_orchestrator.is_worker_alive(rid) is True
        assert client.get(url).get_json()["worker_alive"] is True
