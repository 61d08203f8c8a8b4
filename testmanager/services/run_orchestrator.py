"""
Playwright Test Manager
Test run orchestrator.

A run is a TestResultHistory row driven through

    pending → running → completed | failed

`running` is set right before the runner process is invoked. Terminal
rows are never changed again; transition() is the only writer of status.

Two modes:
    background  commit the pending row, execute in a daemon thread,
                client polls GET .../test-results/<id>
    wait        execute inline and return the finished row

Non-zero exit codes, timeouts and any error raised by the runner end the
run as `failed` without retry. A database error while saving results is
logged and the run is marked `failed` with a generic message.
"""

import logging
import subprocess
import threading
import time
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from testmanager.core.exceptions import NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.run import RUN_MODES, RUN_TRANSITIONS, TestCaseExecution, TestResultHistory
from testmanager.models.testing import TestCase
from testmanager.services import playwright_service

logger = logging.getLogger(__name__)

# Background workers by result id; read by is_worker_alive() for polling
_running_runs: dict[int, threading.Thread] = {}


def is_worker_alive(result_id):
    """True while a background thread is still executing the run."""
    worker = _running_runs.get(result_id)
    return worker is not None and worker.is_alive()


def _now():
    return datetime.now(timezone.utc)


def transition(result, status):
    """Move a run to `status`, enforcing the state machine."""
    allowed = RUN_TRANSITIONS.get(result.status, set())
    if status not in allowed:
        raise ValidationError(
            f"Invalid run transition: {result.status} → {status}",
            details={"from": result.status, "to": status, "allowed": sorted(allowed)},
        )
    result.status = status
    if status == "running":
        result.started_at = _now()
    elif status in ("completed", "failed"):
        result.finished_at = _now()
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Creating a run
# ═════════════════════════════════════════════════════════════════════════════

def _select_test_cases(project, mode, data):
    if mode == "file":
        tc_id = data.get("test_case_id")
        if tc_id is None:
            raise ValidationError("test_case_id is required for mode 'file'")
        ids = [tc_id]
    elif mode == "list":
        ids = data.get("test_case_ids")
        if not isinstance(ids, list) or not ids:
            raise ValidationError("test_case_ids must be a non-empty list for mode 'list'")
    else:
        return TestCase.query.filter_by(project_id=project.id).order_by(TestCase.id).all()

    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        raise ValidationError("test case ids must be integers")
    found = {tc.id: tc for tc in TestCase.query.filter(
        TestCase.project_id == project.id, TestCase.id.in_(ids),
    )}
    for tc_id in ids:
        if tc_id not in found:
            raise NotFoundError(resource="TestCase", resource_id=tc_id)
    return [found[i] for i in dict.fromkeys(ids)]


def create_run(project, data, *, actor="system"):
    """Insert a pending run with one execution row per selected test case."""
    if not project.playwright_project_path:
        raise ValidationError("Playwright project path not configured for this project")
    mode = data.get("mode") or "project"
    if mode not in RUN_MODES:
        raise ValidationError(
            f"mode must be one of: {', '.join(sorted(RUN_MODES))}", details={"mode": mode},
        )

    test_cases = _select_test_cases(project, mode, data)
    config = project.effective_playwright_config
    browser = data.get("browser") or config.get("browser") or current_app.config[
        "PLAYWRIGHT_DEFAULT_BROWSER"
    ]
    if browser not in playwright_service.BROWSERS:
        raise ValidationError(
            f"browser must be one of: {', '.join(playwright_service.BROWSERS)}",
            details={"browser": browser},
        )

    command = (data.get("command") or "").strip()
    if not command:
        paths = []
        if mode != "project":
            for tc in test_cases:
                paths.append(tc.test_file_path or f"tests/{playwright_service.test_file_name(tc)}")
        headed = data.get("headed")
        if headed is None:
            headed = not config.get("headless", True)
        command = playwright_service.build_command(
            paths, browser=browser, headed=bool(headed), config=config,
        )

    result = TestResultHistory(
        project_id=project.id,
        name=data.get("test_run_name"),
        mode=mode,
        browser=browser,
        command=command,
        status="pending",
        success=False,
        created_by=actor,
    )
    db.session.add(result)
    db.session.flush()
    for tc in test_cases:
        db.session.add(TestCaseExecution(test_result_id=result.id, test_case_id=tc.id, status="pending"))
    db.session.flush()
    logger.info("Run %s created for project %s (%s, %d test cases)", result.id, project.id, mode, len(test_cases))
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Executing
# ═════════════════════════════════════════════════════════════════════════════

def _invoke(command, cwd, timeout):
    """Run the shell command; separated out so tests can replace it."""
    return subprocess.run(
        command,
        shell=True,
        cwd=cwd,
        capture_output=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
        check=False,
    )


def _finish(result, *, success, output, error_message, exit_code, elapsed_ms):
    limit = current_app.config.get("RUN_OUTPUT_LIMIT", 10000)
    transition(result, "completed" if success else "failed")
    result.success = success
    result.output = (output or "")[:limit]
    result.error_message = error_message or None
    result.exit_code = exit_code
    result.execution_time = elapsed_ms

    executions = result.executions.all()
    for execution in executions:
        execution.status = "passed" if success else "failed"
        execution.duration = elapsed_ms
        execution.error_message = None if success else result.error_message

    tc_ids = [e.test_case_id for e in executions]
    if tc_ids:
        TestCase.query.filter(TestCase.id.in_(tc_ids)).update(
            {TestCase.last_run: result.finished_at}, synchronize_session=False,
        )


def execute_run(result_id):
    """Drive a pending run to a terminal state; returns the result row."""
    result = db.session.get(TestResultHistory, result_id)
    if result is None:
        raise NotFoundError(resource="TestResult", resource_id=result_id)

    project = result.project
    cwd = playwright_service.project_root(project)
    timeout = current_app.config.get("PLAYWRIGHT_RUN_TIMEOUT", 1800)

    transition(result, "running")
    for execution in result.executions:
        execution.status = "running"
    db.session.commit()
    logger.info("Run %s started: %s", result.id, result.command,
                extra={"test_result_id": result.id, "project_id": result.project_id})

    started = time.monotonic()
    try:
        completed = _invoke(result.command, cwd, timeout)
    except subprocess.TimeoutExpired as exc:
        outcome = dict(
            success=False,
            output=exc.stdout if isinstance(exc.stdout, str) else "",
            error_message=f"Test run timed out after {timeout} seconds",
            exit_code=None,
        )
    except Exception as exc:
        logger.error("Run %s: runner raised %s: %s", result.id, type(exc).__name__, exc,
                     extra={"test_result_id": result.id})
        outcome = dict(success=False, output="", error_message=str(exc) or type(exc).__name__, exit_code=None)
    else:
        success = completed.returncode == 0
        error_message = (completed.stderr or "").strip()
        if not success and not error_message:
            error_message = f"Process exited with code {completed.returncode}"
        outcome = dict(
            success=success,
            output=completed.stdout,
            error_message=error_message,
            exit_code=completed.returncode,
        )
    elapsed_ms = int((time.monotonic() - started) * 1000)

    try:
        _finish(result, elapsed_ms=elapsed_ms, **outcome)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Run %s: saving results failed", result_id)
        result = db.session.get(TestResultHistory, result_id)
        if result is not None and not result.is_terminal:
            transition(result, "failed")
            result.error_message = "Failed to save test results"
            db.session.commit()
        return result

    logger.info(
        "Run %s %s in %d ms (exit code %s)",
        result.id, result.status, elapsed_ms, result.exit_code,
        extra={"test_result_id": result.id, "project_id": result.project_id},
    )
    return result


def _run_in_background(app, result_id):
    with app.app_context():
        try:
            execute_run(result_id)
        except Exception:
            logger.exception("Run %s: background execution failed", result_id)
            db.session.rollback()
            result = db.session.get(TestResultHistory, result_id)
            if result is not None and not result.is_terminal:
                transition(result, "failed")
                result.error_message = "Test run failed"
                db.session.commit()
        finally:
            db.session.remove()
            _running_runs.pop(result_id, None)


def _spawn(app, result_id):
    t = threading.Thread(target=_run_in_background, args=(app, result_id), daemon=True)
    _running_runs[result_id] = t
    t.start()
    return t


def start_run(project, data, *, actor="system"):
    """Create and launch a run. Returns (result, waited)."""
    wait = bool(data.get("wait_for_result"))
    result = create_run(project, data, actor=actor)
    if wait:
        return execute_run(result.id), True

    # The worker reads the row from its own session, so it must be committed first.
    db.session.commit()
    _spawn(current_app._get_current_object(), result.id)
    return result, False


def list_results(project):
    return TestResultHistory.query.filter_by(project_id=project.id).order_by(
        TestResultHistory.created_at.desc(), TestResultHistory.id.desc(),
    )


def results_for_test_case(test_case):
    return (
        TestResultHistory.query.join(TestCaseExecution)
        .filter(TestCaseExecution.test_case_id == test_case.id)
        .order_by(TestResultHistory.created_at.desc(), TestResultHistory.id.desc())
    )
