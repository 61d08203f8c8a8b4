"""
Playwright Test Manager
Run history models.

Lifecycle (TestResultHistory.status):
    pending → running → completed | failed

completed and failed are terminal; once reached the row is never changed
again (see testmanager.services.run_orchestrator.transition).
"""

from datetime import datetime, timezone

from testmanager.models import db

RUN_STATUSES = {"pending", "running", "completed", "failed"}
TERMINAL_RUN_STATUSES = {"completed", "failed"}
RUN_TRANSITIONS = {
    "pending": {"running", "failed"},
    "running": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}
RUN_MODES = {"file", "list", "project"}
EXECUTION_STATUSES = {"pending", "running", "passed", "failed", "skipped"}


# ═════════════════════════════════════════════════════════════════════════════
# TEST RESULT HISTORY
# ═════════════════════════════════════════════════════════════════════════════

class TestResultHistory(db.Model):
    """One invocation of the Playwright runner for a project."""

    __tablename__ = "test_result_history"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255))
    mode = db.Column(db.String(20), default="project", comment="file | list | project")
    browser = db.Column(db.String(30), default="chromium")
    command = db.Column(db.Text, nullable=False)
    status = db.Column(db.String(20), nullable=False, default="pending")
    success = db.Column(db.Boolean, default=False)
    output = db.Column(db.Text)
    error_message = db.Column(db.Text)
    exit_code = db.Column(db.Integer, nullable=True)
    execution_time = db.Column(db.Integer, nullable=True, comment="Milliseconds")
    video_url = db.Column(db.String(500))
    screenshot_url = db.Column(db.String(500))
    created_by = db.Column(db.String(200), default="system")
    started_at = db.Column(db.DateTime, nullable=True)
    finished_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    executions = db.relationship(
        "TestCaseExecution", backref="test_result", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_RUN_STATUSES

    def to_dict(self, include_executions=False, include_output=True):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "mode": self.mode,
            "browser": self.browser,
            "command": self.command,
            "status": self.status,
            "success": bool(self.success),
            "exit_code": self.exit_code,
            "execution_time": self.execution_time,
            "error_message": self.error_message,
            "video_url": self.video_url,
            "screenshot_url": self.screenshot_url,
            "created_by": self.created_by,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_output:
            d["output"] = self.output
        if include_executions:
            d["executions"] = [e.to_dict() for e in self.executions.order_by(TestCaseExecution.id)]
        return d

    def __repr__(self):
        return f"<TestResultHistory {self.id}: project#{self.project_id} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASE EXECUTION
# ═════════════════════════════════════════════════════════════════════════════

class TestCaseExecution(db.Model):
    """Per-test-case outcome inside a run."""

    __tablename__ = "test_case_executions"
    __test__ = False

    id = db.Column(db.Integer, primary_key=True)
    test_result_id = db.Column(
        db.Integer, db.ForeignKey("test_result_history.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    status = db.Column(db.String(20), default="pending")
    duration = db.Column(db.Integer, nullable=True, comment="Milliseconds")
    retries = db.Column(db.Integer, default=0)
    error_message = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "test_result_id": self.test_result_id,
            "test_case_id": self.test_case_id,
            "test_case_name": self.test_case.name if self.test_case else None,
            "status": self.status,
            "duration": self.duration,
            "retries": self.retries,
            "error_message": self.error_message,
        }
