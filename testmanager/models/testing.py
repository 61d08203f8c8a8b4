"""
Playwright Test Manager
Test catalogue models.

    TestCase / Fixture  — owners of an ordered step list (same shape)
    Step                — one action row, dense 0-based `order` per parent
    TestCaseVersion     — append-only snapshot of a test case
    FixtureVersion      — append-only snapshot of a fixture
    Tag                 — project or global label used on test cases

Steps are never reordered by direct field edits: every order change goes
through testmanager.services.step_ordering so that each parent keeps the
order values {0 .. n-1}.
"""

from testmanager.models import db
from testmanager.models.base import AuditedModel, SnapshotModel, utcnow

TEST_CASE_STATUSES = {"draft", "active", "deprecated"}
FIXTURE_TYPES = {"extend", "inline"}


# ═════════════════════════════════════════════════════════════════════════════
# STEP PARENT MIXIN
# ═════════════════════════════════════════════════════════════════════════════

class StepParentMixin:
    """Shared step access for TestCase and Fixture.

    Subclasses set STEP_FK (the Step column pointing at them) and
    KIND (used in logs, errors and permission lookups).
    """

    STEP_FK = None
    KIND = None

    def step_query(self):
        return Step.query.filter(getattr(Step, self.STEP_FK) == self.id)

    def ordered_steps(self):
        return self.step_query().order_by(Step.order.asc(), Step.id.asc()).all()

    def step_count(self):
        return self.step_query().count()


# ═════════════════════════════════════════════════════════════════════════════
# TEST CASE
# ═════════════════════════════════════════════════════════════════════════════

class TestCase(StepParentMixin, AuditedModel):
    """A Playwright test; compiled to tests/<slug>.spec.ts."""

    __tablename__ = "test_cases"
    __test__ = False  # keep pytest from collecting the model

    STEP_FK = "test_case_id"
    KIND = "testCase"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), default="draft", comment="draft | active | deprecated")
    is_manual = db.Column(db.Boolean, default=False)
    tags = db.Column(db.Text, default="", comment="Comma separated tag values")
    version = db.Column(db.String(20), default="1.0", comment="Human version label")
    playwright_script = db.Column(db.Text)
    test_file_path = db.Column(db.String(500))
    last_run = db.Column(db.DateTime, nullable=True)
    # No onupdate: the versioning service stamps this together with each version.
    updated_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("project_id", "name", name="uq_test_case_project_name"),
    )

    versions = db.relationship(
        "TestCaseVersion", backref="test_case", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    executions = db.relationship(
        "TestCaseExecution", backref="test_case", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    @property
    def tag_list(self):
        return [t.strip() for t in (self.tags or "").split(",") if t.strip()]

    def to_dict(self, include_steps=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "status": self.status,
            "is_manual": self.is_manual,
            "tags": self.tag_list,
            "version": self.version,
            "playwright_script": self.playwright_script,
            "test_file_path": self.test_file_path,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "step_count": self.step_count(),
            **self._audit_dict(),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.ordered_steps()]
        return d

    def __repr__(self):
        return f"<TestCase {self.id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# FIXTURE
# ═════════════════════════════════════════════════════════════════════════════

class Fixture(StepParentMixin, AuditedModel):
    """Reusable step sequence; compiled to fixtures/<slug>.fixture.ts."""

    __tablename__ = "fixtures"

    STEP_FK = "fixture_id"
    KIND = "fixture"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(20), default="extend", comment="extend | inline")
    export_name = db.Column(db.String(255))
    playwright_script = db.Column(db.Text)
    filename = db.Column(db.String(255))
    fixture_file_path = db.Column(db.String(500))
    version = db.Column(db.String(20), default="1.0")
    updated_at = db.Column(db.DateTime, default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("project_id", "name", name="uq_fixture_project_name"),
    )

    versions = db.relationship(
        "FixtureVersion", backref="fixture", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self, include_steps=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "type": self.type,
            "export_name": self.export_name,
            "playwright_script": self.playwright_script,
            "filename": self.filename,
            "fixture_file_path": self.fixture_file_path,
            "version": self.version,
            "step_count": self.step_count(),
            **self._audit_dict(),
        }
        if include_steps:
            d["steps"] = [s.to_dict() for s in self.ordered_steps()]
        return d

    def __repr__(self):
        return f"<Fixture {self.id}: {self.name}>"


# ═════════════════════════════════════════════════════════════════════════════
# STEP
# ═════════════════════════════════════════════════════════════════════════════

class Step(AuditedModel):
    """
    One action within a test case or a fixture.

    Exactly one of test_case_id / fixture_id is set. fixture_ref_id is an
    optional call into another fixture and is independent of the parent.
    """

    __tablename__ = "steps"

    id = db.Column(db.Integer, primary_key=True)
    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    fixture_id = db.Column(
        db.Integer, db.ForeignKey("fixtures.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )
    order = db.Column(db.Integer, nullable=False, comment="Dense 0-based position in parent")
    action = db.Column(db.Text, nullable=False)
    data = db.Column(db.Text)
    expected = db.Column(db.Text)
    disabled = db.Column(db.Boolean, default=False)
    playwright_script = db.Column(db.Text)
    fixture_ref_id = db.Column(
        db.Integer, db.ForeignKey("fixtures.id", ondelete="SET NULL"), nullable=True,
    )

    __table_args__ = (
        db.CheckConstraint(
            "(test_case_id IS NULL) <> (fixture_id IS NULL)",
            name="ck_step_single_parent",
        ),
    )

    fixture_ref = db.relationship("Fixture", foreign_keys=[fixture_ref_id])

    @property
    def parent_key(self):
        if self.test_case_id is not None:
            return ("test_case_id", self.test_case_id)
        return ("fixture_id", self.fixture_id)

    def snapshot_dict(self):
        """Fields copied into a version snapshot."""
        return {
            "order": self.order,
            "action": self.action,
            "data": self.data,
            "expected": self.expected,
            "disabled": bool(self.disabled),
            "playwright_script": self.playwright_script,
            "fixture_ref_id": self.fixture_ref_id,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "test_case_id": self.test_case_id,
            "fixture_id": self.fixture_id,
            "order": self.order,
            "action": self.action,
            "data": self.data,
            "expected": self.expected,
            "disabled": bool(self.disabled),
            "playwright_script": self.playwright_script,
            "fixture_ref_id": self.fixture_ref_id,
            "fixture_ref_name": self.fixture_ref.name if self.fixture_ref else None,
            **self._audit_dict(),
        }

    def __repr__(self):
        key, value = self.parent_key
        return f"<Step {self.id}: {key}={value} order={self.order}>"


# ═════════════════════════════════════════════════════════════════════════════
# VERSIONS
# ═════════════════════════════════════════════════════════════════════════════

class TestCaseVersion(SnapshotModel):
    __tablename__ = "test_case_versions"
    __test__ = False

    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    __table_args__ = (
        db.UniqueConstraint("test_case_id", "version_no", name="uq_test_case_version_no"),
    )

    def to_dict(self, include_steps=False):
        d = super().to_dict(include_steps=include_steps)
        d["test_case_id"] = self.test_case_id
        return d


class FixtureVersion(SnapshotModel):
    __tablename__ = "fixture_versions"

    fixture_id = db.Column(
        db.Integer, db.ForeignKey("fixtures.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    __table_args__ = (
        db.UniqueConstraint("fixture_id", "version_no", name="uq_fixture_version_no"),
    )

    def to_dict(self, include_steps=False):
        d = super().to_dict(include_steps=include_steps)
        d["fixture_id"] = self.fixture_id
        return d


# ═════════════════════════════════════════════════════════════════════════════
# TAG
# ═════════════════════════════════════════════════════════════════════════════

class Tag(db.Model):
    """Label for test cases; project_id NULL means global."""

    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    value = db.Column(db.String(100), nullable=False)
    label = db.Column(db.String(200))

    __table_args__ = (
        db.UniqueConstraint("project_id", "value", name="uq_tag_project_value"),
    )

    def to_dict(self):
        return {"value": self.value, "label": self.label or self.value}
