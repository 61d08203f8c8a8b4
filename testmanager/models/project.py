"""Project model: the root that owns test cases, fixtures, tags and run history."""

from testmanager.models import db
from testmanager.models.base import AuditedModel

PROJECT_ENVIRONMENTS = {"development", "staging", "production", "qa"}

DEFAULT_PLAYWRIGHT_CONFIG = {
    "browser": "chromium",
    "headless": True,
    "timeout": 30000,
    "retries": 0,
    "workers": None,
    "base_url": None,
}


class Project(AuditedModel):
    """A web application under test, backed by one Playwright project folder."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, unique=True)
    url = db.Column(db.String(500), default="")
    environment = db.Column(db.String(30), default="development")
    description = db.Column(db.Text, default="")
    playwright_project_path = db.Column(
        db.String(500), nullable=True,
        comment="Folder relative to PLAYWRIGHT_PROJECTS_ROOT",
    )
    playwright_config = db.Column(db.JSON, default=dict)

    # ── Relationships
    test_cases = db.relationship(
        "TestCase", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    fixtures = db.relationship(
        "Fixture", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    test_results = db.relationship(
        "TestResultHistory", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )
    tags = db.relationship(
        "Tag", backref="project", lazy="dynamic", cascade="all, delete-orphan",
    )

    @property
    def effective_playwright_config(self):
        merged = dict(DEFAULT_PLAYWRIGHT_CONFIG)
        merged.update({k: v for k, v in (self.playwright_config or {}).items() if v is not None})
        if not merged.get("base_url") and self.url:
            merged["base_url"] = self.url
        return merged

    def to_dict(self, include_counts=False):
        d = {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "environment": self.environment,
            "description": self.description,
            "playwright_project_path": self.playwright_project_path,
            "playwright_config": self.effective_playwright_config,
            **self._audit_dict(),
        }
        if include_counts:
            d["test_case_count"] = self.test_cases.count()
            d["fixture_count"] = self.fixtures.count()
        return d

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"
