"""
Release models.

    Release             — a named, dated delivery of a project
    ReleaseTestCase     — bridge Release <-> TestCase; keeps the test case
                          version label current when it was added
"""

from testmanager.models import db
from testmanager.models.base import AuditedModel, utcnow

RELEASE_STATUSES = {"planning", "in_progress", "completed", "cancelled"}


def _iso(value):
    return value.isoformat() if value else None


class Release(AuditedModel):
    __tablename__ = "releases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    version = db.Column(db.String(50), nullable=False, comment="e.g. 2.4.0")
    description = db.Column(db.Text, default="")
    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(20), default="planning", index=True,
        comment="planning | in_progress | completed | cancelled",
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "name", name="uq_release_project_name"),
    )

    project = db.relationship("Project", backref=db.backref(
        "releases", lazy="dynamic", cascade="all, delete-orphan",
    ))
    test_case_links = db.relationship(
        "ReleaseTestCase", back_populates="release", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self, include_test_cases=False, include_project=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
            "test_case_count": self.test_case_links.count(),
            **self._audit_dict(),
        }
        if include_project:
            d["project"] = {"id": self.project.id, "name": self.project.name}
        if include_test_cases:
            d["test_cases"] = [
                link.to_dict()
                for link in self.test_case_links.order_by(ReleaseTestCase.id.asc())
            ]
        return d

    def __repr__(self):
        return f"<Release {self.id}: {self.name} {self.version}>"


class ReleaseTestCase(db.Model):
    __tablename__ = "release_test_cases"
    __table_args__ = (
        db.UniqueConstraint("release_id", "test_case_id", name="uq_release_test_case"),
    )

    id = db.Column(db.Integer, primary_key=True)
    release_id = db.Column(
        db.Integer, db.ForeignKey("releases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    test_case_id = db.Column(
        db.Integer, db.ForeignKey("test_cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    test_case_version = db.Column(db.String(20), comment="TestCase.version when linked")
    added_by = db.Column(db.String(200), default="system")
    added_at = db.Column(db.DateTime, default=utcnow)

    release = db.relationship("Release", back_populates="test_case_links")
    test_case = db.relationship("TestCase", backref=db.backref(
        "release_links", lazy="dynamic", cascade="all, delete-orphan",
    ))

    def to_dict(self):
        tc = self.test_case
        return {
            "id": self.id,
            "release_id": self.release_id,
            "test_case_id": self.test_case_id,
            "test_case_version": self.test_case_version,
            "added_by": self.added_by,
            "added_at": _iso(self.added_at),
            "test_case": {
                "id": tc.id,
                "name": tc.name,
                "status": tc.status,
                "version": tc.version,
            },
        }
