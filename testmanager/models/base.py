"""
Abstract model bases shared by test cases, fixtures and their versions.

AuditedModel adds created/updated timestamps plus the acting user.
SnapshotModel holds the immutable columns every version table carries;
concrete version classes only add the parent foreign key.
"""

from datetime import datetime, timezone

from testmanager.models import db


def utcnow():
    return datetime.now(timezone.utc)


def same_instant(left, right):
    """Compare two datetimes ignoring tz-awareness (SQLite drops tzinfo)."""
    if left is None or right is None:
        return False
    if left.tzinfo is not None:
        left = left.astimezone(timezone.utc).replace(tzinfo=None)
    if right.tzinfo is not None:
        right = right.astimezone(timezone.utc).replace(tzinfo=None)
    return left == right


class AuditedModel(db.Model):
    """Abstract base adding audit columns."""
    __abstract__ = True

    created_by = db.Column(db.String(200), default="system")
    updated_by = db.Column(db.String(200), default="system")
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def _audit_dict(self):
        return {
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SnapshotModel(db.Model):
    """Abstract base for append-only version rows."""
    __abstract__ = True

    id = db.Column(db.Integer, primary_key=True)
    version_no = db.Column(db.Integer, nullable=False)
    version_label = db.Column(db.String(20), nullable=False, default="1.0")
    name = db.Column(db.String(255), nullable=False)
    playwright_script = db.Column(db.Text)
    steps = db.Column(db.JSON, nullable=False, default=list)
    change_summary = db.Column(db.String(255), default="snapshot")
    created_by = db.Column(db.String(200), default="system")
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self, include_steps=False):
        d = {
            "id": self.id,
            "version_no": self.version_no,
            "version_label": self.version_label,
            "name": self.name,
            "playwright_script": self.playwright_script,
            "change_summary": self.change_summary,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "step_count": len(self.steps or []),
        }
        if include_steps:
            d["steps"] = list(self.steps or [])
        return d
