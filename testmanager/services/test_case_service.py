"""
Test case service: CRUD, filtering, cloning, bulk status and tags.

Transaction policy: flush() only; the route handler commits.
"""
import logging

from sqlalchemy import or_

from testmanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.testing import TEST_CASE_STATUSES, Fixture, Tag, TestCase
from testmanager.services import (
    fixture_service,
    playwright_service,
    step_ordering,
    step_service,
    versioning_service,
)

logger = logging.getLogger(__name__)


def _normalize_tags(value):
    """Accept a list or a comma separated string; returns 'a,b' or ''."""
    if value is None:
        return ""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        raise ValidationError("tags must be a list or a comma separated string")
    seen = []
    for item in items:
        tag = str(item).strip()
        if tag and tag not in seen:
            seen.append(tag)
    return ",".join(seen)


def _validate_status(status):
    if status not in TEST_CASE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(TEST_CASE_STATUSES))}",
            details={"status": status},
        )
    return status


def _ensure_name_free(project_id, name, exclude_id=None):
    q = TestCase.query.filter_by(project_id=project_id, name=name)
    if exclude_id is not None:
        q = q.filter(TestCase.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("TestCase", "name", name)


# ═════════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════════

def list_test_cases(project, *, status=None, tag=None, search=None):
    q = TestCase.query.filter_by(project_id=project.id)
    if status:
        q = q.filter(TestCase.status == status)
    if tag:
        # Exact match inside the comma separated column.
        q = q.filter(or_(
            TestCase.tags == tag,
            TestCase.tags.like(f"{tag},%"),
            TestCase.tags.like(f"%,{tag}"),
            TestCase.tags.like(f"%,{tag},%"),
        ))
    if search:
        q = q.filter(TestCase.name.ilike(f"%{search}%"))
    return q.order_by(TestCase.updated_at.desc(), TestCase.id.desc())


def create_test_case(project, data, *, actor="system"):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    _ensure_name_free(project.id, name)

    tc = TestCase(
        project_id=project.id,
        name=name,
        status=_validate_status(data.get("status") or "draft"),
        is_manual=bool(data.get("is_manual", False)),
        tags=_normalize_tags(data.get("tags")),
        playwright_script=data.get("playwright_script"),
        created_by=actor,
        updated_by=actor,
    )
    db.session.add(tc)
    db.session.flush()

    for item in data.get("steps") or []:
        fields = step_service.clean_step_fields(tc, item)
        step_ordering.insert_step(tc, fields, actor=actor)

    playwright_service.sync_parent_file(tc)
    versioning_service.snapshot(tc, change_summary="Created", actor=actor)
    logger.info("Created test case %s in project %s", tc.id, project.id)
    return tc


def update_test_case(tc, data, *, actor="system"):
    """Update metadata; any accepted change writes one version."""
    changed = []
    old_relative = playwright_service.parent_file_path(tc)
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        if name != tc.name:
            _ensure_name_free(tc.project_id, name, exclude_id=tc.id)
            tc.name = name
            changed.append("name")
    if "status" in data and data["status"] != tc.status:
        tc.status = _validate_status(data["status"])
        changed.append("status")
    if "is_manual" in data and bool(data["is_manual"]) != bool(tc.is_manual):
        tc.is_manual = bool(data["is_manual"])
        changed.append("is_manual")
    if "tags" in data:
        tags = _normalize_tags(data["tags"])
        if tags != (tc.tags or ""):
            tc.tags = tags
            changed.append("tags")
    if "playwright_script" in data and data["playwright_script"] != tc.playwright_script:
        tc.playwright_script = data["playwright_script"]
        changed.append("playwright_script")

    if changed:
        playwright_service.resync_parent_file(tc, old_relative)
        versioning_service.snapshot(tc, change_summary=f"Updated {', '.join(changed)}", actor=actor)
    return tc


def delete_test_case(tc):
    playwright_service.remove_parent_file(tc)
    db.session.delete(tc)
    db.session.flush()


# ═════════════════════════════════════════════════════════════════════════════
# Clone / bulk
# ═════════════════════════════════════════════════════════════════════════════

def clone_test_case(tc, *, actor="system"):
    """Copy a test case and its steps; each referenced fixture is cloned once."""
    name = fixture_service.unique_name(TestCase, tc.project_id, f"{tc.name} - Copy")
    copy = TestCase(
        project_id=tc.project_id,
        name=name,
        status=tc.status,
        is_manual=tc.is_manual,
        tags=tc.tags,
        playwright_script=tc.playwright_script,
        created_by=actor,
        updated_by=actor,
    )
    db.session.add(copy)
    db.session.flush()

    cloned_fixtures = {}
    for step in tc.ordered_steps():
        fields = {f: getattr(step, f) for f in step_ordering.STEP_FIELDS}
        ref_id = step.fixture_ref_id
        if ref_id is not None:
            if ref_id not in cloned_fixtures:
                source = db.session.get(Fixture, ref_id)
                cloned_fixtures[ref_id] = fixture_service.clone_fixture(
                    source, suffix="Clone", actor=actor,
                ).id
            fields["fixture_ref_id"] = cloned_fixtures[ref_id]
        step_ordering.insert_step(copy, fields, actor=actor)

    playwright_service.sync_parent_file(copy)
    versioning_service.snapshot(copy, change_summary=f"Cloned from {tc.name}", actor=actor)
    logger.info(
        "Cloned test case %s -> %s (%d fixtures cloned)", tc.id, copy.id, len(cloned_fixtures),
    )
    return copy


def bulk_update_status(project, test_case_ids, status, *, actor="system"):
    """Set status on several test cases of one project; returns the updated rows."""
    _validate_status(status)
    if not isinstance(test_case_ids, list) or not test_case_ids:
        raise ValidationError("test_case_ids must be a non-empty list")
    try:
        ids = {int(i) for i in test_case_ids}
    except (TypeError, ValueError):
        raise ValidationError("test_case_ids must be integers")

    rows = TestCase.query.filter(TestCase.project_id == project.id, TestCase.id.in_(ids)).all()
    missing = sorted(ids - {tc.id for tc in rows})
    if missing:
        raise NotFoundError(resource="TestCase", resource_id=missing[0])

    updated = []
    for tc in rows:
        if tc.status != status:
            tc.status = status
            versioning_service.snapshot(tc, change_summary=f"Status set to {status}", actor=actor)
            updated.append(tc)
    return updated


# ═════════════════════════════════════════════════════════════════════════════
# Tags
# ═════════════════════════════════════════════════════════════════════════════

def list_tags(project):
    """Project and global tags, de-duplicated by value (project wins).

    Without any Tag rows, the distinct tags used by the project's test
    cases are returned instead.
    """
    rows = (
        Tag.query.filter(or_(Tag.project_id == project.id, Tag.project_id.is_(None)))
        .order_by(Tag.project_id.is_(None), Tag.value)
        .all()
    )
    if rows:
        tags = {}
        for tag in rows:
            tags.setdefault(tag.value, tag.to_dict())
        return sorted(tags.values(), key=lambda t: t["value"])

    values = set()
    for (raw,) in TestCase.query.with_entities(TestCase.tags).filter_by(project_id=project.id):
        values.update(t.strip() for t in (raw or "").split(",") if t.strip())
    return [{"value": v, "label": v} for v in sorted(values)]


def create_tag(project, data):
    value = (data.get("value") or "").strip()
    if not value or "," in value:
        raise ValidationError("value is required and must not contain commas")
    if Tag.query.filter_by(project_id=project.id, value=value).first():
        raise ConflictError("Tag", "value", value)
    tag = Tag(project_id=project.id, value=value, label=(data.get("label") or value).strip())
    db.session.add(tag)
    db.session.flush()
    return tag
