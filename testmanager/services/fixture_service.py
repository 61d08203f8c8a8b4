"""Fixture CRUD and cloning.

Transaction policy: flush() only; the route handler commits.
"""
import logging

from testmanager.core.exceptions import ConflictError, ValidationError
from testmanager.models import db
from testmanager.models.testing import FIXTURE_TYPES, Fixture, Step
from testmanager.services import playwright_service, step_ordering, step_service, versioning_service

logger = logging.getLogger(__name__)


def unique_name(model, project_id, base):
    """'<base>', then '<base> 2', '<base> 3', ... until free within project."""
    taken = {
        row[0] for row in model.query.with_entities(model.name)
        .filter(model.project_id == project_id, model.name.like(f"{base}%")).all()
    }
    if base not in taken:
        return base
    n = 2
    while f"{base} {n}" in taken:
        n += 1
    return f"{base} {n}"


def _ensure_name_free(project_id, name, exclude_id=None):
    q = Fixture.query.filter_by(project_id=project_id, name=name)
    if exclude_id is not None:
        q = q.filter(Fixture.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Fixture", "name", name)


def _validate_type(value):
    if value not in FIXTURE_TYPES:
        raise ValidationError(
            f"type must be one of: {', '.join(sorted(FIXTURE_TYPES))}",
            details={"type": value},
        )
    return value


def list_fixtures(project, *, search=None):
    q = Fixture.query.filter_by(project_id=project.id)
    if search:
        q = q.filter(Fixture.name.ilike(f"%{search}%"))
    return q.order_by(Fixture.name.asc())


def create_fixture(project, data, *, actor="system"):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    _ensure_name_free(project.id, name)

    fixture = Fixture(
        project_id=project.id,
        name=name,
        type=_validate_type(data.get("type") or "extend"),
        export_name=(data.get("export_name") or "").strip() or playwright_service.camel_case_export_name(name),
        playwright_script=data.get("playwright_script"),
        created_by=actor,
        updated_by=actor,
    )
    db.session.add(fixture)
    db.session.flush()

    for item in data.get("steps") or []:
        fields = step_service.clean_step_fields(fixture, item)
        step_ordering.insert_step(fixture, fields, actor=actor)

    playwright_service.sync_parent_file(fixture)
    versioning_service.snapshot(fixture, change_summary="Created", actor=actor)
    logger.info("Created fixture %s in project %s", fixture.id, project.id)
    return fixture


def update_fixture(fixture, data, *, actor="system"):
    changed = []
    old_relative = playwright_service.parent_file_path(fixture)
    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name is required", details={"name": "required"})
        if name != fixture.name:
            _ensure_name_free(fixture.project_id, name, exclude_id=fixture.id)
            fixture.name = name
            changed.append("name")
    if "type" in data and data["type"] != fixture.type:
        fixture.type = _validate_type(data["type"])
        changed.append("type")
    if "export_name" in data:
        export_name = (data.get("export_name") or "").strip()
        if not export_name or " " in export_name:
            export_name = playwright_service.camel_case_export_name(fixture.name)
        if export_name != fixture.export_name:
            fixture.export_name = export_name
            changed.append("export_name")
    if "playwright_script" in data and data["playwright_script"] != fixture.playwright_script:
        fixture.playwright_script = data["playwright_script"]
        changed.append("playwright_script")

    if changed:
        playwright_service.resync_parent_file(fixture, old_relative)
        versioning_service.snapshot(
            fixture, change_summary=f"Updated {', '.join(changed)}", actor=actor,
        )
    return fixture


def delete_fixture(fixture):
    """Delete a fixture; steps that called it keep running without the call."""
    Step.query.filter(Step.fixture_ref_id == fixture.id).update(
        {Step.fixture_ref_id: None}, synchronize_session="fetch",
    )
    playwright_service.remove_parent_file(fixture)
    db.session.delete(fixture)
    db.session.flush()


def clone_fixture(fixture, *, suffix="Copy", actor="system"):
    """Copy a fixture and its steps under '<name> - <suffix>'."""
    name = unique_name(Fixture, fixture.project_id, f"{fixture.name} - {suffix}")
    copy = Fixture(
        project_id=fixture.project_id,
        name=name,
        type=fixture.type,
        export_name=playwright_service.camel_case_export_name(name),
        playwright_script=fixture.playwright_script,
        created_by=actor,
        updated_by=actor,
    )
    db.session.add(copy)
    db.session.flush()

    for step in fixture.ordered_steps():
        fields = {f: getattr(step, f) for f in step_ordering.STEP_FIELDS}
        step_ordering.insert_step(copy, fields, actor=actor)

    playwright_service.sync_parent_file(copy)
    versioning_service.snapshot(copy, change_summary=f"Cloned from {fixture.name}", actor=actor)
    logger.info("Cloned fixture %s -> %s", fixture.id, copy.id)
    return copy
