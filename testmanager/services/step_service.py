"""Step mutations for test cases and fixtures.

Wraps the ordering engine with the rest of a structural write:

    validate -> reorder/insert/delete -> regenerate Playwright file -> snapshot

Every accepted change produces exactly one new version of the parent.
No-op moves (move-up on the first step, move to the same position) do not.

Transaction policy: flush() only; the route handler commits.
"""
import logging

from testmanager.core.exceptions import NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.testing import Fixture, Step
from testmanager.services import playwright_service, step_ordering, versioning_service

logger = logging.getLogger(__name__)

TEXT_FIELDS = ("action", "data", "expected", "playwright_script")


def get_step(step_id):
    step = db.session.get(Step, step_id)
    if step is None:
        raise NotFoundError(resource="Step", resource_id=step_id)
    return step


def list_steps(parent):
    return parent.ordered_steps()


def _commit_change(parent, summary, actor):
    playwright_service.sync_parent_file(parent)
    return versioning_service.snapshot(parent, change_summary=summary, actor=actor)


# ── Fixture references ───────────────────────────────────────────────────────

def _referenced_fixture_ids(fixture_id):
    rows = (
        Step.query.with_entities(Step.fixture_ref_id)
        .filter(Step.fixture_id == fixture_id, Step.fixture_ref_id.isnot(None))
        .all()
    )
    return {row[0] for row in rows}


def _reaches(start_id, target_id):
    """True if fixture start_id calls target_id directly or transitively."""
    stack, seen = [start_id], set()
    while stack:
        current = stack.pop()
        if current == target_id:
            return True
        if current in seen:
            continue
        seen.add(current)
        stack.extend(_referenced_fixture_ids(current))
    return False


def fixture_ref_allowed(parent, ref_id):
    """True if a step of parent may call fixture ref_id (same project, no cycle)."""
    ref = db.session.get(Fixture, ref_id)
    if ref is None or ref.project_id != parent.project_id:
        return False
    return not (parent.KIND == "fixture" and _reaches(ref.id, parent.id))


def validate_fixture_ref(parent, fixture_ref_id):
    """Return the referenced fixture id, or None; reject foreign and cyclic references."""
    if fixture_ref_id in (None, ""):
        return None
    try:
        ref_id = int(fixture_ref_id)
    except (TypeError, ValueError):
        raise ValidationError("fixture_ref_id must be an integer")

    ref = db.session.get(Fixture, ref_id)
    if ref is None or ref.project_id != parent.project_id:
        raise ValidationError(
            "Referenced fixture not found in this project",
            details={"fixture_ref_id": ref_id},
        )
    if parent.KIND == "fixture" and _reaches(ref.id, parent.id):
        raise ValidationError(
            "Fixture reference would create a cycle",
            details={"fixture_id": parent.id, "fixture_ref_id": ref_id},
        )
    return ref.id


def clean_step_fields(parent, data):
    fields = {}
    for key in TEXT_FIELDS:
        if key in data:
            value = data[key]
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{key} must be a string", details={key: value})
            fields[key] = value
    if "disabled" in data:
        fields["disabled"] = bool(data["disabled"])
    if "fixture_ref_id" in data:
        fields["fixture_ref_id"] = validate_fixture_ref(parent, data["fixture_ref_id"])
    return fields


# ═════════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════════

def add_step(parent, data, *, actor="system"):
    fields = clean_step_fields(parent, data)
    position = data.get("position", data.get("order"))
    step = step_ordering.insert_step(parent, fields, position, actor=actor)
    _commit_change(parent, f"Added step {step.order + 1}: {step.action}", actor)
    return step


def add_steps(parent, items, *, actor="system", summary=None):
    """Append several steps with a single version at the end."""
    created = []
    for data in items:
        fields = clean_step_fields(parent, data)
        created.append(step_ordering.insert_step(parent, fields, actor=actor))
    if created:
        _commit_change(parent, summary or f"Added {len(created)} steps", actor)
    return created


def update_step(step_id, data, *, actor="system"):
    """Edit step fields; order changes must go through move/reorder."""
    step = get_step(step_id)
    if "order" in data and data["order"] is not None and data["order"] != step.order:
        raise ValidationError(
            "order cannot be edited directly; use the move or reorder endpoints",
            details={"order": data["order"]},
        )
    parent = step_ordering.parent_of(step)
    fields = clean_step_fields(parent, data)
    if "action" in fields and not (fields["action"] or "").strip():
        raise ValidationError("action is required", details={"action": "required"})

    changed = False
    for key, value in fields.items():
        if getattr(step, key) != value:
            setattr(step, key, value)
            changed = True
    if not changed:
        return step

    step.updated_by = actor
    db.session.flush()
    _commit_change(parent, f"Updated step {step.order + 1}", actor)
    return step


def remove_step(step_id, *, actor="system"):
    step = get_step(step_id)
    parent = step_ordering.parent_of(step)
    action = step.action
    removed_order = step_ordering.delete_step(parent, step.id)
    _commit_change(parent, f"Deleted step {removed_order + 1}: {action}", actor)
    return parent


def move_step(step_id, position, *, expected_version=None, actor="system"):
    step = get_step(step_id)
    parent = step_ordering.parent_of(step)
    versioning_service.check_expected_version(parent, expected_version)
    source = step.order
    step_ordering.move_step(parent, step.id, position)
    if step.order != source:
        _commit_change(parent, f"Moved step from {source + 1} to {step.order + 1}", actor)
    return step


def _move_adjacent(step_id, mover, label, actor):
    step = get_step(step_id)
    source = step.order
    mover(step.id)
    if step.order != source:
        parent = step_ordering.parent_of(step)
        _commit_change(parent, f"Moved step {source + 1} {label}", actor)
    return step


def move_step_up(step_id, *, actor="system"):
    return _move_adjacent(step_id, step_ordering.move_step_up, "up", actor)


def move_step_down(step_id, *, actor="system"):
    return _move_adjacent(step_id, step_ordering.move_step_down, "down", actor)


def reorder_steps(parent, step_ids, *, expected_version=None, actor="system"):
    if not isinstance(step_ids, list):
        raise ValidationError("step_ids must be a list")
    versioning_service.check_expected_version(parent, expected_version)
    before = [s.id for s in parent.ordered_steps()]
    steps = step_ordering.reorder_steps(parent, step_ids)
    if [s.id for s in steps] != before:
        _commit_change(parent, "Reordered steps", actor)
    return steps


def duplicate_step(step_id, *, actor="system"):
    copy = step_ordering.duplicate_step(step_id, actor=actor)
    parent = step_ordering.parent_of(copy)
    _commit_change(parent, f"Duplicated step as {copy.order + 1}", actor)
    return copy


def revert_parent(parent, version_id, *, actor="system"):
    """Revert a test case or fixture and regenerate its file.

    The old file is removed only once the revert succeeded and the
    regenerated file landed under a different name (the name is restored too).
    """
    old_relative = playwright_service.parent_file_path(parent)
    target, preserved = versioning_service.revert(parent, version_id, actor=actor)
    playwright_service.resync_parent_file(parent, old_relative)
    return target, preserved
