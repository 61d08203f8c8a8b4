"""Step ordering engine.

Keeps the `order` column of every step parent (test case or fixture) dense
and zero-based: after each successful operation the orders of a parent's
steps are exactly {0, 1, ..., n-1}.

Transaction policy: functions flush() but never commit(). All renumbering
for one call happens in the caller's transaction, so a failed request rolls
back as a whole and a partial renumber is never visible.

Operations:
- insert_step      append, or shift [pos, n) by +1 and write at pos (clamped)
- move_step        shift the range between old and new position by ±1
- delete_step      remove and close the gap
- move_step_up / move_step_down   swap with the adjacent sibling
- reorder_steps    apply a full permutation of step ids
- duplicate_step   copy a step to the end of its parent
"""
import logging

from testmanager.core.exceptions import NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.testing import Fixture, Step, TestCase

logger = logging.getLogger(__name__)

STEP_FIELDS = ("action", "data", "expected", "disabled", "playwright_script", "fixture_ref_id")


# ── Parent helpers ───────────────────────────────────────────────────────────

def parent_of(step):
    """Return the TestCase or Fixture owning a step."""
    if step.test_case_id is not None:
        return db.session.get(TestCase, step.test_case_id)
    return db.session.get(Fixture, step.fixture_id)


def _sibling_query(parent):
    return Step.query.filter(getattr(Step, parent.STEP_FK) == parent.id)


def _get_step_in_parent(parent, step_id):
    step = db.session.get(Step, step_id)
    if step is None or getattr(step, parent.STEP_FK) != parent.id:
        raise NotFoundError(resource="Step", resource_id=step_id)
    return step


def _coerce_position(value, field="position"):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: value})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", details={field: value})


def _shift(parent, *, lower=None, upper=None, delta):
    """Add delta to the order of siblings with lower <= order <= upper."""
    q = _sibling_query(parent)
    if lower is not None:
        q = q.filter(Step.order >= lower)
    if upper is not None:
        q = q.filter(Step.order <= upper)
    return q.update({Step.order: Step.order + delta}, synchronize_session="fetch")


def order_values(parent):
    """Current order values of a parent's steps, ascending."""
    return [row[0] for row in _sibling_query(parent).with_entities(Step.order).order_by(Step.order).all()]


def is_dense(parent):
    values = order_values(parent)
    return values == list(range(len(values)))


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════

def insert_step(parent, fields, at_position=None, *, actor="system"):
    """Create a step in parent; at_position None appends, otherwise clamped to [0, n]."""
    action = (fields.get("action") or "").strip()
    if not action:
        raise ValidationError("action is required", details={"action": "required"})

    count = _sibling_query(parent).count()
    if at_position is None:
        position = count
    else:
        position = min(max(_coerce_position(at_position), 0), count)
        if position < count:
            _shift(parent, lower=position, delta=1)

    step = Step(order=position, created_by=actor, updated_by=actor)
    setattr(step, parent.STEP_FK, parent.id)
    for field in STEP_FIELDS:
        if field in fields:
            setattr(step, field, fields[field])
    step.action = action
    db.session.add(step)
    db.session.flush()
    logger.debug("Inserted step %s into %s %s at %d", step.id, parent.KIND, parent.id, position)
    return step


def move_step(parent, step_id, to_position):
    """Move a step to to_position, renumbering the siblings in between."""
    step = _get_step_in_parent(parent, step_id)
    count = _sibling_query(parent).count()
    target = _coerce_position(to_position)
    if target < 0 or target >= count:
        raise ValidationError(
            f"position {target} out of range",
            details={"position": target, "min": 0, "max": count - 1},
        )

    source = step.order
    if source == target:
        return step
    if source < target:
        _shift(parent, lower=source + 1, upper=target, delta=-1)
    else:
        _shift(parent, lower=target, upper=source - 1, delta=1)
    step.order = target
    db.session.flush()
    logger.debug("Moved step %s in %s %s: %d -> %d", step.id, parent.KIND, parent.id, source, target)
    return step


def delete_step(parent, step_id):
    """Delete a step and decrement every sibling ordered after it."""
    step = _get_step_in_parent(parent, step_id)
    removed_order = step.order
    db.session.delete(step)
    db.session.flush()
    _shift(parent, lower=removed_order + 1, delta=-1)
    db.session.flush()
    return removed_order


def _swap_with_neighbour(step, offset):
    parent = parent_of(step)
    neighbour = _sibling_query(parent).filter(Step.order == step.order + offset).first()
    if neighbour is None:
        return step
    neighbour.order, step.order = step.order, neighbour.order
    db.session.flush()
    return step


def move_step_up(step_id):
    """Swap with the previous sibling; no-op for the first step."""
    step = db.session.get(Step, step_id)
    if step is None:
        raise NotFoundError(resource="Step", resource_id=step_id)
    return _swap_with_neighbour(step, -1)


def move_step_down(step_id):
    """Swap with the next sibling; no-op for the last step."""
    step = db.session.get(Step, step_id)
    if step is None:
        raise NotFoundError(resource="Step", resource_id=step_id)
    return _swap_with_neighbour(step, 1)


def reorder_steps(parent, step_ids):
    """Apply a full permutation: step_ids[i] gets order i."""
    current = {s.id: s for s in _sibling_query(parent).all()}
    try:
        requested = [int(sid) for sid in step_ids]
    except (TypeError, ValueError):
        raise ValidationError("step_ids must be a list of integers")

    foreign = [sid for sid in requested if sid not in current]
    if foreign:
        raise ValidationError(
            f"Steps do not belong to this {parent.KIND}",
            details={"invalid_step_ids": foreign},
        )
    if len(set(requested)) != len(requested) or set(requested) != set(current):
        raise ValidationError(
            "step_ids must list every step exactly once",
            details={"expected_count": len(current), "received_count": len(requested)},
        )

    for index, sid in enumerate(requested):
        current[sid].order = index
    db.session.flush()
    return [current[sid] for sid in requested]


def duplicate_step(step_id, *, actor="system"):
    """Copy a step (action suffixed with " (Copy)") to the end of its parent."""
    source = db.session.get(Step, step_id)
    if source is None:
        raise NotFoundError(resource="Step", resource_id=step_id)
    parent = parent_of(source)
    fields = {field: getattr(source, field) for field in STEP_FIELDS}
    fields["action"] = f"{source.action} (Copy)"
    return insert_step(parent, fields, actor=actor)
