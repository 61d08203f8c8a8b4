"""Versioning / revert engine for test cases and fixtures.

Transaction policy: flush() only; the route handler commits.

A version row is an immutable copy of the parent's name, script and ordered
steps. Rows are append-only: nothing in the code base updates or deletes a
version except the database cascade when the parent itself is deleted.

The live version of a parent is the one whose created_at equals the
parent's updated_at; snapshot() stamps both with the same instant.

Operations:
- snapshot            write version max+1 from the live state
- revert              restore a version, recording the pre-revert state
- list_versions / get_version / diff_versions
- check_expected_version   optimistic concurrency guard for reorders
"""
import logging
from datetime import timedelta

from testmanager.core.exceptions import NotFoundError, StaleStateError, ValidationError
from testmanager.models import db
from testmanager.models.base import same_instant, utcnow
from testmanager.models.testing import Fixture, FixtureVersion, Step, TestCaseVersion

logger = logging.getLogger(__name__)


def _version_model(parent):
    if isinstance(parent, Fixture):
        return FixtureVersion, "fixture_id"
    return TestCaseVersion, "test_case_id"


def _versions_query(parent):
    model, fk = _version_model(parent)
    return model.query.filter(getattr(model, fk) == parent.id)


def latest_version(parent):
    model, _ = _version_model(parent)
    return _versions_query(parent).order_by(model.version_no.desc()).first()


def latest_version_no(parent):
    latest = latest_version(parent)
    return latest.version_no if latest else 0


def bump_minor(label):
    """"1.0" -> "1.1", "2.9" -> "2.10"; unparsable labels restart at "1.1"."""
    parts = (label or "").split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
    except (ValueError, IndexError):
        return "1.1"
    return f"{major}.{minor + 1}"


def check_expected_version(parent, expected_version):
    """Raise StaleStateError if the caller saw an older version of parent."""
    if expected_version is None:
        return
    try:
        expected = int(expected_version)
    except (TypeError, ValueError):
        raise ValidationError("expected_version must be an integer")
    current = latest_version_no(parent)
    if expected != current:
        raise StaleStateError(parent.KIND, expected, current)


# ═════════════════════════════════════════════════════════════════════════════
# Snapshot
# ═════════════════════════════════════════════════════════════════════════════

def snapshot(parent, *, change_summary="snapshot", actor="system", stamp=None):
    """Record the live state of parent as a new version and return it."""
    model, fk = _version_model(parent)
    db.session.flush()

    previous_no = latest_version_no(parent)
    if previous_no:
        parent.version = bump_minor(parent.version)
    now = stamp or utcnow()

    version = model(
        version_no=previous_no + 1,
        version_label=parent.version or "1.0",
        name=parent.name,
        playwright_script=parent.playwright_script,
        steps=[s.snapshot_dict() for s in parent.ordered_steps()],
        change_summary=(change_summary or "snapshot")[:255],
        created_by=actor or "system",
        created_at=now,
    )
    setattr(version, fk, parent.id)
    parent.updated_at = now
    parent.updated_by = actor or "system"
    db.session.add(version)
    db.session.flush()
    logger.debug(
        "Snapshot %s %s -> version %d (%d steps)",
        parent.KIND, parent.id, version.version_no, len(version.steps),
    )
    return version


# ═════════════════════════════════════════════════════════════════════════════
# Revert
# ═════════════════════════════════════════════════════════════════════════════

def get_version(parent, version_id):
    model, fk = _version_model(parent)
    version = _versions_query(parent).filter(model.id == version_id).first()
    if version is None:
        raise NotFoundError(resource=f"{model.__name__}", resource_id=version_id)
    return version


def list_versions(parent):
    model, _ = _version_model(parent)
    return _versions_query(parent).order_by(model.version_no.desc()).all()


def _validated_snapshot_steps(version):
    steps = sorted(version.steps or [], key=lambda s: s.get("order", 0))
    orders = [s.get("order") for s in steps]
    if orders != list(range(len(steps))):
        raise ValidationError(
            f"Version {version.version_no} has an inconsistent step order",
            details={"orders": orders},
        )
    return steps


def revert(parent, version_id, *, actor="system"):
    """Make version `version_id` the live state of parent.

    The pre-revert state is written as exactly one new version before the
    live rows are replaced. Returns (restored_from, new_version).
    """
    target = get_version(parent, version_id)
    if same_instant(target.created_at, parent.updated_at):
        raise ValidationError(
            "Cannot revert to the current version",
            details={"version_id": target.id, "version_no": target.version_no},
        )
    steps = _validated_snapshot_steps(target)

    preserved = snapshot(
        parent,
        change_summary=f"state before revert to version {target.version_no}",
        actor=actor,
    )

    parent.name = target.name
    parent.playwright_script = target.playwright_script
    parent.step_query().delete(synchronize_session="fetch")
    db.session.flush()

    from testmanager.services.step_service import fixture_ref_allowed

    for data in steps:
        ref_id = data.get("fixture_ref_id")
        if ref_id is not None and not fixture_ref_allowed(parent, ref_id):
            # deleted since, or calling it now would close a cycle
            logger.info("Revert of %s %s dropped call to fixture %s", parent.KIND, parent.id, ref_id)
            ref_id = None
        step = Step(
            order=data["order"],
            action=data.get("action") or "",
            data=data.get("data"),
            expected=data.get("expected"),
            disabled=bool(data.get("disabled")),
            playwright_script=data.get("playwright_script"),
            fixture_ref_id=ref_id,
            created_by=actor,
            updated_by=actor,
        )
        setattr(step, parent.STEP_FK, parent.id)
        db.session.add(step)

    # The live state no longer matches `preserved`, so it must not share its stamp.
    restored_at = utcnow()
    if restored_at <= preserved.created_at:
        restored_at = preserved.created_at + timedelta(microseconds=1)
    parent.updated_at = restored_at
    parent.updated_by = actor
    db.session.flush()

    logger.info(
        "Reverted %s %s to version %d (pre-revert state saved as version %d)",
        parent.KIND, parent.id, target.version_no, preserved.version_no,
    )
    return target, preserved


# ═════════════════════════════════════════════════════════════════════════════
# Diff
# ═════════════════════════════════════════════════════════════════════════════

def diff_versions(left, right):
    """Field- and step-level diff between two versions of the same parent."""
    fields = []
    for key in ("name", "playwright_script"):
        if getattr(left, key) != getattr(right, key):
            fields.append({"field": key, "from": getattr(left, key), "to": getattr(right, key)})

    left_steps = {s.get("order"): s for s in (left.steps or [])}
    right_steps = {s.get("order"): s for s in (right.steps or [])}
    step_added, step_removed, step_changed = [], [], []

    for order in sorted(set(left_steps) | set(right_steps)):
        ls = left_steps.get(order)
        rs = right_steps.get(order)
        if ls and not rs:
            step_removed.append({"order": order, "from": ls})
            continue
        if rs and not ls:
            step_added.append({"order": order, "to": rs})
            continue

        row_changes = {}
        for col in ("action", "data", "expected", "disabled", "playwright_script", "fixture_ref_id"):
            if ls.get(col) != rs.get(col):
                row_changes[col] = {"from": ls.get(col), "to": rs.get(col)}
        if row_changes:
            step_changed.append({"order": order, "changes": row_changes})

    return {
        "field_changes": fields,
        "steps_added": step_added,
        "steps_removed": step_removed,
        "steps_changed": step_changed,
    }
