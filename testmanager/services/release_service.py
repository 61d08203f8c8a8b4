"""Releases: CRUD plus the release's test case pool.

Transaction policy: flush() only; the route handler commits.
"""
import logging
from datetime import date

from sqlalchemy import or_

from testmanager.core.exceptions import ConflictError, NotFoundError, ValidationError
from testmanager.models import db
from testmanager.models.release import RELEASE_STATUSES, Release, ReleaseTestCase
from testmanager.models.testing import TestCase

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"name", "version", "status", "start_date", "end_date", "created_at", "updated_at"}


def _parse_date(field, value, required=False):
    if value in (None, ""):
        if required:
            raise ValidationError(f"{field} is required", details={field: "required"})
        return None
    if isinstance(value, date):
        return value
    try:
        # accept full ISO timestamps from date pickers, keep the day only
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={field: value})


def _validate_status(value):
    if value not in RELEASE_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(RELEASE_STATUSES))}",
            details={"status": value},
        )
    return value


def _ensure_name_free(project_id, name, exclude_id=None):
    q = Release.query.filter_by(project_id=project_id, name=name)
    if exclude_id is not None:
        q = q.filter(Release.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Release", "name", name)


def _clean_fields(data, current=None):
    """Validate the writable fields; PUT carries the full record, as on create."""
    name = (data.get("name") or "").strip()
    version = (data.get("version") or "").strip()
    missing = {f: "required" for f, v in (("name", name), ("version", version)) if not v}
    if missing:
        raise ValidationError("name, version and start_date are required", details=missing)

    start = _parse_date("start_date", data.get("start_date"), required=True)
    end = _parse_date("end_date", data.get("end_date"))
    if end is not None and end < start:
        raise ValidationError(
            "end_date must not be before start_date",
            details={"start_date": start.isoformat(), "end_date": end.isoformat()},
        )
    status = data.get("status") or (current.status if current else "planning")
    return {
        "name": name,
        "version": version,
        "description": data.get("description") or "",
        "start_date": start,
        "end_date": end,
        "status": _validate_status(status),
    }


def list_releases(project=None, *, status=None, search=None, start_from=None, end_until=None,
                  sort="updated_at", order="desc"):
    """Filtered release query; all projects when ``project`` is None."""
    q = Release.query
    if project is not None:
        q = q.filter(Release.project_id == project.id)
    if status and status != "all":
        q = q.filter(Release.status == status)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            Release.name.ilike(pattern),
            Release.version.ilike(pattern),
            Release.description.ilike(pattern),
        ))
    if start_from:
        q = q.filter(Release.start_date >= _parse_date("start_date", start_from))
    if end_until:
        q = q.filter(Release.end_date <= _parse_date("end_date", end_until))

    column = getattr(Release, sort if sort in SORTABLE_FIELDS else "updated_at")
    column = column.asc() if (order or "").lower() == "asc" else column.desc()
    return q.order_by(column, Release.id.desc())


def create_release(project, data, *, actor="system"):
    fields = _clean_fields(data)
    _ensure_name_free(project.id, fields["name"])
    release = Release(project_id=project.id, created_by=actor, updated_by=actor, **fields)
    db.session.add(release)
    db.session.flush()
    logger.info("Created release %s (%s) in project %s", release.id, release.version, project.id)
    return release


def update_release(release, data, *, actor="system"):
    fields = _clean_fields(data, current=release)
    _ensure_name_free(release.project_id, fields["name"], exclude_id=release.id)
    for key, value in fields.items():
        setattr(release, key, value)
    release.updated_by = actor
    db.session.flush()
    return release


def delete_release(release):
    logger.info("Deleting release %s from project %s", release.id, release.project_id)
    db.session.delete(release)
    db.session.flush()


def add_test_cases(release, test_case_ids, *, actor="system"):
    """Link test cases of the release's project; already linked ids are skipped.

    Returns the newly created links.
    """
    wanted = list(dict.fromkeys(test_case_ids))
    found = {
        tc.id: tc for tc in TestCase.query.filter(
            TestCase.id.in_(wanted), TestCase.project_id == release.project_id,
        )
    }
    missing = [tc_id for tc_id in wanted if tc_id not in found]
    if missing:
        raise ValidationError(
            "One or more test cases not found in this project",
            details={"test_case_ids": missing},
        )

    linked = {
        row[0] for row in db.session.query(ReleaseTestCase.test_case_id)
        .filter(ReleaseTestCase.release_id == release.id).all()
    }
    created = []
    for tc_id in wanted:
        if tc_id in linked:
            continue
        link = ReleaseTestCase(
            release_id=release.id,
            test_case_id=tc_id,
            test_case_version=found[tc_id].version,
            added_by=actor,
        )
        db.session.add(link)
        created.append(link)
    release.updated_by = actor
    db.session.flush()
    logger.info("Release %s: linked %d test case(s)", release.id, len(created))
    return created


def remove_test_case(release, test_case_id):
    link = ReleaseTestCase.query.filter_by(release_id=release.id, test_case_id=test_case_id).first()
    if link is None:
        raise NotFoundError(resource="Release test case", resource_id=test_case_id)
    db.session.delete(link)
    db.session.flush()
