"""Shared blueprint helpers.

get_or_404:          tuple-return lookup used by every blueprint
get_child_or_404:    same, but also checks the row belongs to a project
db_commit_or_error:  commit with IntegrityError / OperationalError mapping
actor_from_request:  who is acting (JWT user email, X-User header, "system")
"""
import logging

from flask import g, jsonify, request

from testmanager.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(Project, pid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def get_child_or_404(model, pk, project_id, label=None):
    """Like get_or_404, but a row from another project is reported as missing."""
    obj, err = get_or_404(model, pk, label)
    if err:
        return None, err
    if obj.project_id != project_id:
        label = label or model.__name__
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def actor_from_request(data=None):
    """Resolve the acting user for created_by / updated_by columns."""
    email = getattr(g, "jwt_user_email", None)
    if email:
        return email
    data = data or {}
    return (
        request.headers.get("X-User")
        or data.get("updated_by")
        or data.get("created_by")
        or "system"
    )


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 500 (connection / lock issues)
    Other → 500 (unexpected)
    """
    from sqlalchemy.exc import IntegrityError, OperationalError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({"error": "Duplicate or constraint violation"}), 409
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return jsonify({"error": "Database error"}), 500
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return jsonify({"error": "Database error"}), 500
