"""Standardised API error responses.

Usage
-----
    from testmanager.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Fixture not found")
    return api_error(E.VALIDATION_REQUIRED, "name is required")
"""

from __future__ import annotations

import logging

from flask import jsonify, request


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business rule – HTTP 422
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 401 / 403
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Server – HTTP 500 / 502
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"
    EXTERNAL = "ERR_EXTERNAL_SERVICE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.EXTERNAL: 502,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_service_error_handlers(bp):
    """Attach the service-exception → JSON mapping to a blueprint.

    Each handler rolls the session back first so a half-applied mutation
    is never committed by a later request in the same context.
    """
    from testmanager.core.exceptions import (
        ConflictError,
        ExternalServiceError,
        NotFoundError,
        StaleStateError,
        ValidationError,
    )
    from testmanager.models import db

    log = logging.getLogger(bp.import_name)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(StaleStateError)
    def _handle_stale(error):
        db.session.rollback()
        return api_error(
            E.CONFLICT_STATE, str(error),
            details={"expected_version": error.expected, "current_version": error.actual},
        )

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(ExternalServiceError)
    def _handle_external(error):
        db.session.rollback()
        log.error("External service error on %s: %s", request.endpoint, error)
        return api_error(E.EXTERNAL, f"{error.service} is unavailable")
