"""Standardised API error responses.

Usage
-----
    from worktrack.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Task not found")
    return api_error(E.INVALID_TRANSITION, "invalid transition from pending to approved",
                     details={"from": "pending", "to": "approved"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • LIFECYCLE_ prefix for state-machine gate errors
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # Lifecycle gate – HTTP 400 / 422
    INVALID_TRANSITION = "LIFECYCLE_INVALID_TRANSITION"
    FEEDBACK_REQUIRED = "LIFECYCLE_FEEDBACK_REQUIRED"
    BUSINESS_RULE = "LIFECYCLE_BUSINESS_RULE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.CONFLICT_DUPLICATE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.INVALID_TRANSITION: 400,
    E.FEEDBACK_REQUIRED: 400,
    E.BUSINESS_RULE: 422,
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
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (rejected transition pair, field errors).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app) -> None:
    """Map the platform exception hierarchy onto ``api_error`` responses.

    Service errors are raised before commit; whatever the request left in
    the session is discarded first.
    """
    import logging

    from worktrack.core.exceptions import (
        ConflictError,
        InvalidTransitionError,
        MissingRequiredFeedbackError,
        NotFoundError,
        ValidationError,
    )
    from worktrack.models import db

    logger = logging.getLogger(__name__)

    @app.errorhandler(NotFoundError)
    def _not_found(exc):
        db.session.rollback()
        logger.info("Not found: %s", exc)
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(exc):
        db.session.rollback()
        return api_error(E.INVALID_TRANSITION, str(exc), details=exc.details)

    @app.errorhandler(MissingRequiredFeedbackError)
    def _feedback_required(exc):
        db.session.rollback()
        return api_error(E.FEEDBACK_REQUIRED, str(exc), details=exc.details)

    @app.errorhandler(ValidationError)
    def _validation(exc):
        db.session.rollback()
        return api_error(E.BUSINESS_RULE, str(exc), status=exc.status_code, details=exc.details)

    @app.errorhandler(ConflictError)
    def _conflict(exc):
        db.session.rollback()
        logger.warning("Concurrent write rejected: %s", exc)
        return api_error(E.CONFLICT_STATE, str(exc))
