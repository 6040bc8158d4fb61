"""Shared utility functions for blueprints.

get_or_404:          tuple-return lookup (NOT abort)
parse_date:          returns None on bad input
parse_date_input:    raises ValueError on bad input
db_commit_or_error:  commit with uniform error responses
"""
import logging
from datetime import date, datetime

from flask import jsonify

from worktrack.models import db
from worktrack.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def get_or_404(model, pk, label=None):
    """Fetch a model instance by primary key or return a 404 error tuple.

    - Success: (obj, None)
    - Failure: (None, (jsonify_response, 404))

        obj, err = get_or_404(Task, tid)
        if err:
            return err
    """
    label = label or model.__name__
    obj = db.session.get(model, pk)
    if not obj:
        return None, (jsonify({"error": f"{label} not found"}), 404)
    return obj, None


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (datetime ISO → .date())
    - DD.MM.YYYY
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError):
        return None


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Same as parse_date() but raises instead of returning None, so callers
    can turn a malformed date into a 400.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    parsed = parse_date(value)
    if parsed is None:
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.")
    return parsed


def parse_datetime_input(value):
    """Parse an ISO datetime string, raising ValueError on bad input."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (ValueError, TypeError) as exc:
        raise ValueError("Invalid datetime format. Use ISO 8601.") from exc


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure, ready for ``return``.

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
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return api_error(E.DATABASE, "Database error")
    except Exception:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")
