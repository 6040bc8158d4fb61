"""
Work item status transition rules.

Pure functions: callers pass the item's current status (read immediately
before the write); nothing here touches the database.

The table only governs the review loop and the unblock path:

    completed  → in_review
    blocked    → pending
    in_review  → returned | approved | completed

``assigned`` / ``in_progress`` / ``completed`` / ``blocked`` are reached
through side channels (work assignment creation and completion, blocking)
and never through this table.

Usage:
    from worktrack.services.status_rules import validate_transition

    check = validate_transition("in_review", "returned", "subtask", comment="")
    if not check["valid"]:
        ...
"""

from worktrack.core.exceptions import (
    InvalidTransitionError,
    MissingRequiredFeedbackError,
    ValidationError,
)
from worktrack.models.work_item import ITEM_KINDS, ITEM_STATUSES


STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "completed": frozenset({"in_review"}),
    "blocked": frozenset({"pending"}),
    "in_review": frozenset({"returned", "approved", "completed"}),
}

RATING_MIN = 1
RATING_MAX = 5


def parse_status(value) -> str:
    """Boundary check: return ``value`` if it is a known status, else raise.

    Unknown strings never reach the state machine.
    """
    if not isinstance(value, str) or value not in ITEM_STATUSES:
        raise ValidationError(
            f"Unknown status: {value!r}",
            details={"status": f"must be one of {', '.join(ITEM_STATUSES)}"},
        )
    return value


def parse_kind(value) -> str:
    if value not in ITEM_KINDS:
        raise ValidationError(
            f"Unknown item kind: {value!r}",
            details={"kind": "must be task or subtask"},
        )
    return value


def available_transitions(current: str) -> list[str]:
    """Targets reachable from ``current`` through the table, sorted."""
    return sorted(STATUS_TRANSITIONS.get(current, ()))


def _rejected(current, requested, reason, error):
    return {"valid": False, "from": current, "to": requested, "reason": reason, "error": error}


def validate_transition(
    current: str,
    requested: str,
    kind: str,
    *,
    comment: str | None = None,
    rating=None,
) -> dict:
    """Decide whether ``current → requested`` is allowed for an item of ``kind``.

    Returns:
        {"valid", "from", "to", "reason", "error"} where ``error`` names the
        taxonomy class on rejection (``invalid_transition`` |
        ``missing_feedback`` | ``invalid_rating``) and is None otherwise.
    """
    if kind not in ITEM_KINDS:
        return _rejected(current, requested, f"unknown item kind {kind}", "invalid_transition")

    if requested not in STATUS_TRANSITIONS.get(current, ()):
        return _rejected(
            current, requested,
            f"invalid transition from {current} to {requested}",
            "invalid_transition",
        )

    if requested == "returned" and not (comment or "").strip():
        return _rejected(current, requested, "a feedback comment is required to return an item",
                         "missing_feedback")

    if requested == "approved" and rating is not None:
        if isinstance(rating, bool) or not isinstance(rating, int) or not RATING_MIN <= rating <= RATING_MAX:
            return _rejected(current, requested,
                             f"rating must be an integer between {RATING_MIN} and {RATING_MAX}",
                             "invalid_rating")

    return {"valid": True, "from": current, "to": requested, "reason": None, "error": None}


def ensure_transition(current: str, requested: str, kind: str, *, comment=None, rating=None) -> dict:
    """Raising wrapper around :func:`validate_transition`.

    Raises:
        InvalidTransitionError: pair not in the table.
        MissingRequiredFeedbackError: return without a comment.
        ValidationError: approval rating out of range.
    """
    check = validate_transition(current, requested, kind, comment=comment, rating=rating)
    if check["valid"]:
        return check
    if check["error"] == "missing_feedback":
        raise MissingRequiredFeedbackError("comment", check["reason"])
    if check["error"] == "invalid_rating":
        raise ValidationError(check["reason"], details={"rating": check["reason"]})
    raise InvalidTransitionError(current, requested, check["reason"])
