"""
Daily work assignments.

A WorkAssignment ties a user to an item for one day and carries the effort
record. This module owns:

  - selection for today (upsert on (user, day, kind, item) + status side channel)
  - completion (outcome note, actual duration, TimeBreakdown with rework)
  - logged work sessions
  - guarded cleanup on reassignment / unblock

Cleanup guard: an assignment with at least one WorkSession is never deleted
by reassignment or unblock. Logged effort wins over a stale assignment; the
skip is logged, never raised.

Nothing here commits; lifecycle_service owns the transaction.
"""

import logging
import math
from datetime import date, datetime, timezone

from worktrack.core.exceptions import (
    InvalidTransitionError,
    MissingRequiredFeedbackError,
    NotFoundError,
    ReferentialConflictError,
    ValidationError,
)
from worktrack.models import db
from worktrack.models.work_assignment import SESSION_TYPES, WorkAssignment, WorkSession
from worktrack.services import history_recorder
from worktrack.services.helpers.item_queries import get_item, write_status
from worktrack.services.item_notes import (
    DeliveryComment,
    TimeBreakdown,
    decode_time_breakdown,
)

logger = logging.getLogger(__name__)

# Item statuses a user may pick up or deliver
WORKABLE_STATUSES = {"pending", "assigned", "in_progress", "returned"}
DURATION_UNITS = {"minutes", "hours"}


def _today() -> date:
    return datetime.now(timezone.utc).date()


def get_assignment(assignment_id: int) -> WorkAssignment:
    assignment = db.session.get(WorkAssignment, assignment_id)
    if assignment is None:
        raise NotFoundError(resource="WorkAssignment", resource_id=assignment_id)
    return assignment


def list_assignments_for_day(user_id: int, on_date: date | None = None) -> list[WorkAssignment]:
    return (
        WorkAssignment.query
        .filter_by(user_id=user_id, date=on_date or _today())
        .order_by(WorkAssignment.id)
        .all()
    )


def to_minutes(value, unit: str = "minutes") -> int:
    """Convert a positive duration in ``unit`` to whole minutes.

    Raises:
        ValidationError: non-numeric, non-positive or unknown unit.
    """
    if unit not in DURATION_UNITS:
        raise ValidationError(f"Unknown duration unit: {unit}", details={"unit": "minutes | hours"})
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Duration must be a number", details={"duration": "not a number"}) from None
    if not math.isfinite(amount):
        raise ValidationError("Duration must be a finite number", details={"duration": "not finite"})
    minutes = round(amount * 60) if unit == "hours" else round(amount)
    if amount <= 0 or minutes <= 0:
        raise ValidationError("Duration must be positive", details={"duration": "must be > 0"})
    return int(minutes)


# ── Selection for today ──────────────────────────────────────────────────────


def _upsert(user_id: int, item, on_date: date) -> WorkAssignment:
    assignment = WorkAssignment.query.filter_by(
        user_id=user_id, date=on_date, item_kind=item.kind, item_id=item.id,
    ).first()
    if assignment is None:
        assignment = WorkAssignment(
            user_id=user_id,
            date=on_date,
            item_kind=item.kind,
            item_id=item.id,
        )
        db.session.add(assignment)
    assignment.status = "assigned"
    assignment.estimated_duration = item.estimated_duration
    assignment.project_id = item.project_id
    return assignment


def _drive_item_status(item, user_id: int) -> list[dict]:
    """Status side channel of selecting an item. Returns the changes made."""
    changes = []
    if item.kind == "task":
        if item.status != "assigned":
            previous = write_status(item, "assigned")
            history_recorder.append_entry("task", item.id, previous, "assigned", user_id)
            changes.append({"item_kind": "task", "item_id": item.id, "from": previous, "to": "assigned"})
        return changes

    if item.status in ("pending", "returned"):
        previous = write_status(item, "in_progress")
        history_recorder.append_entry("subtask", item.id, previous, "in_progress", user_id)
        changes.append({"item_kind": "subtask", "item_id": item.id, "from": previous, "to": "in_progress"})

    parent = item.task
    if parent is not None and parent.status == "pending":
        previous = write_status(parent, "in_progress")
        history_recorder.append_entry("task", parent.id, previous, "in_progress", user_id)
        changes.append({"item_kind": "task", "item_id": parent.id, "from": previous, "to": "in_progress"})
    return changes


def assign_for_today(user_id: int, selections: list[dict], on_date: date | None = None) -> dict:
    """Create/refresh today's assignments for the selected items.

    Args:
        user_id: the user picking the work.
        selections: ``[{"kind": "task" | "subtask", "id": int}, ...]``.
        on_date: defaults to today (UTC).

    Returns:
        {"assignments": [WorkAssignment], "status_changes": [...]}

    Raises:
        NotFoundError, ValidationError (not an assignee, task split into
        subtasks, item not workable).
    """
    on_date = on_date or _today()
    if not selections:
        raise MissingRequiredFeedbackError("items", "Select at least one item to work on")

    assignments = []
    status_changes = []
    for sel in selections:
        if not isinstance(sel, dict):
            raise ValidationError(
                "Each selected item must be an object with kind and id",
                details={"items": "expected {\"kind\": ..., \"id\": ...}"},
            )
        item_id = sel.get("id")
        if isinstance(item_id, bool) or not isinstance(item_id, int):
            raise ValidationError("Selected item id must be an integer", details={"id": "invalid"})
        item = get_item(sel.get("kind"), item_id)
        if item.kind == "task" and item.subtasks:
            raise ValidationError(
                f"Task {item.id} is split into subtasks; select a subtask instead",
                details={"item_id": item.id},
            )
        if user_id not in item.assignee_ids:
            raise ValidationError(
                f"User {user_id} is not assigned to {item.kind} {item.id}",
                details={"user_id": user_id},
            )
        if item.status not in WORKABLE_STATUSES:
            raise ValidationError(
                f"{item.kind.capitalize()} {item.id} is {item.status} and cannot be picked up",
                details={"status": item.status},
            )

        assignments.append(_upsert(user_id, item, on_date))
        status_changes.extend(_drive_item_status(item, user_id))

    db.session.flush()
    logger.info("User %s selected %d item(s) for %s", user_id, len(assignments), on_date,
                extra={"user_id": user_id})
    return {"assignments": assignments, "status_changes": status_changes}


# ── Completion ───────────────────────────────────────────────────────────────


def _previous_breakdown(assignment: WorkAssignment) -> TimeBreakdown | None:
    """Effort already recorded for the item: this row first, then the latest completed one."""
    own = decode_time_breakdown(assignment.notes)
    if own is not None:
        return own
    earlier = (
        WorkAssignment.query
        .filter(
            WorkAssignment.item_kind == assignment.item_kind,
            WorkAssignment.item_id == assignment.item_id,
            WorkAssignment.status == "completed",
            WorkAssignment.id != assignment.id,
        )
        .order_by(WorkAssignment.date.desc(), WorkAssignment.id.desc())
        .first()
    )
    return decode_time_breakdown(earlier.notes) if earlier is not None else None


def complete_assignment(
    assignment_id: int,
    outcome_note: str,
    duration,
    unit: str = "minutes",
    *,
    actor_id: int | None = None,
) -> dict:
    """Mark an assignment completed and deliver the underlying item.

    The first completion of an item records ``initial``; every completion
    after a return appends a ``rework`` entry, so
    ``actual_duration == initial + sum(rework)``.

    Returns:
        {"assignment", "item", "previous_status", "breakdown", "is_rework"}

    Raises:
        MissingRequiredFeedbackError: empty outcome note.
        ValidationError: bad duration.
        InvalidTransitionError: the item is not in a deliverable status.
    """
    if not (outcome_note or "").strip():
        raise MissingRequiredFeedbackError("outcome_note", "An outcome note is required to complete work")
    minutes = to_minutes(duration, unit)

    assignment = get_assignment(assignment_id)
    item = get_item(assignment.item_kind, assignment.item_id)
    if item.status not in WORKABLE_STATUSES:
        raise InvalidTransitionError(item.status, "completed")

    actor_id = actor_id if actor_id is not None else assignment.user_id
    now = datetime.now(timezone.utc)

    breakdown = _previous_breakdown(assignment)
    is_rework = breakdown is not None
    if is_rework:
        reason = (item.feedback or {}).get("comment") or "rework"
        breakdown.add_rework(minutes, assignment.date or now.date(), reason)
    else:
        breakdown = TimeBreakdown(initial=minutes)

    assignment.status = "completed"
    assignment.actual_duration = breakdown.total
    assignment.notes = breakdown.to_json()
    assignment.end_time = now

    note = DeliveryComment(comment=outcome_note.strip(), delivered_by=actor_id)
    previous = write_status(item, "completed", {"notes": note.to_json()})
    history_recorder.append_entry(
        item.kind, item.id, previous, "completed", actor_id,
        metadata={"outcome_note": note.comment, "duration": minutes, "rework": is_rework},
    )
    db.session.flush()

    logger.info("Assignment %s completed (%d min, rework=%s)", assignment.id, minutes, is_rework,
                extra={"item_kind": item.kind, "item_id": item.id, "user_id": assignment.user_id})
    return {
        "assignment": assignment,
        "item": item,
        "previous_status": previous,
        "breakdown": breakdown,
        "is_rework": is_rework,
    }


# ── Work sessions ────────────────────────────────────────────────────────────


def log_work_session(assignment_id: int, start_time: datetime, end_time: datetime,
                     session_type: str = "work", notes: str = "") -> WorkSession:
    """Record a block of effort against an assignment."""
    assignment = get_assignment(assignment_id)
    if start_time is None or end_time is None:
        raise MissingRequiredFeedbackError("start_time/end_time")
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time", details={"end_time": "<= start_time"})
    if session_type not in SESSION_TYPES:
        raise ValidationError(f"Unknown session type: {session_type}",
                              details={"session_type": f"one of {sorted(SESSION_TYPES)}"})

    session = WorkSession(
        assignment_id=assignment.id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=max(1, round((end_time - start_time).total_seconds() / 60)),
        session_type=session_type,
        notes=notes or "",
    )
    db.session.add(session)
    if assignment.start_time is None:
        assignment.start_time = start_time
    db.session.flush()
    return session


# ── Guarded cleanup ──────────────────────────────────────────────────────────


def has_logged_work(assignment: WorkAssignment) -> bool:
    return _session_count(assignment) > 0


def _session_count(assignment: WorkAssignment) -> int:
    return WorkSession.query.filter_by(assignment_id=assignment.id).count()


def delete_assignment_guarded(assignment: WorkAssignment) -> None:
    """Delete an assignment that has no logged work.

    Raises:
        ReferentialConflictError: work sessions reference it.
    """
    count = _session_count(assignment)
    if count:
        raise ReferentialConflictError(assignment.id, count)
    db.session.delete(assignment)


def _cleanup(assignments: list[WorkAssignment], context: str) -> dict:
    deleted = []
    skipped = []
    for assignment in assignments:
        try:
            delete_assignment_guarded(assignment)
            deleted.append(assignment.id)
        except ReferentialConflictError as exc:
            skipped.append(assignment.id)
            logger.info("%s cleanup skipped: %s", context, exc,
                        extra={"item_kind": assignment.item_kind, "item_id": assignment.item_id,
                               "user_id": assignment.user_id})
    db.session.flush()
    return {"deleted": deleted, "skipped": skipped}


def cleanup_on_reassign(kind: str, item_id: int, previous_user_id: int) -> dict:
    """Remove the previous assignee's assignments for the item, unless work was logged."""
    assignments = WorkAssignment.query.filter_by(
        item_kind=kind, item_id=item_id, user_id=previous_user_id,
    ).all()
    return _cleanup(assignments, "Reassignment")


def cleanup_on_unblock(kind: str, item_id: int) -> dict:
    """Remove every assignment of an unblocked item, unless work was logged."""
    assignments = WorkAssignment.query.filter_by(item_kind=kind, item_id=item_id).all()
    return _cleanup(assignments, "Unblock")


def cleanup_users_removed_from_task(task_id: int, remaining_user_ids) -> dict:
    """Drop task-level assignments of users no longer assigned to the task."""
    remaining = set(remaining_user_ids)
    assignments = [
        a for a in WorkAssignment.query.filter_by(item_kind="task", item_id=task_id).all()
        if a.user_id not in remaining
    ]
    return _cleanup(assignments, "Task sync")


def purge_item_assignments(kind: str, item_id: int) -> int:
    """Delete every assignment of an item and its work sessions (explicit item deletion)."""
    assignments = WorkAssignment.query.filter_by(item_kind=kind, item_id=item_id).all()
    ids = [a.id for a in assignments]
    if ids:
        WorkSession.query.filter(WorkSession.assignment_id.in_(ids)).delete(synchronize_session=False)
        WorkAssignment.query.filter(WorkAssignment.id.in_(ids)).delete(synchronize_session=False)
    return len(ids)
