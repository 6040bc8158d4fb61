"""
Task/Subtask Lifecycle Service

Top-level coordinator for every status-changing use case:

  transition_item   review loop + unblock (table-driven, see status_rules)
  block_item        working status → blocked (reason required)
  start_work        daily selection; drives assigned / in_progress
  complete_work     assignment completion; drives completed
  reassign_item     assignee swap + guarded cleanup
  delete_item       explicit deletion in referential order

Flow of a transition:

    parse → fetch → gate → conditional UPDATE + history → COMMIT
          → cascades (unblock cleanup, parent auto-approval, sequential
            unlock) → COMMIT
          → notifications (fire-and-forget)

Gate errors are raised before anything is written. Once the core write is
committed it stands: a failing cascade is rolled back on its own and
logged, and notification failures never reach the caller.

Usage:
    from worktrack.services.lifecycle_service import transition_item

    result = transition_item("subtask", 12, "returned", actor_id=1,
                             comment="Totals do not match the ledger")
"""

import logging
from datetime import datetime, timezone

from worktrack.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    MissingRequiredFeedbackError,
    ValidationError,
)
from worktrack.models import db
from worktrack.models.project import User
from worktrack.services import history_recorder, task_service, work_assignment_service
from worktrack.services.helpers.item_queries import (
    conditional_update,
    get_item,
    get_user,
    item_payload,
    write_status,
)
from worktrack.services.item_notes import BlockReason
from worktrack.services.notification import notification_dispatcher
from worktrack.services.parent_status import all_subtasks_approved, task_overview
from worktrack.services.sequence_resolver import resolve_unlock
from worktrack.services.status_rules import ensure_transition, parse_kind, parse_status

logger = logging.getLogger(__name__)

BLOCKABLE_STATUSES = {"pending", "assigned", "in_progress", "returned"}
AUTO_APPROVAL_REASON = "all subtasks approved"


# ── Helpers ──────────────────────────────────────────────────────────────


def _check_version(item, expected_version):
    if expected_version is not None and item.version != expected_version:
        raise ConflictError(type(item).__name__, item.id, expected_version)


def _actor_name(actor_id):
    if actor_id is None:
        return None
    user = db.session.get(User, actor_id)
    return user.name if user else None


def _dispatch(intents):
    """Hand notification intents to the dispatcher. Never raises."""
    for kind, payload in intents:
        notification_dispatcher.notify(kind, payload)
    return [kind for kind, _ in intents]


def _parent_view(item):
    task = item if item.kind == "task" else item.task
    return task_overview(task) if task is not None else None


def _feedback(actor_id, comment, rating):
    return {
        "comment": (comment or "").strip() or None,
        "rating": rating,
        "reviewer_id": actor_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def _transition_values(requested, actor_id, comment, rating) -> dict:
    """Extra columns written together with the new status."""
    if requested == "returned":
        return {
            "feedback": _feedback(actor_id, comment, None),
            "returned_at": datetime.now(timezone.utc),
        }
    if requested == "approved" and ((comment or "").strip() or rating is not None):
        return {"feedback": _feedback(actor_id, comment, rating)}
    if requested == "pending":
        # block reason goes away with the block
        return {"notes": None}
    return {}


# ── Cascades ─────────────────────────────────────────────────────────────


def _approve_parent(task) -> bool:
    """Set the parent's canonical status to approved once every subtask is."""
    if task.status == "approved" or not all_subtasks_approved(task.subtasks):
        return False
    previous = write_status(task, "approved")
    history_recorder.append_entry(
        "task", task.id, previous, "approved", None,
        metadata={"reason": AUTO_APPROVAL_REASON},
    )
    logger.info("Task %s auto-approved (%s)", task.id, AUTO_APPROVAL_REASON,
                extra={"item_kind": "task", "item_id": task.id})
    return True


def _run_cascades(item, previous, requested) -> tuple[dict, list]:
    outcome = {"parent_auto_approved": False, "unlock_targets": [], "cleanup": None}
    intents = []

    if (previous, requested) == ("blocked", "pending"):
        outcome["cleanup"] = work_assignment_service.cleanup_on_unblock(item.kind, item.id)

    if item.kind == "subtask" and requested == "approved":
        parent = item.task
        outcome["parent_auto_approved"] = _approve_parent(parent)
        for target in resolve_unlock(parent, item):
            outcome["unlock_targets"].append(target.id)
            if target.assigned_to is not None:
                intents.append((
                    "task_available",
                    item_payload(target, reason="sequential_dependency_completed",
                                 user_ids=[target.assigned_to]),
                ))

    db.session.flush()
    return outcome, intents


# ── Transition (table-driven) ────────────────────────────────────────────


def transition_item(
    kind: str,
    item_id: int,
    requested: str,
    *,
    actor_id: int | None = None,
    comment: str | None = None,
    rating: int | None = None,
    expected_version: int | None = None,
) -> dict:
    """
    Execute a validated status transition and its cascades.

    Args:
        kind: ``task`` | ``subtask``
        item_id: PK of the item
        requested: target status (closed enum; unknown values are rejected)
        actor_id: user performing the change (None = system)
        comment: feedback comment; mandatory for ``returned``
        rating: optional 1–5 rating for ``approved``
        expected_version: optimistic-concurrency token from the client

    Returns:
        {"item_kind", "item_id", "previous_status", "new_status", "version",
         "history_action", "parent", "parent_auto_approved",
         "unlock_targets", "cleanup", "notifications"}

    Raises:
        ValidationError, InvalidTransitionError, MissingRequiredFeedbackError,
        NotFoundError, ConflictError
    """
    kind = parse_kind(kind)
    requested = parse_status(requested)
    item = get_item(kind, item_id)
    _check_version(item, expected_version)
    ensure_transition(item.status, requested, kind, comment=comment, rating=rating)

    values = _transition_values(requested, actor_id, comment, rating)
    previous = write_status(item, requested, values, expected_version=expected_version)
    history = history_recorder.record_transition(
        kind, item.id, previous, requested, actor_id,
        metadata=values.get("feedback") if requested in ("returned", "approved") else None,
    )
    db.session.commit()
    logger.info("%s %s: %s → %s", kind.capitalize(), item.id, previous, requested,
                extra={"item_kind": kind, "item_id": item.id, "user_id": actor_id})

    intents = []
    if requested == "in_review":
        intents.append(("user_review_request", item_payload(item)))
    elif requested == "returned":
        intents.append(("task_available", item_payload(item, reason="returned",
                                                       detail=values["feedback"]["comment"])))
    elif requested == "pending":
        intents.append(("task_available", item_payload(item, reason="unblocked")))

    outcome = {"parent_auto_approved": False, "unlock_targets": [], "cleanup": None}
    try:
        outcome, cascade_intents = _run_cascades(item, previous, requested)
        db.session.commit()
        intents.extend(cascade_intents)
    except Exception:
        db.session.rollback()
        logger.warning("Cascade after %s %s → %s failed; transition kept", kind, item.id, requested,
                       exc_info=True, extra={"item_kind": kind, "item_id": item.id})

    sent = _dispatch(intents)

    return {
        "item_kind": kind,
        "item_id": item.id,
        "previous_status": previous,
        "new_status": item.status,
        "version": item.version,
        "history_action": history["action"],
        "parent": _parent_view(item),
        "parent_auto_approved": outcome["parent_auto_approved"],
        "unlock_targets": outcome["unlock_targets"],
        "cleanup": outcome["cleanup"],
        "notifications": sent,
    }


# ── Side channels ────────────────────────────────────────────────────────


def block_item(kind, item_id, *, actor_id=None, reason=None, expected_version=None) -> dict:
    """Move a working item to ``blocked`` with a mandatory reason.

    The reason is stored as a BlockReason note and in the history metadata;
    admins are notified.
    """
    kind = parse_kind(kind)
    if not (reason or "").strip():
        raise MissingRequiredFeedbackError("reason", "A reason is required to block an item")
    item = get_item(kind, item_id)
    _check_version(item, expected_version)
    if item.kind == "task" and item.subtasks:
        raise ValidationError(
            f"Task {item.id} is split into subtasks; block a subtask instead",
            details={"item_id": item.id},
        )
    if item.status not in BLOCKABLE_STATUSES:
        raise InvalidTransitionError(item.status, "blocked")

    note = BlockReason(reason=reason.strip(), blocked_by=actor_id)
    previous = write_status(item, "blocked", {"notes": note.to_json()}, expected_version=expected_version)
    entry = history_recorder.append_entry(kind, item.id, previous, "blocked", actor_id,
                                          metadata={"reason": note.reason})
    db.session.commit()
    logger.info("%s %s blocked", kind.capitalize(), item.id,
                extra={"item_kind": kind, "item_id": item.id, "user_id": actor_id})

    sent = _dispatch([(
        "admin_action",
        item_payload(item, action="blocked", actor_name=_actor_name(actor_id),
                     detail=f"Reason: {note.reason}"),
    )])
    return {
        "item_kind": kind,
        "item_id": item.id,
        "previous_status": previous,
        "new_status": item.status,
        "version": item.version,
        "history_entry_id": entry.id,
        "parent": _parent_view(item),
        "notifications": sent,
    }


def start_work(user_id, selections, on_date=None) -> dict:
    """Select items to work on today (see work_assignment_service.assign_for_today)."""
    get_user(user_id)
    result = work_assignment_service.assign_for_today(user_id, selections, on_date)
    db.session.commit()
    return {
        "assignments": [a.to_dict() for a in result["assignments"]],
        "status_changes": result["status_changes"],
    }


def complete_work(assignment_id, outcome_note, duration, unit="minutes", *, actor_id=None) -> dict:
    """Complete an assignment and deliver its item; admins are notified."""
    result = work_assignment_service.complete_assignment(
        assignment_id, outcome_note, duration, unit, actor_id=actor_id,
    )
    db.session.commit()

    assignment = result["assignment"]
    item = result["item"]
    action = "completed (rework)" if result["is_rework"] else "completed"
    sent = _dispatch([(
        "admin_action",
        item_payload(item, action=action, actor_name=_actor_name(assignment.user_id),
                     detail=f"Outcome: {outcome_note.strip()}"),
    )])
    return {
        "assignment": assignment.to_dict(),
        "item": item.to_dict(),
        "previous_status": result["previous_status"],
        "time_breakdown": result["breakdown"].to_json(),
        "is_rework": result["is_rework"],
        "parent": _parent_view(item),
        "notifications": sent,
    }


def reassign_item(kind, item_id, new_user_id, *, actor_id=None, previous_user_id=None) -> dict:
    """
    Hand an item to another user.

    Subtasks swap their single assignee. A task without subtasks either
    replaces ``previous_user_id`` in its assignee set or, without it, is
    handed to ``new_user_id`` alone. The previous assignees' work
    assignments for the item are removed unless work was logged on them.
    No history entry is written: status does not change.
    """
    kind = parse_kind(kind)
    if new_user_id is None:
        raise MissingRequiredFeedbackError("user_id", "A target user is required to reassign an item")
    item = get_item(kind, item_id)
    new_user = get_user(new_user_id)

    if kind == "subtask":
        if item.assigned_to == new_user.id:
            raise ValidationError(f"Subtask {item.id} is already assigned to user {new_user.id}",
                                  details={"user_id": new_user.id})
        removed = item.assignee_ids
        conditional_update(item, {"assigned_to": new_user.id})
    else:
        if item.subtasks:
            raise ValidationError(
                f"Task {item.id} is split into subtasks; reassign a subtask instead",
                details={"item_id": item.id},
            )
        current = item.assignee_ids
        if previous_user_id is not None:
            if previous_user_id not in current:
                raise ValidationError(f"User {previous_user_id} is not assigned to task {item.id}",
                                      details={"previous_user_id": previous_user_id})
            new_ids = []
            for uid in current:
                uid = new_user.id if uid == previous_user_id else uid
                if uid not in new_ids:
                    new_ids.append(uid)
            removed = [previous_user_id]
        else:
            new_ids = [new_user.id]
            removed = [uid for uid in current if uid != new_user.id]
        conditional_update(item, {"assigned_users": new_ids})

    cleanup = {"deleted": [], "skipped": []}
    for uid in removed:
        if uid == new_user.id:
            continue
        part = work_assignment_service.cleanup_on_reassign(kind, item.id, uid)
        cleanup["deleted"].extend(part["deleted"])
        cleanup["skipped"].extend(part["skipped"])

    if kind == "subtask":
        task_service.sync_task_from_subtasks(item.task)
    db.session.commit()
    logger.info("%s %s reassigned to user %s", kind.capitalize(), item.id, new_user.id,
                extra={"item_kind": kind, "item_id": item.id, "user_id": actor_id})

    sent = _dispatch([
        ("task_available", item_payload(item, reason="reassigned", user_ids=[new_user.id])),
        ("admin_action", item_payload(item, action=f"reassigned to {new_user.name}",
                                      actor_name=_actor_name(actor_id))),
    ])
    return {
        "item_kind": kind,
        "item_id": item.id,
        "assignees": item.assignee_ids,
        "previous_assignees": removed,
        "version": item.version,
        "cleanup": cleanup,
        "notifications": sent,
    }


# ── Deletion ─────────────────────────────────────────────────────────────


def _purge_dependents(kind, item_id, counts):
    counts["assignments"] += work_assignment_service.purge_item_assignments(kind, item_id)
    counts["history"] += history_recorder.purge_history(kind, item_id)


def delete_item(kind, item_id) -> dict:
    """Delete an item after its work sessions, assignments and history.

    Deleting a task deletes its subtasks first; deleting a subtask re-syncs
    its parent.
    """
    kind = parse_kind(kind)
    item = get_item(kind, item_id)
    counts = {"tasks": 0, "subtasks": 0, "assignments": 0, "history": 0}

    if kind == "task":
        for subtask in list(item.subtasks):
            _purge_dependents("subtask", subtask.id, counts)
            db.session.delete(subtask)
            counts["subtasks"] += 1
        _purge_dependents("task", item.id, counts)
        db.session.delete(item)
        counts["tasks"] += 1
        db.session.flush()
    else:
        parent = item.task
        _purge_dependents("subtask", item.id, counts)
        db.session.delete(item)
        counts["subtasks"] += 1
        db.session.flush()
        db.session.expire(parent, ["subtasks"])
        task_service.sync_task_from_subtasks(parent)

    db.session.commit()
    logger.info("%s %s deleted (%s)", kind.capitalize(), item_id, counts,
                extra={"item_kind": kind, "item_id": item_id})
    return {"item_kind": kind, "item_id": item_id, "deleted": counts}
