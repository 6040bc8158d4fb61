"""
Status history recording.

Every validated transition appends a StatusHistoryEntry, except two
cancellations which correct the trail instead of extending it:

    in_review → completed   (review cancelled)  deletes the latest  new_status='in_review' row
    blocked   → pending     (unblock)           deletes the latest  new_status='blocked'   row

Entries are added to the session only; the caller owns the commit.
"""

import logging

from worktrack.models import db
from worktrack.models.status_history import StatusHistoryEntry

logger = logging.getLogger(__name__)

# (previous, new) → status of the row the transition cancels
CANCELLATIONS = {
    ("in_review", "completed"): "in_review",
    ("blocked", "pending"): "blocked",
}


def _item_filter(kind: str, item_id: int) -> dict:
    if kind == "subtask":
        return {"subtask_id": item_id}
    return {"task_id": item_id, "subtask_id": None}


def append_entry(kind, item_id, previous_status, new_status, changed_by=None, metadata=None):
    """Append a history row. ``changed_by=None`` records a system change."""
    entry = StatusHistoryEntry(
        previous_status=previous_status,
        new_status=new_status,
        changed_by=changed_by,
        meta=metadata or None,
        **_item_filter(kind, item_id),
    )
    db.session.add(entry)
    return entry


def retract_latest(kind, item_id, status) -> StatusHistoryEntry | None:
    """Delete the most recent entry with ``new_status == status`` for the item.

    Returns the deleted entry, or None if there was nothing to retract.
    """
    entry = (
        StatusHistoryEntry.query
        .filter_by(new_status=status, **_item_filter(kind, item_id))
        .order_by(StatusHistoryEntry.changed_at.desc(), StatusHistoryEntry.id.desc())
        .first()
    )
    if entry is None:
        logger.info("No '%s' history entry to retract", status,
                    extra={"item_kind": kind, "item_id": item_id})
        return None
    db.session.delete(entry)
    return entry


def record_transition(kind, item_id, previous_status, new_status, changed_by=None, metadata=None) -> dict:
    """Apply the append-vs-retract policy for one transition.

    Returns:
        {"action": "appended" | "retracted" | "noop", "entry_id": int | None}
    """
    cancelled_status = CANCELLATIONS.get((previous_status, new_status))
    if cancelled_status is not None:
        removed = retract_latest(kind, item_id, cancelled_status)
        return {
            "action": "retracted" if removed is not None else "noop",
            "entry_id": removed.id if removed is not None else None,
        }

    entry = append_entry(kind, item_id, previous_status, new_status, changed_by, metadata)
    db.session.flush()
    return {"action": "appended", "entry_id": entry.id}


def list_history(kind, item_id) -> list[StatusHistoryEntry]:
    """History of one item, oldest first."""
    return (
        StatusHistoryEntry.query
        .filter_by(**_item_filter(kind, item_id))
        .order_by(StatusHistoryEntry.changed_at.asc(), StatusHistoryEntry.id.asc())
        .all()
    )


def purge_history(kind, item_id) -> int:
    """Delete all history rows of an item (explicit item deletion only)."""
    return (
        StatusHistoryEntry.query
        .filter_by(**_item_filter(kind, item_id))
        .delete(synchronize_session=False)
    )
