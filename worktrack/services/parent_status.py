"""
Parent task status aggregation.

Read-side projection only: the aggregate is what the boards display for a
task, it is never written back as the task's canonical status. The one
canonical write derived from subtasks (auto-approval once every subtask is
approved) lives in lifecycle_service, which calls ``all_subtasks_approved``.

Aggregate values: ``pending | in_progress | blocked | in_review | completed``.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable


# Own-status mapping for tasks without subtasks
_DIRECT_MAPPING = {
    "approved": "completed",
    "in_review": "in_review",
    "completed": "in_review",
    "blocked": "blocked",
    "returned": "blocked",
    "assigned": "in_progress",
}

_WORKING_STATUSES = {"in_progress", "completed", "approved"}


def _statuses(subtasks: Iterable) -> list[str]:
    return [s if isinstance(s, str) else s.status for s in subtasks]


def aggregate_status(task_status: str, subtasks: Iterable = ()) -> str:
    """Derive a task's display status.

    Args:
        task_status: the task's own canonical status.
        subtasks: Subtask rows (or bare status strings) of the task.

    Rules, in priority order, when subtasks exist:
        1. all approved               → completed
        2. any in_review              → in_review
        3. any blocked / returned     → blocked
        4. any in_progress / completed / approved → in_progress
        5. otherwise                  → pending
    """
    statuses = _statuses(subtasks)
    if not statuses:
        return _DIRECT_MAPPING.get(task_status, "pending")

    present = set(statuses)
    if present == {"approved"}:
        return "completed"
    if "in_review" in present:
        return "in_review"
    if present & {"blocked", "returned"}:
        return "blocked"
    if present & _WORKING_STATUSES:
        return "in_progress"
    return "pending"


def all_subtasks_approved(subtasks: Iterable) -> bool:
    statuses = _statuses(subtasks)
    return bool(statuses) and all(s == "approved" for s in statuses)


def progress(subtasks: Iterable) -> dict:
    """Subtask completion ratios for a task.

    Returns:
        {"total", "approved", "completed", "approved_pct", "delivered_pct",
         "by_status"}; percentages are 0–100 floats, 0.0 with no subtasks.
    """
    counts = Counter(_statuses(subtasks))
    total = sum(counts.values())
    approved = counts.get("approved", 0)
    completed = counts.get("completed", 0)
    if total == 0:
        approved_pct = delivered_pct = 0.0
    else:
        approved_pct = round(approved / total * 100, 1)
        delivered_pct = round((approved + completed) / total * 100, 1)
    return {
        "total": total,
        "approved": approved,
        "completed": completed,
        "approved_pct": approved_pct,
        "delivered_pct": delivered_pct,
        "by_status": dict(counts),
    }


def task_overview(task) -> dict:
    """Aggregate + progress for a Task row, for API views."""
    subtasks = list(task.subtasks)
    return {
        "task_id": task.id,
        "status": task.status,
        "aggregate_status": aggregate_status(task.status, subtasks),
        "progress": progress(subtasks),
    }
