"""
Sequential subtask chains.

Under a task with ``is_sequential = True``, subtasks are grouped by
``sequence_order`` into ordered levels. A level is cleared when every member
is ``approved``; the first uncleared level is the active one.

Gating is advisory: nothing here changes a status. When a level clears, the
pending members of the next level become unlock targets and their assignees
are notified (reason ``sequential_dependency_completed``). Subtasks without
a ``sequence_order`` belong to no level and never gate or get gated.
"""

from __future__ import annotations

from collections import defaultdict


def group_levels(subtasks) -> list[tuple[int, list]]:
    """Return ``[(sequence_order, members), ...]`` in ascending order."""
    levels: dict[int, list] = defaultdict(list)
    for s in subtasks:
        if s.sequence_order is not None:
            levels[s.sequence_order].append(s)
    return sorted(levels.items(), key=lambda kv: kv[0])


def level_cleared(members) -> bool:
    return bool(members) and all(m.status == "approved" for m in members)


def active_level(subtasks) -> tuple[int, list] | None:
    """First level that is not fully approved, or None when all are cleared."""
    for order, members in group_levels(subtasks):
        if not level_cleared(members):
            return order, members
    return None


def eligible_subtasks(subtasks) -> list:
    """Subtasks currently open for work under the sequential convention.

    Non-approved members of the active level, plus any unordered subtask
    that is not approved yet.
    """
    eligible = [s for s in subtasks if s.sequence_order is None and s.status != "approved"]
    level = active_level(subtasks)
    if level is not None:
        eligible.extend(m for m in level[1] if m.status != "approved")
    return sorted(eligible, key=lambda s: ((s.sequence_order or 0), s.id or 0))


def unlock_targets(subtask, siblings) -> list:
    """Subtasks to announce after ``subtask`` became approved.

    ``siblings`` is the full subtask set of the parent (``subtask`` included).
    Returns an empty list if the subtask's level is not cleared yet, there is
    no higher level, or the next level has no pending members.
    """
    order = subtask.sequence_order
    if order is None or subtask.status != "approved":
        return []

    levels = group_levels(siblings)
    current = next((members for o, members in levels if o == order), [])
    if not level_cleared(current):
        return []

    next_members = next((members for o, members in levels if o > order), None)
    if not next_members:
        return []
    return [m for m in next_members if m.status == "pending"]


def resolve_unlock(task, subtask) -> list:
    """Unlock targets for a just-approved subtask of ``task`` (sequential tasks only)."""
    if task is None or not task.is_sequential:
        return []
    return unlock_targets(subtask, list(task.subtasks))


def sequence_overview(task) -> dict | None:
    """Level breakdown for API views; None for non-sequential tasks."""
    if not task.is_sequential:
        return None
    subtasks = list(task.subtasks)
    level = active_level(subtasks)
    return {
        "levels": [
            {
                "sequence_order": order,
                "subtask_ids": [m.id for m in members],
                "cleared": level_cleared(members),
            }
            for order, members in group_levels(subtasks)
        ],
        "active_level": level[0] if level else None,
        "eligible_subtask_ids": [s.id for s in eligible_subtasks(subtasks)],
    }
