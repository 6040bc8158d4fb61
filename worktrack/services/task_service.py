"""Task service layer: task/subtask creation, edits and parent sync.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().

Status is never written here: status changes go through lifecycle_service.

Operations:
- Task creation, optionally with inline subtasks
- Subtask creation under an existing task
- Non-status field edits
- Moving a subtask up/down a sequential chain
- Parent sync (assignees + estimated duration derived from subtasks)
"""
import logging
import math

from worktrack.core.exceptions import NotFoundError, ValidationError
from worktrack.models import db
from worktrack.models.project import Project
from worktrack.models.work_item import TASK_PRIORITIES, Subtask, Task
from worktrack.services import work_assignment_service
from worktrack.services.helpers.item_queries import get_user
from worktrack.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_COMMON_FIELDS = ("title", "description", "estimated_duration", "start_date", "deadline")
_TASK_FIELDS = _COMMON_FIELDS + ("priority", "is_sequential")
_SUBTASK_FIELDS = _COMMON_FIELDS + ("sequence_order",)


# ── Field validation ─────────────────────────────────────────────────────


def _required_title(value):
    title = (value or "").strip() if isinstance(value, str) else ""
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    return title


def _positive_minutes(value, field="estimated_duration"):
    """Whole positive minutes; fractional or non-finite numbers are rejected, not truncated."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer (minutes)", details={field: "invalid"})
    if isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            raise ValidationError(f"{field} must be a whole number of minutes", details={field: "not a whole number"})
        value = int(value)
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer (minutes)", details={field: "invalid"}) from None
    if minutes <= 0:
        raise ValidationError(f"{field} must be a positive integer (minutes)", details={field: "must be > 0"})
    return minutes


def _optional_order(value):
    if value is None or value == "":
        return None
    try:
        order = int(value)
    except (TypeError, ValueError):
        raise ValidationError("sequence_order must be an integer", details={"sequence_order": "invalid"}) from None
    if order < 1:
        raise ValidationError("sequence_order must be >= 1", details={"sequence_order": "must be >= 1"})
    return order


def _date(value, field):
    try:
        return parse_date_input(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={field: "invalid date"}) from None


def _priority(value):
    priority = value or "medium"
    if priority not in TASK_PRIORITIES:
        raise ValidationError(
            f"priority must be one of {', '.join(sorted(TASK_PRIORITIES))}",
            details={"priority": "invalid"},
        )
    return priority


def _user_ids(values) -> list[int]:
    if values is None:
        return []
    if not isinstance(values, list):
        raise ValidationError("assigned_users must be a list of user ids", details={"assigned_users": "invalid"})
    ids = []
    for uid in values:
        user = get_user(uid)
        if user.id not in ids:
            ids.append(user.id)
    return ids


def _subtask_kwargs(data: dict, position: int, sequential: bool) -> dict:
    if data.get("assigned_to") is None:
        raise ValidationError("A subtask is assigned to exactly one user", details={"assigned_to": "required"})
    order = _optional_order(data.get("sequence_order"))
    if order is None and sequential:
        order = position
    return {
        "title": _required_title(data.get("title")),
        "description": data.get("description", ""),
        "estimated_duration": _positive_minutes(data.get("estimated_duration")),
        "start_date": _date(data.get("start_date"), "start_date"),
        "deadline": _date(data.get("deadline"), "deadline"),
        "sequence_order": order,
        "assigned_to": get_user(data["assigned_to"]).id,
    }


# ── Create ───────────────────────────────────────────────────────────────


def create_task(data, *, created_by=None):
    """Create a task, optionally with inline ``subtasks``.

    A task split into subtasks takes its assignees and estimated duration
    from them; for a sequential task, subtasks without ``sequence_order``
    get their 1-based position.

    Returns:
        Task instance (already flushed).
    """
    title = _required_title(data.get("title"))
    is_sequential = bool(data.get("is_sequential", False))
    subtasks_data = data.get("subtasks") or []

    project_id = data.get("project_id")
    if project_id is not None and db.session.get(Project, project_id) is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    if subtasks_data and data.get("assigned_users"):
        raise ValidationError(
            "A task split into subtasks takes its assignees from the subtasks",
            details={"assigned_users": "not allowed with subtasks"},
        )

    subtask_kwargs = [
        _subtask_kwargs(sd, index + 1, is_sequential) for index, sd in enumerate(subtasks_data)
    ]
    if subtask_kwargs:
        estimated = sum(kw["estimated_duration"] for kw in subtask_kwargs)
    else:
        estimated = _positive_minutes(data.get("estimated_duration"))

    task = Task(
        project_id=project_id,
        title=title,
        description=data.get("description", ""),
        estimated_duration=estimated,
        priority=_priority(data.get("priority")),
        is_sequential=is_sequential,
        assigned_users=_user_ids(data.get("assigned_users")),
        start_date=_date(data.get("start_date"), "start_date"),
        deadline=_date(data.get("deadline"), "deadline"),
        created_by=created_by,
    )
    db.session.add(task)
    for kw in subtask_kwargs:
        task.subtasks.append(Subtask(**kw))
    db.session.flush()

    if task.subtasks:
        sync_task_from_subtasks(task)

    logger.info("Task %s created with %d subtask(s)", task.id, len(task.subtasks),
                extra={"item_kind": "task", "item_id": task.id})
    return task


def create_subtask(task, data):
    """Add a subtask to ``task`` and re-sync the parent.

    Returns:
        Subtask instance (already flushed).
    """
    kwargs = _subtask_kwargs(data, 1, False)
    if kwargs["sequence_order"] is None and task.is_sequential:
        orders = [s.sequence_order for s in task.subtasks if s.sequence_order is not None]
        kwargs["sequence_order"] = (max(orders) + 1) if orders else 1

    subtask = Subtask(**kwargs)
    task.subtasks.append(subtask)
    db.session.flush()
    sync_task_from_subtasks(task)
    return subtask


# ── Update ───────────────────────────────────────────────────────────────


def update_item(item, data):
    """Apply non-status field edits to a task or subtask.

    Raises:
        ValidationError: ``status`` or assignee fields in the payload.
    """
    if "status" in data:
        raise ValidationError(
            "Status changes go through the transition endpoint",
            details={"status": "read-only"},
        )
    for field in ("assigned_to", "assigned_users"):
        if field in data:
            raise ValidationError(
                "Assignee changes go through the reassign endpoint",
                details={field: "read-only"},
            )

    allowed = _TASK_FIELDS if item.kind == "task" else _SUBTASK_FIELDS
    for field in allowed:
        if field not in data:
            continue
        value = data[field]
        if field == "title":
            value = _required_title(value)
        elif field == "estimated_duration":
            if item.kind == "task" and item.subtasks:
                raise ValidationError(
                    "The duration of a task with subtasks is the sum of its subtasks",
                    details={"estimated_duration": "derived"},
                )
            value = _positive_minutes(value)
        elif field in ("start_date", "deadline"):
            value = _date(value, field)
        elif field == "priority":
            value = _priority(value)
        elif field == "is_sequential":
            value = bool(value)
        elif field == "sequence_order":
            value = _optional_order(value)
        setattr(item, field, value)

    db.session.flush()
    if item.kind == "subtask":
        sync_task_from_subtasks(item.task)
    return item


def move_subtask(subtask, direction):
    """Swap ``sequence_order`` with the previous (``up``) or next (``down``) sibling.

    Returns:
        The sibling swapped with, or None at either end of the chain.
    """
    if direction not in ("up", "down"):
        raise ValidationError("direction must be 'up' or 'down'", details={"direction": "invalid"})
    task = subtask.task
    if not task.is_sequential:
        raise ValidationError(
            f"Task {task.id} is not sequential; its subtasks have no order",
            details={"task_id": task.id},
        )

    ordered = sorted(task.subtasks, key=lambda s: ((s.sequence_order or 0), s.id))
    index = ordered.index(subtask)
    neighbour_index = index - 1 if direction == "up" else index + 1
    if neighbour_index < 0 or neighbour_index >= len(ordered):
        return None

    neighbour = ordered[neighbour_index]
    current_order = subtask.sequence_order or index + 1
    neighbour_order = neighbour.sequence_order or neighbour_index + 1
    subtask.sequence_order, neighbour.sequence_order = neighbour_order, current_order
    db.session.flush()
    return neighbour


# ── Parent sync ──────────────────────────────────────────────────────────


def sync_task_from_subtasks(task) -> dict:
    """Derive ``assigned_users`` and ``estimated_duration`` of a task from its subtasks.

    Task-level assignments of users who no longer own a subtask are removed
    (skipped where work was logged). No-op for a task without subtasks.
    """
    subtasks = list(task.subtasks)
    if not subtasks:
        return {"assigned_users": task.assignee_ids, "estimated_duration": task.estimated_duration,
                "cleanup": None}

    users = []
    for s in subtasks:
        if s.assigned_to is not None and s.assigned_to not in users:
            users.append(s.assigned_to)
    task.assigned_users = users
    task.estimated_duration = sum(s.estimated_duration for s in subtasks)
    db.session.flush()

    cleanup = work_assignment_service.cleanup_users_removed_from_task(task.id, users)
    return {"assigned_users": users, "estimated_duration": task.estimated_duration, "cleanup": cleanup}
