"""
Task / Subtask Blueprint.

Endpoints summary:
    TASK      /api/v1/tasks                                GET, POST
              /api/v1/tasks/<id>                           GET, PUT, DELETE
              /api/v1/tasks/<id>/subtasks                  POST

    SUBTASK   /api/v1/subtasks/<id>                        GET, PUT, DELETE
              /api/v1/subtasks/<id>/move                   POST  { "direction": "up|down" }

    LIFECYCLE /api/v1/<tasks|subtasks>/<id>/transition     POST  { "status", "comment", "rating", "version" }
              /api/v1/<tasks|subtasks>/<id>/transitions    GET   (targets reachable from current status)
              /api/v1/<tasks|subtasks>/<id>/block          POST  { "reason", "version" }
              /api/v1/<tasks|subtasks>/<id>/reassign       POST  { "user_id", "previous_user_id" }
              /api/v1/<tasks|subtasks>/<id>/history        GET

The acting user comes from ``actor_id`` in the body or the ``X-User-Id``
header.

Layer contract:
    - Blueprint: parse + validate input, call service, return JSON response.
    - Lifecycle writes are committed by lifecycle_service; field edits by
      task_service are committed here.
    - Service exceptions are mapped to JSON by the app-level error handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from worktrack.blueprints import actor_id_from, optional_int, paginate_query
from worktrack.models.work_item import ITEM_STATUSES, Subtask, Task
from worktrack.services import history_recorder, lifecycle_service, task_service
from worktrack.services.helpers.item_queries import get_item
from worktrack.services.item_notes import decode_item_notes
from worktrack.services.parent_status import task_overview
from worktrack.services.sequence_resolver import sequence_overview
from worktrack.services.status_rules import available_transitions
from worktrack.utils.errors import E, api_error
from worktrack.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1")

_COLLECTIONS = "any(tasks, subtasks)"


# ── Helpers ──────────────────────────────────────────────────────────────────


def _kind(collection):
    return "task" if collection == "tasks" else "subtask"


def _note_view(item):
    note = decode_item_notes(item.status, item.notes)
    if note is None:
        return None
    return note.to_json()


def _task_detail(task):
    d = task.to_dict(include_subtasks=True)
    d["overview"] = task_overview(task)
    d["sequence"] = sequence_overview(task)
    d["note"] = _note_view(task)
    d["available_transitions"] = available_transitions(task.status)
    return d


def _subtask_detail(subtask):
    d = subtask.to_dict()
    d["note"] = _note_view(subtask)
    d["available_transitions"] = available_transitions(subtask.status)
    d["parent"] = task_overview(subtask.task)
    return d


# ═══════════════════════════════════════════════════════════════════════════
#  TASK CRUD
# ═══════════════════════════════════════════════════════════════════════════


@task_bp.route("/tasks", methods=["GET"])
def list_tasks():
    q = Task.query

    project_id = request.args.get("project_id", type=int)
    if project_id:
        q = q.filter_by(project_id=project_id)
    status = request.args.get("status")
    if status:
        if status not in ITEM_STATUSES:
            return api_error(E.VALIDATION_INVALID, f"Unknown status: {status}",
                             details={"status": f"must be one of {', '.join(ITEM_STATUSES)}"})
        q = q.filter_by(status=status)

    tasks, total = paginate_query(q.order_by(Task.id))
    items = []
    for t in tasks:
        d = t.to_dict()
        d["overview"] = task_overview(t)
        items.append(d)
    return jsonify({"items": items, "total": total})


@task_bp.route("/tasks", methods=["POST"])
def create_task():
    data = request.get_json(silent=True) or {}
    actor_id, err = actor_id_from(data)
    if err:
        return err

    task = task_service.create_task(data, created_by=actor_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_task_detail(task)), 201


@task_bp.route("/tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    task, err = get_or_404(Task, task_id)
    if err:
        return err
    return jsonify(_task_detail(task))


@task_bp.route("/tasks/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    task, err = get_or_404(Task, task_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}

    task_service.update_item(task, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_task_detail(task))


@task_bp.route("/tasks/<int:task_id>", methods=["DELETE"])
def delete_task(task_id):
    result = lifecycle_service.delete_item("task", task_id)
    return jsonify(result)


@task_bp.route("/tasks/<int:task_id>/subtasks", methods=["POST"])
def create_subtask(task_id):
    task, err = get_or_404(Task, task_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}

    subtask = task_service.create_subtask(task, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_subtask_detail(subtask)), 201


# ═══════════════════════════════════════════════════════════════════════════
#  SUBTASK CRUD
# ═══════════════════════════════════════════════════════════════════════════


@task_bp.route("/subtasks/<int:subtask_id>", methods=["GET"])
def get_subtask(subtask_id):
    subtask, err = get_or_404(Subtask, subtask_id)
    if err:
        return err
    return jsonify(_subtask_detail(subtask))


@task_bp.route("/subtasks/<int:subtask_id>", methods=["PUT"])
def update_subtask(subtask_id):
    subtask, err = get_or_404(Subtask, subtask_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}

    task_service.update_item(subtask, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_subtask_detail(subtask))


@task_bp.route("/subtasks/<int:subtask_id>", methods=["DELETE"])
def delete_subtask(subtask_id):
    result = lifecycle_service.delete_item("subtask", subtask_id)
    return jsonify(result)


@task_bp.route("/subtasks/<int:subtask_id>/move", methods=["POST"])
def move_subtask(subtask_id):
    subtask, err = get_or_404(Subtask, subtask_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}

    swapped = task_service.move_subtask(subtask, data.get("direction"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "moved": swapped is not None,
        "subtask": subtask.to_dict(),
        "swapped_with": swapped.to_dict() if swapped is not None else None,
    })


# ═══════════════════════════════════════════════════════════════════════════
#  LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════


@task_bp.route(f"/<{_COLLECTIONS}:collection>/<int:item_id>/transition", methods=["POST"])
def transition(collection, item_id):
    data = request.get_json(silent=True) or {}

    status = data.get("status")
    if not status:
        return api_error(E.VALIDATION_REQUIRED, "status is required", details={"status": "required"})
    # Unknown values never reach the state machine
    if status not in ITEM_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"Unknown status: {status}",
                         details={"status": f"must be one of {', '.join(ITEM_STATUSES)}"})

    actor_id, err = actor_id_from(data)
    if err:
        return err
    version, err = optional_int(data, "version")
    if err:
        return err

    result = lifecycle_service.transition_item(
        _kind(collection), item_id, status,
        actor_id=actor_id,
        comment=data.get("comment"),
        rating=data.get("rating"),
        expected_version=version,
    )
    return jsonify(result)


@task_bp.route(f"/<{_COLLECTIONS}:collection>/<int:item_id>/transitions", methods=["GET"])
def list_transitions(collection, item_id):
    item = get_item(_kind(collection), item_id)
    return jsonify({
        "item_kind": item.kind,
        "item_id": item.id,
        "status": item.status,
        "available_transitions": available_transitions(item.status),
    })


@task_bp.route(f"/<{_COLLECTIONS}:collection>/<int:item_id>/block", methods=["POST"])
def block(collection, item_id):
    data = request.get_json(silent=True) or {}
    actor_id, err = actor_id_from(data)
    if err:
        return err
    version, err = optional_int(data, "version")
    if err:
        return err

    result = lifecycle_service.block_item(
        _kind(collection), item_id,
        actor_id=actor_id, reason=data.get("reason"), expected_version=version,
    )
    return jsonify(result)


@task_bp.route(f"/<{_COLLECTIONS}:collection>/<int:item_id>/reassign", methods=["POST"])
def reassign(collection, item_id):
    data = request.get_json(silent=True) or {}
    actor_id, err = actor_id_from(data)
    if err:
        return err
    new_user_id, err = optional_int(data, "user_id")
    if err:
        return err
    previous_user_id, err = optional_int(data, "previous_user_id")
    if err:
        return err

    result = lifecycle_service.reassign_item(
        _kind(collection), item_id, new_user_id,
        actor_id=actor_id, previous_user_id=previous_user_id,
    )
    return jsonify(result)


@task_bp.route(f"/<{_COLLECTIONS}:collection>/<int:item_id>/history", methods=["GET"])
def history(collection, item_id):
    item = get_item(_kind(collection), item_id)
    entries = history_recorder.list_history(item.kind, item.id)
    return jsonify({
        "item_kind": item.kind,
        "item_id": item.id,
        "items": [e.to_dict() for e in entries],
        "total": len(entries),
    })
