"""
Daily Work Blueprint.

Endpoints:
    GET    /api/v1/users/<uid>/assignments?date=YYYY-MM-DD
           Returns: the user's assignments for the day (default today).

    POST   /api/v1/users/<uid>/assignments
           Body: { "items": [{"kind": "task|subtask", "id": <int>}], "date": "YYYY-MM-DD" }
           Returns: 201 with the upserted assignments and the item status changes.

    POST   /api/v1/assignments/<id>/complete
           Body: { "outcome_note": "...", "duration": <number>, "unit": "minutes|hours" }
           Returns: 200 with the assignment, the delivered item and its time breakdown.

    GET    /api/v1/assignments/<id>/sessions
    POST   /api/v1/assignments/<id>/sessions
           Body: { "start_time": ISO, "end_time": ISO, "session_type": "work|rework|meeting|review",
                   "notes": "..." }
"""

import logging

from flask import Blueprint, jsonify, request

from worktrack.blueprints import actor_id_from
from worktrack.models.work_assignment import WorkSession
from worktrack.services import lifecycle_service, work_assignment_service
from worktrack.services.helpers.item_queries import get_user
from worktrack.utils.errors import E, api_error
from worktrack.utils.helpers import db_commit_or_error, parse_date_input, parse_datetime_input

logger = logging.getLogger(__name__)

work_bp = Blueprint("work", __name__, url_prefix="/api/v1")


@work_bp.route("/users/<int:user_id>/assignments", methods=["GET"])
def list_assignments(user_id):
    get_user(user_id)
    try:
        on_date = parse_date_input(request.args.get("date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details={"date": "invalid"})

    assignments = work_assignment_service.list_assignments_for_day(user_id, on_date)
    return jsonify({"items": [a.to_dict() for a in assignments], "total": len(assignments)})


@work_bp.route("/users/<int:user_id>/assignments", methods=["POST"])
def select_work(user_id):
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list) or not items:
        return api_error(E.VALIDATION_REQUIRED, "items is required",
                         details={"items": "list of {kind, id}"})
    try:
        on_date = parse_date_input(data.get("date"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details={"date": "invalid"})

    result = lifecycle_service.start_work(user_id, items, on_date)
    return jsonify(result), 201


@work_bp.route("/assignments/<int:assignment_id>/complete", methods=["POST"])
def complete(assignment_id):
    data = request.get_json(silent=True) or {}
    actor_id, err = actor_id_from(data)
    if err:
        return err

    result = lifecycle_service.complete_work(
        assignment_id,
        data.get("outcome_note"),
        data.get("duration"),
        data.get("unit") or "minutes",
        actor_id=actor_id,
    )
    return jsonify(result)


@work_bp.route("/assignments/<int:assignment_id>/sessions", methods=["GET"])
def list_sessions(assignment_id):
    assignment = work_assignment_service.get_assignment(assignment_id)
    sessions = assignment.sessions.order_by(WorkSession.start_time).all()
    return jsonify({"items": [s.to_dict() for s in sessions], "total": len(sessions)})


@work_bp.route("/assignments/<int:assignment_id>/sessions", methods=["POST"])
def log_session(assignment_id):
    data = request.get_json(silent=True) or {}
    try:
        start_time = parse_datetime_input(data.get("start_time"))
        end_time = parse_datetime_input(data.get("end_time"))
    except ValueError as exc:
        return api_error(E.VALIDATION_INVALID, str(exc), details={"start_time/end_time": "invalid"})

    session = work_assignment_service.log_work_session(
        assignment_id, start_time, end_time,
        session_type=data.get("session_type") or "work",
        notes=data.get("notes", ""),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(session.to_dict()), 201
