"""
Tests for daily work assignments.

Covers:
    - Selection for today (upsert + status side channel)
    - Completion (outcome note, duration, time breakdown)
    - Work sessions
    - Guarded cleanup on reassignment / unblock / parent sync
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from worktrack.core.exceptions import (
    InvalidTransitionError,
    MissingRequiredFeedbackError,
    NotFoundError,
    ReferentialConflictError,
    ValidationError,
)
from worktrack.models import db
from worktrack.models.work_assignment import WorkAssignment, WorkSession
from worktrack.services import history_recorder
from worktrack.services import work_assignment_service as was

DAY = date(2026, 3, 2)


def _assign(user, item, on_date=DAY):
    result = was.assign_for_today(user.id, [{"kind": item.kind, "id": item.id}], on_date)
    db.session.commit()
    return result["assignments"][0]


def _log(assignment, minutes=45):
    start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    was.log_work_session(assignment.id, start, start + timedelta(minutes=minutes))
    db.session.commit()


class TestToMinutes:
    @pytest.mark.parametrize("value,unit,expected", [
        (90, "minutes", 90),
        ("45", "minutes", 45),
        (1.5, "hours", 90),
        ("2", "hours", 120),
    ])
    def test_conversion(self, value, unit, expected):
        assert was.to_minutes(value, unit) == expected

    @pytest.mark.parametrize("value,unit", [
        (0, "minutes"), (-5, "minutes"), ("abc", "minutes"), (None, "minutes"),
        (0.001, "hours"), (10, "days"),
        ("nan", "minutes"), (float("inf"), "minutes"), (float("nan"), "hours"), ("-inf", "hours"),
    ])
    def test_rejected(self, value, unit):
        with pytest.raises(ValidationError):
            was.to_minutes(value, unit)


class TestAssignForToday:
    def test_task_moves_to_assigned(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])

        assignment = _assign(u, task)

        assert assignment.status == "assigned"
        assert assignment.estimated_duration == 60
        assert db.session.get(type(task), task.id).status == "assigned"
        assert [(e.previous_status, e.new_status) for e in history_recorder.list_history("task", task.id)] == [
            ("pending", "assigned"),
        ]

    def test_subtask_and_parent_move_to_in_progress(self, make_user, make_task, make_subtask):
        u = make_user()
        task = make_task()
        sub = make_subtask(task, assigned_to=u)

        result = was.assign_for_today(u.id, [{"kind": "subtask", "id": sub.id}], DAY)
        db.session.commit()

        changes = {(c["item_kind"], c["to"]) for c in result["status_changes"]}
        assert changes == {("subtask", "in_progress"), ("task", "in_progress")}
        assert sub.status == "in_progress"
        assert task.status == "in_progress"

    def test_reselect_same_day_upserts(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        first = _assign(u, task)
        second = _assign(u, task)

        assert first.id == second.id
        assert WorkAssignment.query.count() == 1
        # already assigned: no second history row
        assert len(history_recorder.list_history("task", task.id)) == 1

    def test_next_day_creates_new_row(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        _assign(u, task, DAY)
        _assign(u, task, DAY + timedelta(days=1))
        assert WorkAssignment.query.count() == 2

    def test_non_assignee_rejected(self, make_user, make_task):
        owner, other = make_user(), make_user()
        task = make_task(assigned_users=[owner])
        with pytest.raises(ValidationError):
            was.assign_for_today(other.id, [{"kind": "task", "id": task.id}], DAY)

    def test_task_with_subtasks_rejected(self, make_user, make_task, make_subtask):
        u = make_user()
        task = make_task(assigned_users=[u])
        make_subtask(task, assigned_to=u)
        with pytest.raises(ValidationError):
            was.assign_for_today(u.id, [{"kind": "task", "id": task.id}], DAY)

    @pytest.mark.parametrize("status", ["blocked", "completed", "in_review", "approved"])
    def test_unworkable_status_rejected(self, make_user, make_task, status):
        u = make_user()
        task = make_task(status, assigned_users=[u])
        with pytest.raises(ValidationError):
            was.assign_for_today(u.id, [{"kind": "task", "id": task.id}], DAY)

    @pytest.mark.parametrize("selection", [5, "task", None, {"kind": "task", "id": "7"}, {"kind": "task", "id": True}])
    def test_malformed_selection_rejected(self, make_user, selection):
        with pytest.raises(ValidationError):
            was.assign_for_today(make_user().id, [selection], DAY)

    def test_empty_selection_rejected(self, make_user):
        with pytest.raises(MissingRequiredFeedbackError):
            was.assign_for_today(make_user().id, [], DAY)

    def test_unknown_item(self, make_user):
        with pytest.raises(NotFoundError):
            was.assign_for_today(make_user().id, [{"kind": "task", "id": 9999}], DAY)


class TestCompleteAssignment:
    def test_first_completion_records_initial(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        assignment = _assign(u, task)

        result = was.complete_assignment(assignment.id, "Reconciled", 1.5, "hours")
        db.session.commit()

        assert result["is_rework"] is False
        assert result["previous_status"] == "assigned"
        assert assignment.status == "completed"
        assert assignment.actual_duration == 90
        assert assignment.notes["initial"] == 90
        assert assignment.notes["rework"] == []
        assert task.status == "completed"
        assert task.notes["type"] == "delivery_comment"
        assert task.notes["comment"] == "Reconciled"

        last = history_recorder.list_history("task", task.id)[-1]
        assert last.new_status == "completed"
        assert last.changed_by == u.id
        assert last.meta == {"outcome_note": "Reconciled", "duration": 90, "rework": False}

    @pytest.mark.parametrize("note", ["", "   ", None])
    def test_outcome_note_required(self, make_user, make_task, note):
        u = make_user()
        assignment = _assign(u, make_task(assigned_users=[u]))
        with pytest.raises(MissingRequiredFeedbackError):
            was.complete_assignment(assignment.id, note, 30)

    def test_duration_must_be_positive(self, make_user, make_task):
        u = make_user()
        assignment = _assign(u, make_task(assigned_users=[u]))
        with pytest.raises(ValidationError):
            was.complete_assignment(assignment.id, "done", 0)

    def test_already_completed_item_rejected(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        assignment = _assign(u, task)
        was.complete_assignment(assignment.id, "done", 30)
        db.session.commit()

        with pytest.raises(InvalidTransitionError):
            was.complete_assignment(assignment.id, "again", 30)

    def test_missing_assignment(self):
        with pytest.raises(NotFoundError):
            was.complete_assignment(4242, "done", 30)


class TestWorkSessions:
    def test_log_session(self, make_user, make_task):
        u = make_user()
        assignment = _assign(u, make_task(assigned_users=[u]))
        _log(assignment, 45)

        sessions = WorkSession.query.filter_by(assignment_id=assignment.id).all()
        assert len(sessions) == 1
        assert sessions[0].duration_minutes == 45
        assert assignment.start_time is not None
        assert was.has_logged_work(assignment) is True

    def test_end_before_start_rejected(self, make_user, make_task):
        u = make_user()
        assignment = _assign(u, make_task(assigned_users=[u]))
        start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            was.log_work_session(assignment.id, start, start)

    def test_unknown_session_type_rejected(self, make_user, make_task):
        u = make_user()
        assignment = _assign(u, make_task(assigned_users=[u]))
        start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
        with pytest.raises(ValidationError):
            was.log_work_session(assignment.id, start, start + timedelta(hours=1), session_type="nap")


class TestGuardedCleanup:
    def test_delete_guard_raises_with_sessions(self, make_user, make_task):
        u = make_user()
        assignment = _assign(u, make_task(assigned_users=[u]))
        _log(assignment)
        with pytest.raises(ReferentialConflictError) as exc_info:
            was.delete_assignment_guarded(assignment)
        assert exc_info.value.session_count == 1

    def test_reassign_cleanup_deletes_unworked_assignment(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        assignment = _assign(u, task)
        assignment_id = assignment.id

        result = was.cleanup_on_reassign("task", task.id, u.id)
        db.session.commit()

        assert result == {"deleted": [assignment_id], "skipped": []}
        assert db.session.get(WorkAssignment, assignment_id) is None

    def test_reassign_cleanup_skips_logged_work(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        assignment = _assign(u, task)
        _log(assignment)

        result = was.cleanup_on_reassign("task", task.id, u.id)
        db.session.commit()

        assert result == {"deleted": [], "skipped": [assignment.id]}
        assert db.session.get(WorkAssignment, assignment.id) is not None

    def test_reassign_cleanup_only_touches_previous_user(self, make_user, make_task):
        u1, u2 = make_user(), make_user()
        task = make_task(assigned_users=[u1, u2])
        _assign(u1, task)
        keep = _assign(u2, task)

        was.cleanup_on_reassign("task", task.id, u1.id)
        db.session.commit()

        assert [a.id for a in WorkAssignment.query.all()] == [keep.id]

    def test_unblock_cleanup_mixed(self, make_user, make_task):
        u1, u2 = make_user(), make_user()
        task = make_task(assigned_users=[u1, u2])
        a1 = _assign(u1, task)
        a2 = _assign(u2, task)
        _log(a2)
        a1_id, a2_id = a1.id, a2.id

        result = was.cleanup_on_unblock("task", task.id)
        db.session.commit()

        assert result == {"deleted": [a1_id], "skipped": [a2_id]}

    def test_cleanup_users_removed_from_task(self, make_user, make_task):
        u1, u2 = make_user(), make_user()
        task = make_task(assigned_users=[u1, u2])
        _assign(u1, task)
        keep = _assign(u2, task)

        result = was.cleanup_users_removed_from_task(task.id, [u2.id])
        db.session.commit()

        assert len(result["deleted"]) == 1
        assert [a.id for a in WorkAssignment.query.all()] == [keep.id]

    def test_purge_removes_sessions_too(self, make_user, make_task):
        u = make_user()
        task = make_task(assigned_users=[u])
        _log(_assign(u, task))

        assert was.purge_item_assignments("task", task.id) == 1
        db.session.commit()
        assert WorkAssignment.query.count() == 0
        assert WorkSession.query.count() == 0
