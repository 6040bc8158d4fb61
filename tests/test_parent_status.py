"""Tests for the read-side parent status aggregate and progress ratios."""

import pytest

from worktrack.services.parent_status import (
    aggregate_status,
    all_subtasks_approved,
    progress,
    task_overview,
)


class TestAggregateWithSubtasks:
    @pytest.mark.parametrize("statuses", [
        ["approved"],
        ["approved", "approved", "approved"],
    ])
    def test_all_approved_is_completed(self, statuses):
        assert aggregate_status("in_progress", statuses) == "completed"

    @pytest.mark.parametrize("statuses", [
        ["in_review", "blocked"],
        ["returned", "in_review", "pending"],
        ["approved", "in_review"],
    ])
    def test_in_review_wins_over_blocked(self, statuses):
        assert aggregate_status("pending", statuses) == "in_review"

    @pytest.mark.parametrize("statuses", [
        ["blocked", "approved"],
        ["returned", "in_progress"],
        ["pending", "blocked"],
    ])
    def test_blocked_or_returned_is_blocked(self, statuses):
        assert aggregate_status("pending", statuses) == "blocked"

    @pytest.mark.parametrize("statuses", [
        ["in_progress", "pending"],
        ["completed", "pending"],
        ["approved", "pending"],
        ["approved", "approved", "pending"],
    ])
    def test_any_work_is_in_progress(self, statuses):
        assert aggregate_status("pending", statuses) == "in_progress"

    def test_all_pending_is_pending(self):
        assert aggregate_status("approved", ["pending", "pending"]) == "pending"

    def test_assigned_alone_is_pending(self):
        assert aggregate_status("pending", ["assigned", "pending"]) == "pending"

    def test_task_status_ignored_when_subtasks_exist(self):
        assert aggregate_status("blocked", ["pending"]) == "pending"

    def test_idempotent(self):
        statuses = ["approved", "in_review", "returned", "pending"]
        results = {aggregate_status("pending", statuses) for _ in range(5)}
        assert results == {"in_review"}


class TestAggregateWithoutSubtasks:
    @pytest.mark.parametrize("own,expected", [
        ("approved", "completed"),
        ("in_review", "in_review"),
        ("completed", "in_review"),
        ("blocked", "blocked"),
        ("returned", "blocked"),
        ("assigned", "in_progress"),
        ("in_progress", "pending"),
        ("pending", "pending"),
    ])
    def test_direct_mapping(self, own, expected):
        assert aggregate_status(own, []) == expected


class TestProgress:
    def test_ratios(self):
        p = progress(["approved", "completed", "pending", "in_review"])
        assert p["total"] == 4
        assert p["approved_pct"] == 25.0
        assert p["delivered_pct"] == 50.0
        assert p["by_status"]["pending"] == 1

    def test_empty(self):
        p = progress([])
        assert p["total"] == 0
        assert p["approved_pct"] == 0.0
        assert p["delivered_pct"] == 0.0

    def test_all_subtasks_approved(self):
        assert all_subtasks_approved(["approved", "approved"]) is True
        assert all_subtasks_approved(["approved", "completed"]) is False
        assert all_subtasks_approved([]) is False


class TestOverview:
    def test_overview_from_rows(self, make_user, make_task, make_subtask):
        u = make_user()
        task = make_task()
        make_subtask(task, "approved", assigned_to=u)
        make_subtask(task, "returned", assigned_to=u)

        view = task_overview(task)
        assert view["task_id"] == task.id
        assert view["status"] == "pending"
        assert view["aggregate_status"] == "blocked"
        assert view["progress"]["approved"] == 1
