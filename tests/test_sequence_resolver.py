"""
Sequential subtask chain tests.

Pure resolver functions are exercised with lightweight stand-ins; the
sequence overview uses real rows.
"""

from types import SimpleNamespace

import pytest

from worktrack.services.sequence_resolver import (
    active_level,
    eligible_subtasks,
    group_levels,
    resolve_unlock,
    sequence_overview,
    unlock_targets,
)


def _sub(sid, order, status="pending"):
    return SimpleNamespace(id=sid, sequence_order=order, status=status)


@pytest.fixture()
def chain():
    """Levels [1: {a, b}, 2: {c}, 4: {d}] plus an unordered e."""
    return {
        "a": _sub(1, 1),
        "b": _sub(2, 1),
        "c": _sub(3, 2),
        "d": _sub(4, 4),
        "e": _sub(5, None),
    }


class TestLevels:
    def test_grouping_skips_unordered(self, chain):
        levels = group_levels(chain.values())
        assert [order for order, _ in levels] == [1, 2, 4]
        assert {s.id for s in levels[0][1]} == {1, 2}

    def test_active_level_is_first_uncleared(self, chain):
        chain["a"].status = "approved"
        assert active_level(chain.values())[0] == 1
        chain["b"].status = "approved"
        assert active_level(chain.values())[0] == 2

    def test_no_active_level_when_all_cleared(self, chain):
        for s in chain.values():
            s.status = "approved"
        assert active_level(chain.values()) is None

    def test_eligible_is_active_level_plus_unordered(self, chain):
        chain["a"].status = "approved"
        assert [s.id for s in eligible_subtasks(chain.values())] == [5, 2]


class TestUnlock:
    def test_half_cleared_level_unlocks_nothing(self, chain):
        chain["a"].status = "approved"
        assert unlock_targets(chain["a"], chain.values()) == []

    def test_cleared_level_unlocks_next_pending(self, chain):
        chain["a"].status = "approved"
        chain["b"].status = "approved"
        targets = unlock_targets(chain["b"], chain.values())
        assert [t.id for t in targets] == [3]

    @pytest.mark.parametrize("status", ["in_progress", "completed", "blocked", "approved"])
    def test_next_level_not_pending_unlocks_nothing(self, chain, status):
        chain["a"].status = "approved"
        chain["b"].status = "approved"
        chain["c"].status = status
        assert unlock_targets(chain["b"], chain.values()) == []

    def test_gap_in_orders_skips_to_next_populated_level(self, chain):
        for key in ("a", "b", "c"):
            chain[key].status = "approved"
        targets = unlock_targets(chain["c"], chain.values())
        assert [t.id for t in targets] == [4]

    def test_last_level_unlocks_nothing(self, chain):
        for s in chain.values():
            s.status = "approved"
        assert unlock_targets(chain["d"], chain.values()) == []

    def test_unapproved_or_unordered_subtask_unlocks_nothing(self, chain):
        assert unlock_targets(chain["a"], chain.values()) == []
        chain["e"].status = "approved"
        assert unlock_targets(chain["e"], chain.values()) == []

    def test_resolver_never_changes_status(self, chain):
        chain["a"].status = "approved"
        chain["b"].status = "approved"
        unlock_targets(chain["b"], chain.values())
        assert chain["c"].status == "pending"

    def test_non_sequential_parent_unlocks_nothing(self, chain):
        chain["a"].status = "approved"
        chain["b"].status = "approved"
        parent = SimpleNamespace(is_sequential=False, subtasks=list(chain.values()))
        assert resolve_unlock(parent, chain["b"]) == []


class TestOverview:
    def test_sequence_overview(self, make_user, make_task, make_subtask):
        u = make_user()
        task = make_task(is_sequential=True)
        s1 = make_subtask(task, "approved", assigned_to=u, sequence_order=1)
        s2 = make_subtask(task, "in_review", assigned_to=u, sequence_order=1)
        s3 = make_subtask(task, "pending", assigned_to=u, sequence_order=2)

        view = sequence_overview(task)
        assert view["active_level"] == 1
        assert view["eligible_subtask_ids"] == [s2.id]
        assert view["levels"][0] == {"sequence_order": 1, "subtask_ids": [s1.id, s2.id], "cleared": False}
        assert view["levels"][1]["subtask_ids"] == [s3.id]

    def test_overview_none_for_plain_task(self, make_task):
        assert sequence_overview(make_task()) is None
