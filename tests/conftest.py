"""
Shared pytest fixtures for the Work Tracking Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
    - make_user / make_task / make_subtask: ORM factories that bypass the
      API so tests can start items in any status
    - notify_spy / notified: record NotificationDispatcher.notify calls while
      still writing the in-app records

Factories commit: lifecycle operations commit and roll back on their own,
so fixture rows must already be durable.
"""

import itertools
from unittest.mock import patch

import pytest

from worktrack import create_app
from worktrack.models import db as _db
from worktrack.models.project import Project, User
from worktrack.models.work_item import Subtask, Task
from worktrack.services.notification import notification_dispatcher


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def project():
    p = Project(name="Ledger Migration", description="Year-end close")
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def make_user():
    counter = itertools.count(1)

    def _make(name=None, *, is_admin=False, telegram_chat_id=None):
        n = next(counter)
        user = User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            is_admin=is_admin,
            telegram_chat_id=telegram_chat_id,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_task(project):
    def _make(status="pending", *, assigned_users=None, is_sequential=False,
              estimated_duration=60, title="Reconcile bank accounts"):
        task = Task(
            project_id=project.id,
            title=title,
            estimated_duration=estimated_duration,
            status=status,
            is_sequential=is_sequential,
            assigned_users=[u.id for u in assigned_users or []],
        )
        _db.session.add(task)
        _db.session.commit()
        return task

    return _make


@pytest.fixture()
def make_subtask():
    def _make(task, status="pending", *, assigned_to=None, sequence_order=None,
              estimated_duration=30, title=None):
        subtask = Subtask(
            task_id=task.id,
            title=title or f"Step {sequence_order or 'x'}",
            estimated_duration=estimated_duration,
            status=status,
            sequence_order=sequence_order,
            assigned_to=assigned_to.id if assigned_to is not None else None,
        )
        _db.session.add(subtask)
        _db.session.commit()
        _db.session.expire(task, ["subtasks"])
        return subtask

    return _make


@pytest.fixture()
def notify_spy():
    """Spy on the dispatcher; calls still go through to the real notify."""
    with patch.object(notification_dispatcher, "notify", wraps=notification_dispatcher.notify) as spy:
        yield spy


@pytest.fixture()
def notified(notify_spy):
    """Return a filter over the ``(kind, payload)`` pairs seen by ``notify_spy``."""

    def _calls(kind=None, reason=None):
        calls = [(c.args[0], c.args[1]) for c in notify_spy.call_args_list]
        if kind is not None:
            calls = [(k, p) for k, p in calls if k == kind]
        if reason is not None:
            calls = [(k, p) for k, p in calls if p.get("reason") == reason]
        return calls

    return _calls
