"""
Tests for the outbound notification port and the Telegram gateway.

Gateway tests use a mock ``requests.Session`` and a no-op sleep, so no
network access and no real backoff delays.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from worktrack.integrations.telegram_gateway import GatewayResult, TelegramGateway, telegram_gateway
from worktrack.models import db
from worktrack.models.notification import Notification
from worktrack.services.notification import (
    NotificationDispatcher,
    NotificationService,
    _delivery_executor,
    build_message,
    notification_dispatcher,
)


def _payload(**extra):
    payload = {
        "title": "Post accruals",
        "project_name": "Ledger Migration",
        "parent_title": "Month-end close",
        "entity_kind": "subtask",
        "entity_id": 7,
        "user_ids": [],
    }
    payload.update(extra)
    return payload


def _resp(status_code, text=""):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 300
    resp.text = text
    return resp


# ═════════════════════════════════════════════════════════════════════════════
# Message building
# ═════════════════════════════════════════════════════════════════════════════


class TestBuildMessage:
    def test_task_available_reason_text(self):
        title, message = build_message("task_available", _payload(reason="sequential_dependency_completed"))
        assert title == "Available: Post accruals (Month-end close)"
        assert "previous steps are approved" in message
        assert "Ledger Migration" in message

    def test_review_request(self):
        title, _ = build_message("user_review_request", _payload(parent_title=None))
        assert title == "In review: Post accruals"

    def test_admin_action_with_detail(self):
        title, message = build_message(
            "admin_action", _payload(action="blocked", actor_name="Dana", detail="Reason: no access"),
        )
        assert title == "Post accruals (Month-end close): blocked"
        assert message.startswith("Dana: blocked.")
        assert message.endswith("Reason: no access")


# ═════════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═════════════════════════════════════════════════════════════════════════════


class TestDispatcher:
    def test_one_record_per_distinct_recipient(self, make_user):
        u1, u2 = make_user(), make_user()
        records = notification_dispatcher.notify(
            "task_available", _payload(reason="unblocked", user_ids=[u1.id, None, u2.id, u1.id]),
        )
        assert sorted(r.recipient_id for r in records) == sorted([u1.id, u2.id])
        assert Notification.query.count() == 2
        assert all(r.delivered is False for r in Notification.query.all())

    def test_admin_action_goes_to_admins(self, make_user):
        a1 = make_user(is_admin=True)
        a2 = make_user(is_admin=True)
        make_user()
        records = notification_dispatcher.notify("admin_action", _payload(action="completed"))
        assert [r.recipient_id for r in records] == [a1.id, a2.id]

    def test_admin_action_without_admins_uses_admin_channel(self):
        records = notification_dispatcher.notify("admin_action", _payload(action="completed"))
        assert [r.recipient_id for r in records] == [None]

    def test_unknown_kind_is_swallowed(self):
        assert notification_dispatcher.notify("fireworks", _payload()) == []
        assert Notification.query.count() == 0

    def test_internal_failure_never_raises(self, make_user):
        u = make_user()
        with patch.object(NotificationDispatcher, "_recipients", side_effect=RuntimeError("db gone")):
            assert notification_dispatcher.notify("task_available", _payload(user_ids=[u.id])) == []

    def test_no_token_means_no_outbound_call(self, make_user):
        u = make_user(telegram_chat_id="555")
        with patch.object(telegram_gateway, "send_message") as send:
            notification_dispatcher.notify("task_available", _payload(user_ids=[u.id]))
        send.assert_not_called()

    def test_delivery_flags_record(self, app, make_user, monkeypatch):
        monkeypatch.setitem(app.config, "TELEGRAM_BOT_TOKEN", "123:abc")
        u = make_user(telegram_chat_id="555")
        quiet = make_user()

        with patch.object(telegram_gateway, "send_message",
                          return_value=GatewayResult(True, 200, None, 1, 5)) as send:
            notification_dispatcher.notify("task_available", _payload(reason="reassigned", user_ids=[u.id, quiet.id]))

        send.assert_called_once()
        token, chat_id, text = send.call_args.args
        assert (token, chat_id) == ("123:abc", "555")
        assert text.startswith("<b>Available: Post accruals")

        db.session.expire_all()
        delivered = {n.recipient_id: n.delivered for n in Notification.query.all()}
        assert delivered == {u.id: True, quiet.id: False}

    def test_async_delivery_goes_to_worker_pool(self, app, make_user, monkeypatch):
        monkeypatch.setitem(app.config, "TELEGRAM_BOT_TOKEN", "123:abc")
        monkeypatch.setitem(app.config, "NOTIFY_ASYNC", True)
        u = make_user(telegram_chat_id="555")
        pool = MagicMock()

        with patch("worktrack.services.notification._delivery_executor", return_value=pool) as factory:
            notification_dispatcher.notify("task_available", _payload(user_ids=[u.id]))

        factory.assert_called_once_with(app.config["NOTIFY_WORKERS"])
        pool.submit.assert_called_once()
        send_all, _, token, targets, _ = pool.submit.call_args.args
        assert send_all == notification_dispatcher._send_all
        assert token == "123:abc"
        assert targets == [(Notification.query.one().id, "555")]

    def test_worker_pool_is_shared(self):
        assert _delivery_executor(2) is _delivery_executor(8)

    def test_failed_delivery_keeps_record(self, app, make_user, monkeypatch):
        monkeypatch.setitem(app.config, "TELEGRAM_BOT_TOKEN", "123:abc")
        u = make_user(telegram_chat_id="555")

        with patch.object(telegram_gateway, "send_message",
                          return_value=GatewayResult(False, 502, "HTTP 502", 3, 40)):
            records = notification_dispatcher.notify("task_available", _payload(user_ids=[u.id]))

        assert len(records) == 1
        db.session.expire_all()
        assert Notification.query.one().delivered is False


# ═════════════════════════════════════════════════════════════════════════════
# In-app queries
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationService:
    def test_admin_sees_admin_channel(self, make_user):
        admin = make_user(is_admin=True)
        worker = make_user()
        db.session.add_all([
            Notification(recipient_id=None, kind="admin_action", title="channel"),
            Notification(recipient_id=worker.id, kind="task_available", title="mine"),
        ])
        db.session.commit()

        _, admin_total = NotificationService.list_for_recipient(admin.id)
        items, worker_total = NotificationService.list_for_recipient(worker.id)
        assert admin_total == 1
        assert worker_total == 1
        assert items[0].title == "mine"

    def test_unread_count_and_mark_read(self, make_user):
        u = make_user()
        n = Notification(recipient_id=u.id, kind="task_available", title="x")
        db.session.add_all([n, Notification(recipient_id=u.id, kind="task_available", title="y")])
        db.session.commit()

        assert NotificationService.unread_count(u.id) == 2
        NotificationService.mark_read(n.id)
        db.session.commit()
        assert NotificationService.unread_count(u.id) == 1
        assert NotificationService.mark_read(99999) is None


# ═════════════════════════════════════════════════════════════════════════════
# Telegram gateway
# ═════════════════════════════════════════════════════════════════════════════


class TestTelegramGateway:
    def _gateway(self, responses, sleeps):
        session = MagicMock()
        session.post.side_effect = responses
        return TelegramGateway(session, api_base="https://tg.test/", max_retries=3, sleep=sleeps.append), session

    def test_success_first_try(self):
        sleeps = []
        gw, session = self._gateway([_resp(200)], sleeps)

        result = gw.send_message("tok", "42", "<b>hi</b>")

        assert result.ok is True
        assert result.attempts == 1
        assert sleeps == []
        url = session.post.call_args.args[0]
        assert url == "https://tg.test/bottok/sendMessage"
        assert session.post.call_args.kwargs["json"] == {"chat_id": "42", "text": "<b>hi</b>", "parse_mode": "HTML"}

    def test_retries_server_errors_with_backoff(self):
        sleeps = []
        gw, _ = self._gateway([_resp(502, "bad gateway"), _resp(429, "slow down"), _resp(200)], sleeps)

        result = gw.send_message("tok", "42", "x")

        assert result.ok is True
        assert result.attempts == 3
        assert sleeps == [1, 2]

    def test_client_error_not_retried(self):
        sleeps = []
        gw, session = self._gateway([_resp(400, "chat not found")], sleeps)

        result = gw.send_message("tok", "42", "x")

        assert result.ok is False
        assert result.status_code == 400
        assert "chat not found" in result.error
        assert session.post.call_count == 1

    def test_network_failure_exhausts_retries(self):
        sleeps = []
        err = requests.ConnectionError("refused")
        gw, session = self._gateway([err, err, err], sleeps)

        result = gw.send_message("tok", "42", "x")

        assert result.ok is False
        assert result.status_code is None
        assert result.attempts == 3
        assert "ConnectionError" in result.error
        assert session.post.call_count == 3
        assert sleeps == [1, 2]

    @pytest.mark.parametrize("retries,expected", [(0, 1), (1, 1), (5, 5)])
    def test_max_retries_floor(self, retries, expected):
        assert TelegramGateway(MagicMock(), max_retries=retries).max_retries == expected

    def test_session_is_per_thread(self):
        gw = TelegramGateway()
        seen = []
        worker = threading.Thread(target=lambda: seen.append(gw.session))
        worker.start()
        worker.join()

        assert gw.session is gw.session
        assert seen[0] is not gw.session

    def test_injected_session_is_used_everywhere(self):
        session = MagicMock()
        gw = TelegramGateway(session)
        seen = []
        worker = threading.Thread(target=lambda: seen.append(gw.session))
        worker.start()
        worker.join()

        assert seen == [session]
        assert gw.session is session
