"""
Work Tracking Platform
Notification Service.

Two halves:

* ``NotificationService``: in-app notification queries and read tracking.
* ``NotificationDispatcher``: the outbound ``notify(kind, payload)`` used by
  the lifecycle engine. Fire-and-forget: it is called after the lifecycle
  change is committed, writes one in-app record per recipient, hands
  Telegram delivery to a bounded worker pool when a bot token is
  configured, and never raises.

Payload keys:
    title, project_name, user_ids, reason, parent_title,
    entity_kind, entity_id, actor_name, detail
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from html import escape

from flask import current_app

from worktrack.core.exceptions import CollaboratorFailure
from worktrack.integrations.telegram_gateway import telegram_gateway
from worktrack.models import db
from worktrack.models.notification import NOTIFICATION_KINDS, Notification
from worktrack.models.project import User

logger = logging.getLogger(__name__)

_executor = None
_executor_lock = threading.Lock()


def _delivery_executor(max_workers: int) -> ThreadPoolExecutor:
    """Return the process-wide delivery pool, created on first use."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="notify")
        return _executor


_REASON_TEXT = {
    "unblocked": "The item has been unblocked and is available to work on",
    "returned": "The item was returned and is available for corrections",
    "sequential_dependency_completed": "The previous steps are approved; you can start this item now",
    "reassigned": "The item has been assigned to you",
}


def _item_label(payload: dict) -> str:
    title = payload.get("title") or "Untitled"
    parent = payload.get("parent_title")
    return f"{title} ({parent})" if parent else title


def build_message(kind: str, payload: dict) -> tuple[str, str]:
    """Return ``(title, message)`` for an in-app record."""
    label = _item_label(payload)
    project = payload.get("project_name") or "No project"
    reason = payload.get("reason")
    detail = payload.get("detail")

    if kind == "task_available":
        title = f"Available: {label}"
        message = f"{_REASON_TEXT.get(reason, 'A new item is available')}. Project: {project}."
    elif kind == "user_review_request":
        title = f"In review: {label}"
        message = f"Your delivery is being reviewed. Project: {project}."
    else:
        actor = payload.get("actor_name") or "A user"
        action = payload.get("action") or reason or "updated"
        title = f"{label}: {action}"
        message = f"{actor}: {action}. Project: {project}."
    if detail:
        message += f" {detail}"
    return title, message


def _telegram_text(title: str, message: str) -> str:
    return f"<b>{escape(title)}</b>\n{escape(message)}"


class NotificationService:
    """Stateless service class for in-app notification queries."""

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """Notifications for a user, newest first. Admins also see the admin channel."""
        user = db.session.get(User, recipient_id) if recipient_id is not None else None
        q = Notification.query
        if user is not None and user.is_admin:
            q = q.filter((Notification.recipient_id == recipient_id) | (Notification.recipient_id.is_(None)))
        else:
            q = q.filter(Notification.recipient_id == recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        _, total = NotificationService.list_for_recipient(recipient_id, unread_only=True, limit=0)
        return total

    @staticmethod
    def mark_read(notification_id):
        """Flag a notification as read. Caller commits."""
        notif = db.session.get(Notification, notification_id)
        if notif:
            notif.mark_read()
        return notif


class NotificationDispatcher:
    """Outbound notification port of the lifecycle engine."""

    def notify(self, kind: str, payload: dict) -> list[Notification]:
        """Record and deliver a notification. Never raises.

        Returns the created in-app records (empty on failure).
        """
        try:
            return self._notify(kind, payload)
        except Exception:
            db.session.rollback()
            logger.warning("Notification '%s' failed; lifecycle change unaffected", kind,
                           exc_info=True,
                           extra={"notification_kind": kind,
                                  "item_kind": payload.get("entity_kind"),
                                  "item_id": payload.get("entity_id")})
            return []

    def _notify(self, kind: str, payload: dict) -> list[Notification]:
        if kind not in NOTIFICATION_KINDS:
            raise CollaboratorFailure(f"Unknown notification kind: {kind}")

        title, message = build_message(kind, payload)
        recipients = self._recipients(kind, payload)

        records = []
        for recipient_id in recipients:
            notif = Notification(
                recipient_id=recipient_id,
                kind=kind,
                reason=payload.get("reason"),
                title=title,
                message=message,
                entity_kind=payload.get("entity_kind") or "",
                entity_id=payload.get("entity_id"),
            )
            db.session.add(notif)
            records.append(notif)
        db.session.commit()

        logger.info("Notification '%s' recorded for %d recipient(s)", kind, len(records),
                    extra={"notification_kind": kind,
                           "item_kind": payload.get("entity_kind"),
                           "item_id": payload.get("entity_id")})
        self._deliver(kind, records, title, message)
        return records

    def _recipients(self, kind: str, payload: dict) -> list[int | None]:
        if kind == "admin_action":
            admins = [u.id for u in User.query.filter_by(is_admin=True).order_by(User.id).all()]
            return admins or [None]
        seen = []
        for uid in payload.get("user_ids") or []:
            if uid is not None and uid not in seen:
                seen.append(uid)
        return seen

    # ── Outbound delivery ─────────────────────────────────────────────────

    def _deliver(self, kind, records, title, message) -> None:
        token = current_app.config.get("TELEGRAM_BOT_TOKEN")
        if not token or not records:
            return

        targets = []
        for notif in records:
            chat_id = None
            if notif.recipient_id is not None:
                user = db.session.get(User, notif.recipient_id)
                chat_id = user.telegram_chat_id if user else None
            elif kind == "admin_action":
                chat_id = current_app.config.get("TELEGRAM_ADMIN_CHAT_ID")
            if chat_id:
                targets.append((notif.id, chat_id))
            else:
                logger.debug("Recipient %s has no Telegram chat id, skipping delivery", notif.recipient_id)
        if not targets:
            return

        text = _telegram_text(title, message)
        app = current_app._get_current_object()
        if app.config.get("NOTIFY_ASYNC", True):
            _delivery_executor(app.config.get("NOTIFY_WORKERS", 4)).submit(
                self._send_all, app, token, targets, text,
            )
        else:
            self._send_all(app, token, targets, text)

    def _send_all(self, app, token, targets, text) -> None:
        with app.app_context():
            delivered_ids = []
            for notif_id, chat_id in targets:
                result = telegram_gateway.send_message(token, chat_id, text)
                if result.ok:
                    delivered_ids.append(notif_id)
                else:
                    logger.error("Telegram delivery failed after %d attempt(s): %s",
                                 result.attempts, result.error)
            if not delivered_ids:
                return
            try:
                Notification.query.filter(Notification.id.in_(delivered_ids)).update(
                    {"delivered": True}, synchronize_session=False,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                logger.warning("Could not flag %d notification(s) as delivered", len(delivered_ids),
                               exc_info=True)


notification_dispatcher = NotificationDispatcher()
