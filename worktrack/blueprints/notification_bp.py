"""
Notification Blueprint.

In-app records written by the lifecycle engine's NotificationDispatcher.
Clients poll these endpoints; there is no push channel.

Endpoints:
    GET    /api/v1/notifications?user_id=<uid>&unread_only=true
    GET    /api/v1/notifications/unread-count?user_id=<uid>
    PATCH  /api/v1/notifications/<id>/read
"""

import logging

from flask import Blueprint, jsonify, request

from worktrack.services.notification import NotificationService
from worktrack.utils.errors import E, api_error
from worktrack.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


def _recipient():
    user_id = request.args.get("user_id", type=int)
    if user_id is None:
        return None, api_error(E.VALIDATION_REQUIRED, "user_id is required", details={"user_id": "required"})
    return user_id, None


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List a user's notifications, newest first."""
    user_id, err = _recipient()
    if err:
        return err
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = request.args.get("limit", 50, type=int)
    offset = request.args.get("offset", 0, type=int)

    items, total = NotificationService.list_for_recipient(
        user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def notification_unread_count():
    user_id, err = _recipient()
    if err:
        return err
    return jsonify({"unread_count": NotificationService.unread_count(user_id)})


@notification_bp.route("/notifications/<int:nid>/read", methods=["PATCH"])
def mark_notification_read(nid):
    notif = NotificationService.mark_read(nid)
    if not notif:
        return api_error(E.NOT_FOUND, "Notification not found")
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(notif.to_dict())
