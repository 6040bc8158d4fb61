"""
Work Tracking Platform
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from worktrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_KINDS = {"task_available", "admin_action", "user_review_request"}
NOTIFICATION_REASONS = {"unblocked", "reassigned", "returned", "sequential_dependency_completed"}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``recipient_id`` NULL means the
    admin channel.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True,
    )
    kind = db.Column(db.String(30), nullable=False)
    reason = db.Column(db.String(40), nullable=True)
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    # Link to source item
    entity_kind = db.Column(db.String(10), default="", comment="task | subtask")
    entity_id = db.Column(db.Integer, nullable=True)

    delivered = db.Column(db.Boolean, default=False, comment="outbound channel accepted the message")
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "kind": self.kind,
            "reason": self.reason,
            "title": self.title,
            "message": self.message,
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "delivered": self.delivered,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
