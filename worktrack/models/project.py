"""
Work Tracking Platform
Project & user domain models.

Models:
    - Project: container of tasks; its name travels in notification payloads
    - User: assignee / reviewer; carries the optional Telegram chat id
"""

from datetime import datetime, timezone

from worktrack.models import db


class Project(db.Model):
    """A client project grouping tasks."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    is_archived = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_archived": self.is_archived,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class User(db.Model):
    """Platform user. Admins receive ``admin_action`` notifications."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    is_admin = db.Column(db.Boolean, default=False)
    telegram_chat_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "is_admin": self.is_admin,
            "has_telegram": bool(self.telegram_chat_id),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
