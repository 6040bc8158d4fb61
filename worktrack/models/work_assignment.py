"""
Work Tracking Platform
Daily work assignment models.

Models:
    - WorkAssignment: one row per (user, day, item kind, item id); effort tracking
    - WorkSession: logged work under an assignment; its presence protects the
      assignment from reassignment / unblock cleanup
"""

from datetime import datetime, timezone

from worktrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ASSIGNMENT_STATUSES = {"pending", "assigned", "completed"}
SESSION_TYPES = {"work", "rework", "meeting", "review"}


class WorkAssignment(db.Model):
    """
    Ties a user to a task/subtask they chose to work on for a given day.

    ``notes`` holds the TimeBreakdown record (``initial`` + ``rework`` list)
    once the assignment has been completed at least once.
    """

    __tablename__ = "work_assignments"
    __table_args__ = (
        db.UniqueConstraint(
            "user_id", "date", "item_kind", "item_id",
            name="uq_work_assignment_user_day_item",
        ),
        db.Index("idx_work_assignment_item", "item_kind", "item_id"),
        db.Index("idx_work_assignment_user_day", "user_id", "date"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    item_kind = db.Column(db.String(10), nullable=False, comment="task | subtask")
    item_id = db.Column(db.Integer, nullable=False)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    estimated_duration = db.Column(db.Integer, nullable=False, comment="minutes")
    actual_duration = db.Column(db.Integer, nullable=True, comment="minutes, total incl. rework")
    start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    sessions = db.relationship("WorkSession", back_populates="assignment", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date.isoformat() if self.date else None,
            "item_kind": self.item_kind,
            "item_id": self.item_id,
            "project_id": self.project_id,
            "status": self.status,
            "estimated_duration": self.estimated_duration,
            "actual_duration": self.actual_duration,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<WorkAssignment {self.id}: user={self.user_id} {self.item_kind}:{self.item_id} {self.date}>"


class WorkSession(db.Model):
    """A block of logged work time against an assignment."""

    __tablename__ = "work_sessions"

    id = db.Column(db.Integer, primary_key=True)
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("work_assignments.id"), nullable=False, index=True,
    )
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    session_type = db.Column(db.String(20), nullable=False, default="work")
    notes = db.Column(db.Text, default="")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    assignment = db.relationship("WorkAssignment", back_populates="sessions")

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_minutes": self.duration_minutes,
            "session_type": self.session_type,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<WorkSession {self.id}: assignment={self.assignment_id} {self.duration_minutes}min>"
