"""
Work Tracking Platform
Status history model.

Models:
    - StatusHistoryEntry: one row per recorded status change of a task or subtask.

Rows are normally append-only; see services/history_recorder.py for the two
cancellation transitions that delete the latest matching row instead.
"""

from datetime import datetime, timezone

from worktrack.models import db


class StatusHistoryEntry(db.Model):
    """
    A recorded status change.

    Exactly one of ``task_id`` / ``subtask_id`` is set. ``changed_by`` is
    NULL for system-triggered changes (parent auto-approval).
    """

    __tablename__ = "status_history"
    __table_args__ = (
        db.Index("idx_status_history_task", "task_id"),
        db.Index("idx_status_history_subtask", "subtask_id"),
        db.Index("idx_status_history_changed_at", "changed_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
    subtask_id = db.Column(db.Integer, db.ForeignKey("subtasks.id", ondelete="CASCADE"), nullable=True)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)
    changed_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    # Named ``meta`` because ``metadata`` is reserved on declarative models
    meta = db.Column("metadata", db.JSON, nullable=True)

    @property
    def item_kind(self) -> str:
        return "subtask" if self.subtask_id is not None else "task"

    def to_dict(self):
        return {
            "id": self.id,
            "item_kind": self.item_kind,
            "task_id": self.task_id,
            "subtask_id": self.subtask_id,
            "changed_by": self.changed_by,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "metadata": self.meta,
        }

    def __repr__(self):
        return f"<StatusHistoryEntry {self.id}: {self.previous_status}→{self.new_status}>"
