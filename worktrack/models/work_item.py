"""
Work Tracking Platform
Work item domain models.

Models:
    - Task: top-level work item; optionally sequential, optionally split into subtasks
    - Subtask: child of exactly one Task, assigned to exactly one user

Architecture chain: Project → Task → Subtask

A task that has subtasks never carries its own assignees: ``assigned_users``
is derived from the subtask assignees by ``task_service.sync_task_from_subtasks``
and its displayed status is the read-side aggregate of the subtask statuses.
"""

from datetime import datetime, timezone

from worktrack.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ITEM_STATUSES = (
    "pending",
    "assigned",
    "in_progress",
    "blocked",
    "completed",
    "in_review",
    "returned",
    "approved",
)
ITEM_KINDS = ("task", "subtask")
TASK_PRIORITIES = {"low", "medium", "high"}


class WorkItemMixin:
    """Columns shared by tasks and subtasks."""

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    estimated_duration = db.Column(db.Integer, nullable=False, comment="minutes, > 0")
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    start_date = db.Column(db.Date, nullable=True)
    deadline = db.Column(db.Date, nullable=True)

    # {"comment", "rating", "reviewer_id", "created_at"}, set on return / approval
    feedback = db.Column(db.JSON, nullable=True)
    # Tagged variant, see services/item_notes.py
    notes = db.Column(db.JSON, nullable=True)
    returned_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Bumped on every status write; conditional updates compare against it
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def _base_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "title": self.title,
            "description": self.description,
            "estimated_duration": self.estimated_duration,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "deadline": self.deadline.isoformat() if self.deadline else None,
            "feedback": self.feedback,
            "notes": self.notes,
            "returned_at": self.returned_at.isoformat() if self.returned_at else None,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Task(WorkItemMixin, db.Model):
    """
    A unit of work inside a project.

    Sequential tasks gate their subtasks by ``sequence_order`` level; see
    services/sequence_resolver.py.
    """

    __tablename__ = "tasks"
    kind = "task"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    priority = db.Column(db.String(10), nullable=False, default="medium")
    is_sequential = db.Column(db.Boolean, nullable=False, default=False)
    assigned_users = db.Column(db.JSON, nullable=False, default=list, comment="user ids; tasks without subtasks only")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    project = db.relationship("Project", lazy="joined")
    subtasks = db.relationship(
        "Subtask", back_populates="task", lazy="select",
        cascade="all, delete-orphan", order_by="Subtask.id",
    )

    @property
    def assignee_ids(self) -> list[int]:
        return list(self.assigned_users or [])

    @property
    def parent(self):
        return None

    def to_dict(self, include_subtasks=False):
        d = self._base_dict()
        d.update({
            "project_id": self.project_id,
            "priority": self.priority,
            "is_sequential": self.is_sequential,
            "assigned_users": self.assignee_ids,
            "created_by": self.created_by,
        })
        if include_subtasks:
            d["subtasks"] = [s.to_dict() for s in self.subtasks]
        return d

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"


class Subtask(WorkItemMixin, db.Model):
    """A child work item, assigned to exactly one user."""

    __tablename__ = "subtasks"
    kind = "subtask"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    sequence_order = db.Column(db.Integer, nullable=True, comment="level under a sequential parent")
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    task = db.relationship("Task", back_populates="subtasks")

    @property
    def assignee_ids(self) -> list[int]:
        return [self.assigned_to] if self.assigned_to is not None else []

    @property
    def parent(self):
        return self.task

    @property
    def project_id(self):
        return self.task.project_id if self.task else None

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "task_id": self.task_id,
            "sequence_order": self.sequence_order,
            "assigned_to": self.assigned_to,
        })
        return d

    def __repr__(self):
        return f"<Subtask {self.id}: {self.title[:40]} [{self.status}]>"


def model_for_kind(kind: str):
    """Return the model class for an item kind (``task`` | ``subtask``)."""
    if kind == "task":
        return Task
    if kind == "subtask":
        return Subtask
    raise ValueError(f"Unknown item kind: {kind}")
