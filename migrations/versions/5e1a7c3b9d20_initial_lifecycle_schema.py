"""initial_lifecycle_schema

Create projects, users, tasks, subtasks, work_assignments, work_sessions,
status_history and notifications.

Revision ID: 5e1a7c3b9d20
Revises:
Create Date: 2026-10-12 09:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "5e1a7c3b9d20"
down_revision = None
branch_labels = None
depends_on = None


def _work_item_columns():
    return [
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("estimated_duration", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("deadline", sa.Date(), nullable=True),
        sa.Column("feedback", sa.JSON(), nullable=True),
        sa.Column("notes", sa.JSON(), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_archived", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("is_admin", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("telegram_chat_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            *_work_item_columns(),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("is_sequential", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("assigned_users", sa.JSON(), nullable=False),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
        op.create_index("ix_tasks_status", "tasks", ["status"])

    if "subtasks" not in existing_tables:
        op.create_table(
            "subtasks",
            *_work_item_columns(),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("sequence_order", sa.Integer(), nullable=True),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_subtasks_task_id", "subtasks", ["task_id"])
        op.create_index("ix_subtasks_status", "subtasks", ["status"])
        op.create_index("ix_subtasks_assigned_to", "subtasks", ["assigned_to"])

    if "work_assignments" not in existing_tables:
        op.create_table(
            "work_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("date", sa.Date(), nullable=False),
            sa.Column("item_kind", sa.String(length=10), nullable=False),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("estimated_duration", sa.Integer(), nullable=False),
            sa.Column("actual_duration", sa.Integer(), nullable=True),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notes", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "date", "item_kind", "item_id",
                                name="uq_work_assignment_user_day_item"),
        )
        op.create_index("idx_work_assignment_item", "work_assignments", ["item_kind", "item_id"])
        op.create_index("idx_work_assignment_user_day", "work_assignments", ["user_id", "date"])
        op.create_index("ix_work_assignments_project_id", "work_assignments", ["project_id"])
        op.create_index("ix_work_assignments_status", "work_assignments", ["status"])

    if "work_sessions" not in existing_tables:
        op.create_table(
            "work_sessions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("assignment_id", sa.Integer(), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("duration_minutes", sa.Integer(), nullable=False),
            sa.Column("session_type", sa.String(length=20), nullable=False, server_default="work"),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            # No ON DELETE: logged work must block assignment deletion
            sa.ForeignKeyConstraint(["assignment_id"], ["work_assignments.id"]),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_work_sessions_assignment_id", "work_sessions", ["assignment_id"])

    if "status_history" not in existing_tables:
        op.create_table(
            "status_history",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=True),
            sa.Column("subtask_id", sa.Integer(), nullable=True),
            sa.Column("changed_by", sa.Integer(), nullable=True),
            sa.Column("previous_status", sa.String(length=20), nullable=True),
            sa.Column("new_status", sa.String(length=20), nullable=False),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["subtask_id"], ["subtasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["changed_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_status_history_task", "status_history", ["task_id"])
        op.create_index("idx_status_history_subtask", "status_history", ["subtask_id"])
        op.create_index("idx_status_history_changed_at", "status_history", ["changed_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_id", sa.Integer(), nullable=True),
            sa.Column("kind", sa.String(length=30), nullable=False),
            sa.Column("reason", sa.String(length=40), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("entity_kind", sa.String(length=10), nullable=True),
            sa.Column("entity_id", sa.Integer(), nullable=True),
            sa.Column("delivered", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("is_read", sa.Boolean(), nullable=True, server_default=sa.false()),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["recipient_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient_id", "notifications", ["recipient_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    for table in (
        "notifications",
        "status_history",
        "work_sessions",
        "work_assignments",
        "subtasks",
        "tasks",
        "users",
        "projects",
    ):
        if table in existing_tables:
            op.drop_table(table)
