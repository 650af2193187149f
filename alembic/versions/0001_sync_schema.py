"""users, syncable records, sync queue and sync metadata

Revision ID: 0001_sync_schema
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_sync_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

icon_type = sa.Enum("emoji", "upload", "generate", name="icon_type")
sync_operation = sa.Enum("create", "update", "delete", name="sync_operation")
sync_status = sa.Enum("pending", "syncing", "synced", "failed", name="sync_status")
json_payload = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("login_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "activity",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("label", sa.Text(), nullable=False, server_default=""),
        sa.Column("emoji", sa.Text(), nullable=False, server_default=""),
        sa.Column("icon_type", icon_type, nullable=False, server_default=sa.text("'emoji'")),
        sa.Column("icon_url", sa.Text(), nullable=True),
        sa.Column("icon_thumbnail_url", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("quantity_unit", sa.Text(), nullable=False, server_default=""),
        sa.Column("order_index", sa.Text(), nullable=False, server_default=""),
        sa.Column("show_combined_stats", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_activity_user_id", "activity", ["user_id"])
    op.create_index("ix_activity_created_at", "activity", ["created_at"])

    op.create_table(
        "activity_kind",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("activity_id", sa.String(length=36), sa.ForeignKey("activity.id"), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("color", sa.String(length=32), nullable=True),
        sa.Column("order_index", sa.Text(), nullable=False, server_default=""),
        *_timestamps(),
    )
    op.create_index("ix_activity_kind_activity_id", "activity_kind", ["activity_id"])

    op.create_table(
        "activity_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("activity_id", sa.String(length=36), sa.ForeignKey("activity.id"), nullable=False),
        sa.Column("activity_kind_id", sa.String(length=36), sa.ForeignKey("activity_kind.id"), nullable=True),
        sa.Column("quantity", sa.Numeric(), nullable=True),
        sa.Column("memo", sa.Text(), nullable=False, server_default=""),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("done_hour", sa.Time(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_activity_log_user_id", "activity_log", ["user_id"])
    op.create_index("ix_activity_log_activity_id", "activity_log", ["activity_id"])
    op.create_index("ix_activity_log_activity_kind_id", "activity_log", ["activity_kind_id"])
    op.create_index("ix_activity_log_date", "activity_log", ["date"])

    op.create_table(
        "activity_goal",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("activity_id", sa.String(length=36), sa.ForeignKey("activity.id"), nullable=False),
        sa.Column("daily_target_quantity", sa.Numeric(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_activity_goal_user_id", "activity_goal", ["user_id"])
    op.create_index("ix_activity_goal_activity_id", "activity_goal", ["activity_id"])

    op.create_table(
        "task",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("done_date", sa.Date(), nullable=True),
        sa.Column("memo", sa.Text(), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_task_user_id", "task", ["user_id"])
    op.create_index("ix_task_created_at", "task", ["created_at"])

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("operation", sync_operation, nullable=False),
        sa.Column("payload", json_payload, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sync_queue_user_id", "sync_queue", ["user_id"])
    op.create_index("ix_sync_queue_user_id_sequence_number", "sync_queue", ["user_id", "sequence_number"])
    op.create_index("ix_sync_queue_timestamp", "sync_queue", ["timestamp"])
    op.create_index("ix_sync_queue_entity", "sync_queue", ["entity_type", "entity_id"])

    op.create_table(
        "sync_metadata",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("status", sync_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_sync_metadata_user_id", "sync_metadata", ["user_id"])
    op.create_index("ix_sync_metadata_entity", "sync_metadata", ["entity_type", "entity_id"])
    op.create_index("ix_sync_metadata_status", "sync_metadata", ["status"])


def downgrade() -> None:
    op.drop_table("sync_metadata")
    op.drop_table("sync_queue")
    op.drop_table("task")
    op.drop_table("activity_goal")
    op.drop_table("activity_log")
    op.drop_table("activity_kind")
    op.drop_table("activity")
    op.drop_table("users")
    sync_status.drop(op.get_bind(), checkfirst=True)
    sync_operation.drop(op.get_bind(), checkfirst=True)
    icon_type.drop(op.get_bind(), checkfirst=True)
