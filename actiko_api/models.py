from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from actiko_api.db.base import Base

JsonPayload = JSON().with_variant(JSONB(), "postgresql")


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    SYNCED = "synced"
    FAILED = "failed"


class IconType(str, Enum):
    EMOJI = "emoji"
    UPLOAD = "upload"
    GENERATE = "generate"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class SoftDeleteMixin:
    """Rows are never hard-deleted by sync; ``deleted_at`` marks a tombstone."""

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class User(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    login_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)


class Activity(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "activity"
    __table_args__ = (
        Index("ix_activity_user_id", "user_id"),
        Index("ix_activity_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    emoji: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    icon_type: Mapped[IconType] = mapped_column(
        SqlEnum(IconType, name="icon_type", values_callable=_enum_values),
        nullable=False,
        server_default=text("'emoji'"),
    )
    icon_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    icon_thumbnail_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    quantity_unit: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    order_index: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    show_combined_stats: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))


class ActivityKind(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "activity_kind"
    __table_args__ = (Index("ix_activity_kind_activity_id", "activity_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    activity_id: Mapped[str] = mapped_column(ForeignKey("activity.id"), nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    order_index: Mapped[str] = mapped_column(Text, nullable=False, server_default="")


class ActivityLog(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "activity_log"
    __table_args__ = (
        Index("ix_activity_log_user_id", "user_id"),
        Index("ix_activity_log_activity_id", "activity_id"),
        Index("ix_activity_log_activity_kind_id", "activity_kind_id"),
        Index("ix_activity_log_date", "date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    activity_id: Mapped[str] = mapped_column(ForeignKey("activity.id"), nullable=False)
    activity_kind_id: Mapped[str | None] = mapped_column(ForeignKey("activity_kind.id"), nullable=True)
    quantity: Mapped[float | None] = mapped_column(Numeric(asdecimal=False), nullable=True)
    memo: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    time: Mapped[dt.time | None] = mapped_column("done_hour", Time, nullable=True)


class ActivityGoal(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "activity_goal"
    __table_args__ = (
        Index("ix_activity_goal_user_id", "user_id"),
        Index("ix_activity_goal_activity_id", "activity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    activity_id: Mapped[str] = mapped_column(ForeignKey("activity.id"), nullable=False)
    daily_target_quantity: Mapped[float] = mapped_column(Numeric(asdecimal=False), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)


class Task(TimestampMixin, SoftDeleteMixin, Base):
    __tablename__ = "task"
    __table_args__ = (
        Index("ix_task_user_id", "user_id"),
        Index("ix_task_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    done_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class SyncQueue(Base):
    __tablename__ = "sync_queue"
    __table_args__ = (
        Index("ix_sync_queue_user_id", "user_id"),
        Index("ix_sync_queue_user_id_sequence_number", "user_id", "sequence_number"),
        Index("ix_sync_queue_timestamp", "timestamp"),
        Index("ix_sync_queue_entity", "entity_type", "entity_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    operation: Mapped[SyncOperation] = mapped_column(
        SqlEnum(SyncOperation, name="sync_operation", values_callable=_enum_values),
        nullable=False,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JsonPayload, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class SyncMetadata(Base):
    __tablename__ = "sync_metadata"
    __table_args__ = (
        Index("ix_sync_metadata_user_id", "user_id"),
        Index("ix_sync_metadata_entity", "entity_type", "entity_id"),
        Index("ix_sync_metadata_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    status: Mapped[SyncStatus] = mapped_column(
        SqlEnum(SyncStatus, name="sync_status", values_callable=_enum_values),
        nullable=False,
        server_default=text("'pending'"),
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
