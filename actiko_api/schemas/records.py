from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from actiko_api.core.clock import as_utc


class _UpsertBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1, max_length=36)
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    deleted_at: datetime | None = Field(default=None, alias="deletedAt")

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        return as_utc(value)


class UpsertActivityRequest(_UpsertBase):
    name: str = Field(min_length=1)
    label: str = ""
    emoji: str = ""
    icon_type: Literal["emoji", "upload", "generate"] = Field(default="emoji", alias="iconType")
    icon_url: str | None = Field(default=None, alias="iconUrl")
    icon_thumbnail_url: str | None = Field(default=None, alias="iconThumbnailUrl")
    description: str = ""
    quantity_unit: str = Field(default="", alias="quantityUnit")
    order_index: str = Field(default="", alias="orderIndex")
    show_combined_stats: bool = Field(default=True, alias="showCombinedStats")


class UpsertActivityKindRequest(_UpsertBase):
    activity_id: str = Field(alias="activityId")
    name: str = Field(min_length=1)
    color: str | None = None
    order_index: str = Field(default="", alias="orderIndex")


class UpsertActivityLogRequest(_UpsertBase):
    activity_id: str = Field(alias="activityId")
    activity_kind_id: str | None = Field(default=None, alias="activityKindId")
    quantity: float | None = None
    memo: str = ""
    date: dt.date
    time: dt.time | None = None


class UpsertGoalRequest(_UpsertBase):
    activity_id: str = Field(alias="activityId")
    daily_target_quantity: float = Field(alias="dailyTargetQuantity")
    start_date: date = Field(alias="startDate")
    end_date: date | None = Field(default=None, alias="endDate")
    is_active: bool = Field(default=True, alias="isActive")
    description: str | None = None


class UpsertTaskRequest(_UpsertBase):
    title: str = Field(min_length=1)
    start_date: date | None = Field(default=None, alias="startDate")
    due_date: date | None = Field(default=None, alias="dueDate")
    done_date: date | None = Field(default=None, alias="doneDate")
    memo: str | None = None
    archived_at: datetime | None = Field(default=None, alias="archivedAt")

    @field_validator("archived_at")
    @classmethod
    def _normalize_archived_at(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class _RecordOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    deleted_at: datetime | None = Field(default=None, alias="deletedAt")

    @field_validator("created_at", "updated_at", "deleted_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class ActivityOut(_RecordOut):
    user_id: str = Field(alias="userId")
    name: str
    label: str
    emoji: str
    icon_type: str = Field(alias="iconType")
    icon_url: str | None = Field(alias="iconUrl")
    icon_thumbnail_url: str | None = Field(alias="iconThumbnailUrl")
    description: str
    quantity_unit: str = Field(alias="quantityUnit")
    order_index: str = Field(alias="orderIndex")
    show_combined_stats: bool = Field(alias="showCombinedStats")

    @field_validator("icon_type", mode="before")
    @classmethod
    def _icon_type_value(cls, value: object) -> object:
        return getattr(value, "value", value)


class ActivityKindOut(_RecordOut):
    activity_id: str = Field(alias="activityId")
    name: str
    color: str | None
    order_index: str = Field(alias="orderIndex")


class ActivityLogOut(_RecordOut):
    user_id: str = Field(alias="userId")
    activity_id: str = Field(alias="activityId")
    activity_kind_id: str | None = Field(alias="activityKindId")
    quantity: float | None
    memo: str
    date: dt.date
    time: dt.time | None


class GoalOut(_RecordOut):
    user_id: str = Field(alias="userId")
    activity_id: str = Field(alias="activityId")
    daily_target_quantity: float = Field(alias="dailyTargetQuantity")
    start_date: date = Field(alias="startDate")
    end_date: date | None = Field(alias="endDate")
    is_active: bool = Field(alias="isActive")
    description: str | None


class TaskOut(_RecordOut):
    user_id: str = Field(alias="userId")
    title: str
    start_date: date | None = Field(alias="startDate")
    due_date: date | None = Field(alias="dueDate")
    done_date: date | None = Field(alias="doneDate")
    memo: str | None
    archived_at: datetime | None = Field(alias="archivedAt")

    @field_validator("archived_at")
    @classmethod
    def _archived_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None


class SyncOutcomeOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    synced_ids: list[str] = Field(alias="syncedIds")
    server_wins: list[dict] = Field(alias="serverWins")
    skipped_ids: list[str] = Field(alias="skippedIds")


class SyncActivitiesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activities: list[UpsertActivityRequest] = Field(default_factory=list)
    activity_kinds: list[UpsertActivityKindRequest] = Field(default_factory=list, alias="activityKinds")


class SyncActivitiesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activities: SyncOutcomeOut
    activity_kinds: SyncOutcomeOut = Field(alias="activityKinds")


class ActivitiesResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activities: list[ActivityOut]
    activity_kinds: list[ActivityKindOut] = Field(alias="activityKinds")


class SyncActivityLogsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_logs: list[UpsertActivityLogRequest] = Field(alias="activityLogs")


class ActivityLogsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    activity_logs: list[ActivityLogOut] = Field(alias="activityLogs")


class SyncGoalsRequest(BaseModel):
    goals: list[UpsertGoalRequest]


class GoalsResponse(BaseModel):
    goals: list[GoalOut]


class SyncTasksRequest(BaseModel):
    tasks: list[UpsertTaskRequest]


class TasksResponse(BaseModel):
    tasks: list[TaskOut]
