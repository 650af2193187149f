from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from actiko_api.core.clock import as_utc

EntityTypeLiteral = Literal["activity", "activityKind", "activityLog", "task", "goal"]
OperationLiteral = Literal["create", "update", "delete"]
SyncResultStatusLiteral = Literal["success", "conflict", "skipped", "error"]
ConflictStrategyLiteral = Literal["client-wins", "server-wins", "timestamp"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class _TimestampedOperation(_CamelModel):
    entity_type: EntityTypeLiteral = Field(alias="entityType")
    entity_id: str = Field(alias="entityId", min_length=1, max_length=36)
    operation: OperationLiteral
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class DuplicateCheckOperation(_TimestampedOperation):
    pass


class CheckDuplicatesRequest(_CamelModel):
    operations: list[DuplicateCheckOperation]


class DuplicateCheckResultOut(_CamelModel):
    is_duplicate: bool = Field(alias="isDuplicate")
    conflicting_operation_ids: list[str] | None = Field(default=None, alias="conflictingOperationIds")


class CheckDuplicatesResponse(_CamelModel):
    results: list[DuplicateCheckResultOut]


class EnqueueOperation(_TimestampedOperation):
    payload: dict[str, Any] = Field(default_factory=dict)
    sequence_number: int = Field(alias="sequenceNumber", ge=0)


class EnqueueSyncRequest(_CamelModel):
    operations: list[EnqueueOperation]


class SyncQueueItemOut(_CamelModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str
    user_id: str = Field(alias="userId")
    entity_type: str = Field(alias="entityType")
    entity_id: str = Field(alias="entityId")
    operation: str
    payload: dict[str, Any]
    timestamp: datetime
    sequence_number: int = Field(alias="sequenceNumber")
    created_at: datetime = Field(alias="createdAt")

    @field_validator("operation", mode="before")
    @classmethod
    def _operation_value(cls, value: object) -> object:
        return getattr(value, "value", value)

    @field_validator("timestamp", "created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class EnqueueSyncResponse(_CamelModel):
    enqueued_count: int = Field(alias="enqueuedCount")
    operations: list[SyncQueueItemOut]


class ProcessSyncRequest(_CamelModel):
    batch_size: int | None = Field(default=None, alias="batchSize", ge=1)
    max_retries: int | None = Field(default=None, alias="maxRetries", ge=0)


class ProcessSyncResponse(_CamelModel):
    processed_count: int = Field(alias="processedCount")
    failed_count: int = Field(alias="failedCount")
    has_more: bool = Field(alias="hasMore")


class SyncStatusResponse(_CamelModel):
    pending_count: int = Field(alias="pendingCount")
    syncing_count: int = Field(alias="syncingCount")
    synced_count: int = Field(alias="syncedCount")
    failed_count: int = Field(alias="failedCount")
    total_count: int = Field(alias="totalCount")
    sync_percentage: int = Field(alias="syncPercentage")
    last_synced_at: datetime | None = Field(default=None, alias="lastSyncedAt")


class SyncStatusEnvelope(_CamelModel):
    status: SyncStatusResponse


class BatchSyncItem(_TimestampedOperation):
    client_id: str = Field(alias="clientId", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    sequence_number: int = Field(default=0, alias="sequenceNumber", ge=0)


class BatchSyncRequest(_CamelModel):
    items: list[BatchSyncItem]


class SyncResultOut(_CamelModel):
    client_id: str = Field(alias="clientId")
    status: SyncResultStatusLiteral
    server_id: str | None = Field(default=None, alias="serverId")
    payload: dict[str, Any] | None = None
    conflict_data: dict[str, Any] | None = Field(default=None, alias="conflictData")
    message: str | None = None
    error: str | None = None


class SyncQueueListResponse(_CamelModel):
    items: list[SyncQueueItemOut]
    total: int
    has_more: bool = Field(alias="hasMore")


class DeleteQueueItemResponse(_CamelModel):
    success: bool


class PullChangeOut(_CamelModel):
    entity_type: EntityTypeLiteral = Field(alias="entityType")
    entity_id: str = Field(alias="entityId")
    operation: OperationLiteral
    data: dict[str, Any]
    updated_at: datetime = Field(alias="updatedAt")


class PullSyncResponse(_CamelModel):
    changes: list[PullChangeOut]
    sync_timestamp: datetime = Field(alias="syncTimestamp")
    has_more: bool = Field(alias="hasMore")
    next_cursor: datetime | None = Field(default=None, alias="nextCursor")
