from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Query

from actiko_api.api.deps import ClockDep, CurrentUser, DBSession
from actiko_api.core.config import settings
from actiko_api.core.exceptions import NotFoundError, ValidationFailure
from actiko_api.schemas.sync import (
    BatchSyncRequest,
    CheckDuplicatesRequest,
    CheckDuplicatesResponse,
    ConflictStrategyLiteral,
    DeleteQueueItemResponse,
    DuplicateCheckResultOut,
    EnqueueSyncRequest,
    EnqueueSyncResponse,
    EntityTypeLiteral,
    ProcessSyncRequest,
    ProcessSyncResponse,
    PullChangeOut,
    PullSyncResponse,
    SyncQueueItemOut,
    SyncQueueListResponse,
    SyncResultOut,
    SyncStatusEnvelope,
    SyncStatusResponse,
)
from actiko_api.services import sync_metadata, sync_queue
from actiko_api.services.conflict import ConflictStrategy
from actiko_api.services.pull import pull_changes
from actiko_api.services.reconciliation import SyncItem, process_batch, process_sync_queue

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/check-duplicates", response_model=CheckDuplicatesResponse)
def check_duplicates(payload: CheckDuplicatesRequest, db: DBSession, user: CurrentUser) -> CheckDuplicatesResponse:
    results = sync_queue.find_duplicates(db, user_id=user.id, operations=payload.operations)
    return CheckDuplicatesResponse(
        results=[
            DuplicateCheckResultOut(
                is_duplicate=result.is_duplicate,
                conflicting_operation_ids=result.conflicting_operation_ids or None,
            )
            for result in results
        ],
    )


@router.get("/status", response_model=SyncStatusEnvelope)
def get_sync_status(db: DBSession, user: CurrentUser) -> SyncStatusEnvelope:
    summary = sync_metadata.status_summary(db, user_id=user.id)
    status = SyncStatusResponse(
        pending_count=summary.pending_count,
        syncing_count=summary.syncing_count,
        synced_count=summary.synced_count,
        failed_count=summary.failed_count,
        total_count=summary.total_count,
        sync_percentage=summary.sync_percentage,
        last_synced_at=summary.last_synced_at,
    )
    return SyncStatusEnvelope(status=status)


@router.post("/enqueue", response_model=EnqueueSyncResponse)
def enqueue_operations(
    payload: EnqueueSyncRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
) -> EnqueueSyncResponse:
    created = sync_queue.enqueue(db, user_id=user.id, operations=payload.operations, clock=clock)
    db.commit()
    return EnqueueSyncResponse(
        enqueued_count=len(created),
        operations=[SyncQueueItemOut.model_validate(item) for item in created],
    )


@router.post("/process", response_model=ProcessSyncResponse)
def process_queue(
    payload: ProcessSyncRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
) -> ProcessSyncResponse:
    batch_size = payload.batch_size if payload.batch_size is not None else settings.sync_process_default_batch_size
    if batch_size > settings.sync_process_max_batch_size:
        raise ValidationFailure(
            f"batchSize must be at most {settings.sync_process_max_batch_size}",
            details={"field": "batchSize", "limit": settings.sync_process_max_batch_size},
        )
    max_retries = payload.max_retries if payload.max_retries is not None else settings.sync_default_max_retries

    result = process_sync_queue(db, user_id=user.id, batch_size=batch_size, max_retries=max_retries, clock=clock)
    return ProcessSyncResponse(
        processed_count=result.processed_count,
        failed_count=result.failed_count,
        has_more=result.has_more,
    )


@router.post("/batch", response_model=list[SyncResultOut], response_model_exclude_none=True)
def batch_sync(
    payload: BatchSyncRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
    strategy: ConflictStrategyLiteral = Query(default="timestamp"),
) -> list[SyncResultOut]:
    items = [
        SyncItem(
            client_id=item.client_id,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            operation=item.operation,
            payload=item.payload,
            timestamp=item.timestamp,
            sequence_number=item.sequence_number,
        )
        for item in payload.items
    ]
    results = process_batch(db, user_id=user.id, items=items, strategy=ConflictStrategy(strategy), clock=clock)
    return [
        SyncResultOut(
            client_id=result.client_id,
            status=result.status,
            server_id=result.server_id,
            payload=result.payload,
            conflict_data=result.conflict_data,
            message=result.message,
            error=result.error,
        )
        for result in results
    ]


@router.get("/queue", response_model=SyncQueueListResponse)
def list_queue(
    db: DBSession,
    user: CurrentUser,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> SyncQueueListResponse:
    items, total, has_more = sync_queue.list_for_user(db, user_id=user.id, limit=limit, offset=offset)
    return SyncQueueListResponse(
        items=[SyncQueueItemOut.model_validate(item) for item in items],
        total=total,
        has_more=has_more,
    )


@router.delete("/queue/{queue_id}", response_model=DeleteQueueItemResponse)
def delete_queue_item(queue_id: str, db: DBSession, user: CurrentUser) -> DeleteQueueItemResponse:
    item = sync_queue.get_for_user(db, user_id=user.id, queue_id=queue_id)
    if item is None:
        raise NotFoundError("Sync queue item not found")
    sync_queue.delete_items(db, [item.id])
    db.commit()
    return DeleteQueueItemResponse(success=True)


@router.get("/pull", response_model=PullSyncResponse)
def pull_sync(
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
    last_sync_timestamp: Annotated[datetime | None, Query(alias="lastSyncTimestamp")] = None,
    entity_types: Annotated[list[EntityTypeLiteral] | None, Query(alias="entityTypes")] = None,
    limit: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> PullSyncResponse:
    result = pull_changes(
        db,
        user_id=user.id,
        since=last_sync_timestamp,
        entity_types=entity_types,
        limit=limit if limit is not None else settings.pull_default_limit,
        clock=clock,
    )
    return PullSyncResponse(
        changes=[
            PullChangeOut(
                entity_type=change.entity_type,
                entity_id=change.entity_id,
                operation=change.operation,
                data=change.data,
                updated_at=change.updated_at,
            )
            for change in result.changes
        ],
        sync_timestamp=result.sync_timestamp,
        has_more=result.has_more,
        next_cursor=result.next_cursor,
    )
