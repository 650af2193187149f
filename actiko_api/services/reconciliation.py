from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from actiko_api.core.clock import Clock
from actiko_api.core.exceptions import NotFoundError, SyncError, ValidationFailure
from actiko_api.models import SyncQueue, SyncStatus
from actiko_api.repositories.activities import ActivityKindRepository, ActivityRepository
from actiko_api.repositories.activity_logs import ActivityLogRepository
from actiko_api.repositories.base import RecordRepository
from actiko_api.repositories.goals import GoalRepository
from actiko_api.repositories.tasks import TaskRepository
from actiko_api.schemas.records import (
    UpsertActivityKindRequest,
    UpsertActivityLogRequest,
    UpsertGoalRequest,
    _UpsertBase,
)
from actiko_api.services import sync_metadata, sync_queue
from actiko_api.services.conflict import (
    ConflictStrategy,
    NewSnapshot,
    PersistedSnapshot,
    Snapshot,
    has_conflict,
    resolve,
)
from actiko_api.services.ownership import owned_activity_ids

logger = logging.getLogger("actiko.sync.reconciliation")

# Parents before children: an activity must exist before a log that references it.
ENTITY_PROCESSING_ORDER: tuple[str, ...] = ("activity", "activityKind", "activityLog", "task", "goal")

_STORAGE_ERROR_MESSAGE = "Storage error while applying item"
_UNEXPECTED_ERROR_MESSAGE = "Unexpected error while applying item"


@dataclass(frozen=True)
class SyncItem:
    client_id: str
    entity_type: str
    entity_id: str
    operation: str
    payload: dict[str, Any]
    timestamp: datetime
    sequence_number: int = 0

    @classmethod
    def from_queue(cls, item: SyncQueue) -> SyncItem:
        return cls(
            client_id=item.id,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            operation=getattr(item.operation, "value", item.operation),
            payload=dict(item.payload or {}),
            timestamp=item.timestamp,
            sequence_number=item.sequence_number,
        )


@dataclass
class SyncResult:
    client_id: str
    status: str
    server_id: str | None = None
    payload: dict[str, Any] | None = None
    conflict_data: dict[str, Any] | None = None
    message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class QueueProcessResult:
    processed_count: int
    failed_count: int
    has_more: bool


ParentCheck = Callable[[Session, str, Any], None]


@dataclass(frozen=True)
class _EntityHandler:
    repository: type[RecordRepository[Any, Any]]
    check_parents: ParentCheck | None = None


def _require_owned_activity(db: Session, user_id: str, activity_id: str) -> None:
    if activity_id not in owned_activity_ids(db, user_id=user_id, activity_ids=[activity_id]):
        raise NotFoundError(f"Related activity {activity_id} not found")


def _check_activity_parent(db: Session, user_id: str, request: UpsertActivityKindRequest | UpsertGoalRequest) -> None:
    _require_owned_activity(db, user_id, request.activity_id)


def _check_activity_log_parents(db: Session, user_id: str, request: UpsertActivityLogRequest) -> None:
    _require_owned_activity(db, user_id, request.activity_id)
    if request.activity_kind_id is None:
        return
    kind = ActivityKindRepository(db).get_by_id_and_user(user_id, request.activity_kind_id)
    if kind is None or kind.activity_id != request.activity_id:
        raise NotFoundError(f"Activity kind {request.activity_kind_id} not found for activity {request.activity_id}")


_ENTITY_HANDLERS: dict[str, _EntityHandler] = {
    "activity": _EntityHandler(repository=ActivityRepository),
    "activityKind": _EntityHandler(repository=ActivityKindRepository, check_parents=_check_activity_parent),
    "activityLog": _EntityHandler(repository=ActivityLogRepository, check_parents=_check_activity_log_parents),
    "task": _EntityHandler(repository=TaskRepository),
    "goal": _EntityHandler(repository=GoalRepository, check_parents=_check_activity_parent),
}


def _parse_request(repository: RecordRepository[Any, Any], item: SyncItem) -> _UpsertBase:
    data: dict[str, Any] = {"createdAt": item.timestamp, "updatedAt": item.timestamp}
    data.update(item.payload)
    data["id"] = item.entity_id
    # Owner always comes from the authenticated caller.
    data.pop("userId", None)
    data.pop("user_id", None)
    try:
        return repository.request_schema.model_validate(data)
    except ValidationError as exc:
        raise ValidationFailure(
            f"Invalid {item.entity_type} payload",
            details=exc.errors(include_url=False, include_context=False, include_input=False),
        ) from exc


def _client_snapshot(item: SyncItem, request: _UpsertBase) -> Snapshot:
    if item.payload.get("type") == "new":
        return NewSnapshot(data=item.payload)
    version = item.payload.get("version")
    return PersistedSnapshot(
        data=item.payload,
        created_at=request.created_at,
        updated_at=request.updated_at,
        version=version if isinstance(version, int) else None,
    )


def _sync_embedded_kinds(db: Session, *, user_id: str, activity_request: _UpsertBase, raw_kinds: Any) -> None:
    if not isinstance(raw_kinds, list):
        return
    repository = ActivityKindRepository(db)
    for raw_kind in raw_kinds:
        if not isinstance(raw_kind, dict):
            continue
        data: dict[str, Any] = {
            "createdAt": activity_request.created_at,
            "updatedAt": activity_request.updated_at,
        }
        data.update(raw_kind)
        data["activityId"] = activity_request.id
        try:
            kind_request = UpsertActivityKindRequest.model_validate(data)
        except ValidationError as exc:
            raise ValidationFailure(
                "Invalid activity kind payload",
                details=exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc
        existing = repository.get_by_id_and_user(user_id, kind_request.id, include_tombstones=True)
        if existing is None:
            repository.create(user_id, kind_request)
        else:
            repository.update(existing, user_id, kind_request)


def apply_item(
    db: Session,
    *,
    user_id: str,
    item: SyncItem,
    strategy: ConflictStrategy,
    clock: Clock,
) -> SyncResult:
    """Apply one mutation idempotently.

    Raises :class:`SyncError` subclasses when the item cannot be applied;
    callers turn those into ``error`` results.
    """
    handler = _ENTITY_HANDLERS.get(item.entity_type)
    if handler is None:
        raise ValidationFailure(f"Unknown entity type {item.entity_type}")
    repository = handler.repository(db)

    if item.operation == "delete":
        existing = repository.get_by_id_and_user(user_id, item.entity_id)
        if existing is None:
            return SyncResult(client_id=item.client_id, status="skipped", message="Already deleted")
        repository.soft_delete(existing, clock.now())
        return SyncResult(
            client_id=item.client_id,
            status="success",
            server_id=existing.id,
            payload=repository.to_payload(existing),
        )

    request = _parse_request(repository, item)
    if handler.check_parents is not None:
        handler.check_parents(db, user_id, request)

    if item.operation == "create":
        existing = repository.get_by_id_and_user(user_id, item.entity_id, include_tombstones=True)
        if existing is not None:
            return SyncResult(
                client_id=item.client_id,
                status="skipped",
                server_id=existing.id,
                payload=repository.to_payload(existing),
                message="Already exists",
            )
        created = repository.create(user_id, request)
        if item.entity_type == "activity":
            _sync_embedded_kinds(db, user_id=user_id, activity_request=request, raw_kinds=item.payload.get("kinds"))
        return SyncResult(
            client_id=item.client_id,
            status="success",
            server_id=created.id,
            payload=repository.to_payload(created),
        )

    if item.operation != "update":
        raise ValidationFailure(f"Unknown operation {item.operation}")

    existing = repository.get_by_id_and_user(user_id, item.entity_id)
    if existing is None:
        raise NotFoundError(f"Update target {item.entity_type} {item.entity_id} missing")

    server_data = repository.to_payload(existing)
    client = _client_snapshot(item, request)
    server = PersistedSnapshot(data=server_data, created_at=existing.created_at, updated_at=existing.updated_at)

    if not has_conflict(client, server):
        updated = repository.update(existing, user_id, request)
        if item.entity_type == "activity":
            _sync_embedded_kinds(db, user_id=user_id, activity_request=request, raw_kinds=item.payload.get("kinds"))
        return SyncResult(
            client_id=item.client_id,
            status="success",
            server_id=updated.id,
            payload=repository.to_payload(updated),
        )

    winner = resolve(client, server, strategy)
    if winner is client:
        repository.update(existing, user_id, request)
        if item.entity_type == "activity":
            _sync_embedded_kinds(db, user_id=user_id, activity_request=request, raw_kinds=item.payload.get("kinds"))
        conflict_data = server_data
    else:
        conflict_data = item.payload

    logger.info(
        "sync.item.conflict",
        extra={
            "user_id": user_id,
            "entity_type": item.entity_type,
            "entity_id": item.entity_id,
            "strategy": strategy.value,
        },
    )
    return SyncResult(
        client_id=item.client_id,
        status="conflict",
        server_id=existing.id,
        payload=repository.to_payload(existing),
        conflict_data=conflict_data,
    )


def _error_message(exc: Exception) -> str:
    if isinstance(exc, SyncError):
        return exc.message
    if isinstance(exc, SQLAlchemyError):
        return _STORAGE_ERROR_MESSAGE
    return _UNEXPECTED_ERROR_MESSAGE


def _error_result(item: SyncItem, exc: Exception) -> SyncResult:
    return SyncResult(client_id=item.client_id, status="error", error=_error_message(exc))


def _apply_in_savepoint(
    db: Session,
    *,
    user_id: str,
    item: SyncItem,
    strategy: ConflictStrategy,
    clock: Clock,
) -> SyncResult:
    try:
        with db.begin_nested():
            return apply_item(db, user_id=user_id, item=item, strategy=strategy, clock=clock)
    except Exception as exc:
        logger.warning(
            "sync.item.failed",
            exc_info=not isinstance(exc, SyncError),
            extra={
                "user_id": user_id,
                "entity_type": item.entity_type,
                "entity_id": item.entity_id,
                "operation": item.operation,
                "error": str(exc),
            },
        )
        return _error_result(item, exc)


def process_batch(
    db: Session,
    *,
    user_id: str,
    items: Sequence[SyncItem],
    strategy: ConflictStrategy = ConflictStrategy.TIMESTAMP,
    clock: Clock,
) -> list[SyncResult]:
    """Apply ``items`` grouped by entity type, one transaction per group.

    Results come back in input order. A group whose commit fails is rolled
    back as a whole and every item in it is reported as ``error``; groups
    committed before it stay committed.
    """
    results: list[SyncResult | None] = [None] * len(items)
    grouped: dict[str, list[int]] = defaultdict(list)
    for index, item in enumerate(items):
        grouped[item.entity_type].append(index)

    for entity_type in ENTITY_PROCESSING_ORDER:
        indexes = grouped.pop(entity_type, [])
        if not indexes:
            continue
        for index in indexes:
            results[index] = _apply_in_savepoint(db, user_id=user_id, item=items[index], strategy=strategy, clock=clock)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("sync.group.commit_failed", extra={"user_id": user_id, "entity_type": entity_type})
            for index in indexes:
                results[index] = SyncResult(client_id=items[index].client_id, status="error", error=_STORAGE_ERROR_MESSAGE)

    for entity_type, indexes in grouped.items():
        for index in indexes:
            results[index] = SyncResult(
                client_id=items[index].client_id,
                status="error",
                error=f"Unknown entity type {entity_type}",
            )

    final = [result for result in results if result is not None]
    logger.info(
        "sync.batch.processed",
        extra={
            "user_id": user_id,
            "strategy": strategy.value,
            "processed_count": len(final),
            "failed_count": sum(1 for result in final if result.status == "error"),
        },
    )
    return final


def _processing_rank(item: SyncQueue) -> int:
    try:
        return ENTITY_PROCESSING_ORDER.index(item.entity_type)
    except ValueError:
        return len(ENTITY_PROCESSING_ORDER)


def process_sync_queue(
    db: Session,
    *,
    user_id: str,
    batch_size: int,
    max_retries: int,
    clock: Clock,
) -> QueueProcessResult:
    batch = sync_queue.dequeue_batch(db, user_id=user_id, batch_size=batch_size)
    if not batch.items:
        return QueueProcessResult(processed_count=0, failed_count=0, has_more=False)

    # Stable sort keeps sequence order within each entity type.
    queued = [SyncItem.from_queue(item) for item in sorted(batch.items, key=_processing_rank)]
    processed_count = 0
    failed_count = 0
    successful_ids: list[str] = []

    for item in queued:
        sync_metadata.upsert_status(
            db,
            user_id=user_id,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            status=SyncStatus.SYNCING,
            now=clock.now(),
        )
        db.commit()

        try:
            with db.begin_nested():
                apply_item(db, user_id=user_id, item=item, strategy=ConflictStrategy.TIMESTAMP, clock=clock)
            sync_metadata.upsert_status(
                db,
                user_id=user_id,
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                status=SyncStatus.SYNCED,
                now=clock.now(),
            )
            db.commit()
        except Exception as exc:
            db.rollback()
            failed_count += 1
            error_message = _error_message(exc)
            metadata = sync_metadata.upsert_status(
                db,
                user_id=user_id,
                entity_type=item.entity_type,
                entity_id=item.entity_id,
                status=SyncStatus.FAILED,
                now=clock.now(),
                error_message=error_message,
            )
            exhausted = not sync_metadata.can_retry(metadata, max_retries)
            if exhausted:
                sync_queue.delete_items(db, [item.client_id])
            db.commit()
            logger.warning(
                "sync.queue.item_failed",
                exc_info=not isinstance(exc, SyncError),
                extra={
                    "user_id": user_id,
                    "queue_id": item.client_id,
                    "entity_type": item.entity_type,
                    "entity_id": item.entity_id,
                    "operation": item.operation,
                    "retry_count": metadata.retry_count,
                    "error": error_message,
                },
            )
            continue

        processed_count += 1
        successful_ids.append(item.client_id)

    if successful_ids:
        sync_queue.delete_items(db, successful_ids)
        db.commit()

    logger.info(
        "sync.queue.processed",
        extra={"user_id": user_id, "processed_count": processed_count, "failed_count": failed_count},
    )
    return QueueProcessResult(processed_count=processed_count, failed_count=failed_count, has_more=batch.has_more)
