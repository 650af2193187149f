from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import Select, delete, func, select
from sqlalchemy.orm import Session

from actiko_api.core.clock import Clock, as_utc
from actiko_api.core.config import settings
from actiko_api.models import SyncOperation, SyncQueue
from actiko_api.schemas.sync import DuplicateCheckOperation, EnqueueOperation

logger = logging.getLogger("actiko.sync.queue")


@dataclass(frozen=True)
class DuplicateCheckResult:
    is_duplicate: bool
    conflicting_operation_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class QueueBatch:
    items: list[SyncQueue]
    has_more: bool
    total_count: int


def _queued_for_user(db: Session, user_id: str) -> list[SyncQueue]:
    return list(db.scalars(select(SyncQueue).where(SyncQueue.user_id == user_id)).all())


def _is_close(left: datetime, right: datetime, tolerance: timedelta) -> bool:
    return abs(as_utc(left) - as_utc(right)) <= tolerance


def find_duplicates(
    db: Session,
    *,
    user_id: str,
    operations: Sequence[DuplicateCheckOperation | EnqueueOperation],
    tolerance_ms: int | None = None,
) -> list[DuplicateCheckResult]:
    """One result per candidate, in order.

    A candidate is a duplicate of a queued item for the same user with the
    same entity and operation whose timestamp lies within the tolerance.
    """
    if not operations:
        return []

    tolerance = timedelta(milliseconds=settings.duplicate_tolerance_ms if tolerance_ms is None else tolerance_ms)
    queued = _queued_for_user(db, user_id)
    results: list[DuplicateCheckResult] = []
    for candidate in operations:
        conflicting = [
            item.id
            for item in queued
            if item.entity_type == candidate.entity_type
            and item.entity_id == candidate.entity_id
            and SyncOperation(item.operation) == SyncOperation(candidate.operation)
            and _is_close(item.timestamp, candidate.timestamp, tolerance)
        ]
        results.append(DuplicateCheckResult(is_duplicate=bool(conflicting), conflicting_operation_ids=conflicting))
    return results


def enqueue(
    db: Session,
    *,
    user_id: str,
    operations: Sequence[EnqueueOperation],
    clock: Clock,
) -> list[SyncQueue]:
    """Persist every non-duplicate operation; the caller commits once for the whole batch."""
    if not operations:
        return []

    checks = find_duplicates(db, user_id=user_id, operations=operations)
    now = clock.now()
    created: list[SyncQueue] = []
    for operation, check in zip(operations, checks, strict=True):
        if check.is_duplicate:
            logger.info(
                "sync.queue.duplicate_skipped",
                extra={
                    "user_id": user_id,
                    "entity_type": operation.entity_type,
                    "entity_id": operation.entity_id,
                    "operation": operation.operation,
                },
            )
            continue
        item = SyncQueue(
            id=str(uuid4()),
            user_id=user_id,
            entity_type=operation.entity_type,
            entity_id=operation.entity_id,
            operation=SyncOperation(operation.operation),
            payload=operation.payload,
            timestamp=operation.timestamp,
            sequence_number=operation.sequence_number,
            created_at=now,
        )
        db.add(item)
        created.append(item)
    db.flush()
    return created


def _ordered(query: Select[Any]) -> Select[Any]:
    return query.order_by(SyncQueue.sequence_number.asc(), SyncQueue.created_at.asc(), SyncQueue.id.asc())


def count_for_user(db: Session, *, user_id: str) -> int:
    return int(db.scalar(select(func.count(SyncQueue.id)).where(SyncQueue.user_id == user_id)) or 0)


def dequeue_batch(db: Session, *, user_id: str, batch_size: int) -> QueueBatch:
    rows = list(
        db.scalars(_ordered(select(SyncQueue).where(SyncQueue.user_id == user_id)).limit(batch_size + 1)).all(),
    )
    return QueueBatch(
        items=rows[:batch_size],
        has_more=len(rows) > batch_size,
        total_count=count_for_user(db, user_id=user_id),
    )


def list_for_user(db: Session, *, user_id: str, limit: int, offset: int) -> tuple[list[SyncQueue], int, bool]:
    items = list(
        db.scalars(
            _ordered(select(SyncQueue).where(SyncQueue.user_id == user_id)).limit(limit).offset(offset),
        ).all(),
    )
    total = count_for_user(db, user_id=user_id)
    return items, total, offset + len(items) < total


def get_for_user(db: Session, *, user_id: str, queue_id: str) -> SyncQueue | None:
    return db.scalar(select(SyncQueue).where(SyncQueue.id == queue_id, SyncQueue.user_id == user_id))


def delete_items(db: Session, queue_ids: Sequence[str]) -> int:
    if not queue_ids:
        return 0
    result = db.execute(delete(SyncQueue).where(SyncQueue.id.in_(list(queue_ids))))
    return int(result.rowcount or 0)
