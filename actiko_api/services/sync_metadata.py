from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from actiko_api.models import SyncMetadata, SyncStatus

_ALLOWED_TRANSITIONS: dict[SyncStatus | None, frozenset[SyncStatus]] = {
    None: frozenset({SyncStatus.PENDING, SyncStatus.SYNCING}),
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCING}),
    # syncing -> syncing resumes an attempt interrupted before its outcome was recorded.
    SyncStatus.SYNCING: frozenset({SyncStatus.SYNCING, SyncStatus.SYNCED, SyncStatus.FAILED}),
    SyncStatus.FAILED: frozenset({SyncStatus.SYNCING}),
    SyncStatus.SYNCED: frozenset({SyncStatus.SYNCING}),
}


@dataclass(frozen=True)
class SyncStatusSummary:
    pending_count: int
    syncing_count: int
    synced_count: int
    failed_count: int
    total_count: int
    sync_percentage: int
    last_synced_at: datetime | None


def metadata_id(user_id: str, entity_type: str, entity_id: str) -> str:
    return f"{user_id}-{entity_type}-{entity_id}"


def get_by_entity(db: Session, *, user_id: str, entity_type: str, entity_id: str) -> SyncMetadata | None:
    return db.get(SyncMetadata, metadata_id(user_id, entity_type, entity_id))


def upsert_status(
    db: Session,
    *,
    user_id: str,
    entity_type: str,
    entity_id: str,
    status: SyncStatus,
    now: datetime,
    error_message: str | None = None,
) -> SyncMetadata:
    """Move the (user, entity) status forward, creating the row on first use.

    ``synced`` clears the retry counter and the last error; ``failed``
    records the error and increments the counter.
    """
    metadata = get_by_entity(db, user_id=user_id, entity_type=entity_type, entity_id=entity_id)
    current = metadata.status if metadata is not None else None
    if current is not None and not isinstance(current, SyncStatus):
        current = SyncStatus(current)
    if status not in _ALLOWED_TRANSITIONS[current]:
        raise ValueError(f"Invalid sync status transition {current} -> {status.value}")

    if metadata is None:
        metadata = SyncMetadata(
            id=metadata_id(user_id, entity_type, entity_id),
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            status=status,
            retry_count=0,
            created_at=now,
            updated_at=now,
        )
        db.add(metadata)

    metadata.status = status
    metadata.updated_at = now
    if status is SyncStatus.SYNCED:
        metadata.last_synced_at = now
        metadata.error_message = None
        metadata.retry_count = 0
    elif status is SyncStatus.FAILED:
        metadata.error_message = error_message
        metadata.retry_count = (metadata.retry_count or 0) + 1
    db.flush()
    return metadata


def can_retry(metadata: SyncMetadata, max_retries: int) -> bool:
    return metadata.retry_count < max_retries


def status_summary(db: Session, *, user_id: str) -> SyncStatusSummary:
    rows = db.execute(
        select(SyncMetadata.status, func.count(SyncMetadata.id))
        .where(SyncMetadata.user_id == user_id)
        .group_by(SyncMetadata.status),
    ).all()
    counts = {SyncStatus(status_value): int(count) for status_value, count in rows}
    last_synced_at = db.scalar(
        select(func.max(SyncMetadata.last_synced_at)).where(
            SyncMetadata.user_id == user_id,
            SyncMetadata.status == SyncStatus.SYNCED,
        ),
    )

    synced = counts.get(SyncStatus.SYNCED, 0)
    total = sum(counts.values())
    # Half-up rounding, so 12.5% reports as 13.
    percentage = 100 if total == 0 else math.floor(synced / total * 100 + 0.5)
    return SyncStatusSummary(
        pending_count=counts.get(SyncStatus.PENDING, 0),
        syncing_count=counts.get(SyncStatus.SYNCING, 0),
        synced_count=synced,
        failed_count=counts.get(SyncStatus.FAILED, 0),
        total_count=total,
        sync_percentage=percentage,
        last_synced_at=last_synced_at,
    )
