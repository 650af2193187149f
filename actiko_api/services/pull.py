from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.orm import Session

from actiko_api.core.clock import Clock, as_utc
from actiko_api.repositories.activities import ActivityKindRepository, ActivityRepository
from actiko_api.repositories.activity_logs import ActivityLogRepository
from actiko_api.repositories.base import RecordRepository
from actiko_api.repositories.goals import GoalRepository
from actiko_api.repositories.tasks import TaskRepository

PULL_REPOSITORIES: dict[str, type[RecordRepository[Any, Any]]] = {
    "activity": ActivityRepository,
    "activityKind": ActivityKindRepository,
    "activityLog": ActivityLogRepository,
    "task": TaskRepository,
    "goal": GoalRepository,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass(frozen=True)
class PullChange:
    entity_type: str
    entity_id: str
    operation: str
    data: dict[str, Any]
    updated_at: datetime


@dataclass(frozen=True)
class PullResult:
    changes: list[PullChange]
    sync_timestamp: datetime
    has_more: bool
    next_cursor: datetime | None


def _operation_for(record: Any) -> str:
    if record.is_tombstone:
        return "delete"
    if as_utc(record.created_at) == as_utc(record.updated_at):
        return "create"
    return "update"


def _change(entity_type: str, repository: RecordRepository[Any, Any], record: Any) -> PullChange:
    return PullChange(
        entity_type=entity_type,
        entity_id=record.id,
        operation=_operation_for(record),
        data=repository.to_payload(record),
        updated_at=as_utc(record.updated_at),
    )


def _sort_key(change: PullChange) -> tuple[datetime, str, str]:
    return (change.updated_at, change.entity_type, change.entity_id)


def pull_changes(
    db: Session,
    *,
    user_id: str,
    since: datetime | None,
    entity_types: Sequence[str] | None,
    limit: int,
    clock: Clock,
) -> PullResult:
    """Server changes newer than ``since``, oldest first, tombstones included.

    ``next_cursor`` is the ``updatedAt`` of the last returned change when more
    remain; clients pass it back as ``lastSyncTimestamp``. A page always ends
    on a whole group of rows sharing one ``updatedAt``: it stops before the
    group, or, when the group alone is larger than ``limit``, returns all of
    it so the strict ``>`` on the next call skips nothing.
    """
    sync_timestamp = clock.now()
    cursor = as_utc(since) if since is not None else _EPOCH
    requested = [entity_type for entity_type in (entity_types or PULL_REPOSITORIES) if entity_type in PULL_REPOSITORIES]

    changes: list[PullChange] = []
    # updatedAt of the last row from each repository that had more rows to give.
    boundaries: list[datetime] = []
    for entity_type in requested:
        repository = PULL_REPOSITORIES[entity_type](db)
        records, has_more = repository.changes_after(user_id, cursor, limit)
        if has_more and records:
            boundaries.append(as_utc(records[-1].updated_at))
        changes.extend(_change(entity_type, repository, record) for record in records)

    changes.sort(key=_sort_key)
    cutoff = min(boundaries) if boundaries else None
    if len(changes) > limit:
        overflow = changes[limit].updated_at
        cutoff = overflow if cutoff is None else min(cutoff, overflow)

    has_more = cutoff is not None
    if cutoff is not None:
        page = [change for change in changes if change.updated_at < cutoff]
        if not page:
            page = _tied_group(db, user_id=user_id, entity_types=requested, instant=cutoff)
        changes = page
    next_cursor = changes[-1].updated_at if has_more and changes else None
    return PullResult(changes=changes, sync_timestamp=sync_timestamp, has_more=has_more, next_cursor=next_cursor)


def _tied_group(db: Session, *, user_id: str, entity_types: Sequence[str], instant: datetime) -> list[PullChange]:
    group: list[PullChange] = []
    for entity_type in entity_types:
        repository = PULL_REPOSITORIES[entity_type](db)
        group.extend(_change(entity_type, repository, record) for record in repository.changed_at(user_id, instant))
    group.sort(key=_sort_key)
    return group
