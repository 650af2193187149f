from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Generic, TypeVar

from sqlalchemy.orm import Session

from actiko_api.core.clock import Clock
from actiko_api.core.config import settings
from actiko_api.repositories.activities import ActivityKindRepository, ActivityRepository
from actiko_api.repositories.activity_logs import ActivityLogRepository
from actiko_api.repositories.base import RecordRepository
from actiko_api.repositories.goals import GoalRepository
from actiko_api.repositories.tasks import TaskRepository
from actiko_api.schemas.records import (
    UpsertActivityKindRequest,
    UpsertActivityLogRequest,
    UpsertActivityRequest,
    UpsertGoalRequest,
    UpsertTaskRequest,
    _UpsertBase,
)
from actiko_api.services.ownership import owned_activity_ids

logger = logging.getLogger("actiko.sync.batch")

ItemT = TypeVar("ItemT", bound=_UpsertBase)


@dataclass
class SyncOutcome:
    synced_ids: list[str] = field(default_factory=list)
    server_wins: list[dict[str, Any]] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BatchSyncHooks(Generic[ItemT]):
    """Entity-specific seams plugged into :func:`sync_batch`.

    ``upsert`` returns the ids it actually wrote. ``lookup_by_ids`` returns
    the caller-visible server payloads keyed by id. Records without a parent
    leave ``parent_id`` and ``ownership_check`` unset.
    """

    upsert: Callable[[Sequence[ItemT]], list[str]]
    lookup_by_ids: Callable[[Sequence[str]], Mapping[str, dict[str, Any]]]
    parent_id: Callable[[ItemT], str] | None = None
    ownership_check: Callable[[set[str]], set[str]] | None = None


def _latest_per_id(items: Sequence[ItemT]) -> list[ItemT]:
    latest: dict[str, ItemT] = {}
    for item in items:
        current = latest.get(item.id)
        if current is None or item.updated_at >= current.updated_at:
            latest[item.id] = item
    return list(latest.values())


def sync_batch(
    items: Sequence[ItemT],
    hooks: BatchSyncHooks[ItemT],
    *,
    clock: Clock,
    skew_tolerance: timedelta | None = None,
) -> SyncOutcome:
    outcome = SyncOutcome()
    if not items:
        return outcome

    tolerance = skew_tolerance if skew_tolerance is not None else timedelta(seconds=settings.clock_skew_tolerance_seconds)
    max_allowed = clock.now() + tolerance

    candidates = _latest_per_id(items)
    owned: set[str] | None = None
    if hooks.parent_id is not None and hooks.ownership_check is not None:
        owned = hooks.ownership_check({hooks.parent_id(item) for item in candidates})

    valid: list[ItemT] = []
    for item in candidates:
        if owned is not None and hooks.parent_id is not None and hooks.parent_id(item) not in owned:
            outcome.skipped_ids.append(item.id)
            continue
        if item.updated_at > max_allowed:
            outcome.skipped_ids.append(item.id)
            continue
        valid.append(item)

    if not valid:
        return outcome

    written = set(hooks.upsert(valid))
    missed = [item.id for item in valid if item.id not in written]
    server_rows = hooks.lookup_by_ids(missed) if missed else {}

    for item in valid:
        if item.id in written:
            outcome.synced_ids.append(item.id)
        elif item.id in server_rows:
            outcome.server_wins.append(server_rows[item.id])
        else:
            outcome.skipped_ids.append(item.id)
    return outcome


def _repository_hooks(
    repository: RecordRepository[Any, ItemT],
    *,
    user_id: str,
    db: Session,
    parent_id: Callable[[ItemT], str] | None = None,
) -> BatchSyncHooks[ItemT]:
    def lookup(ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        return {record.id: repository.to_payload(record) for record in repository.get_by_ids(user_id, ids)}

    ownership_check: Callable[[set[str]], set[str]] | None = None
    if parent_id is not None:

        def _owned(parent_ids: set[str]) -> set[str]:
            return owned_activity_ids(db, user_id=user_id, activity_ids=parent_ids)

        ownership_check = _owned

    return BatchSyncHooks(
        upsert=lambda valid: repository.upsert_many(user_id, valid),
        lookup_by_ids=lookup,
        parent_id=parent_id,
        ownership_check=ownership_check,
    )


def _log_outcome(entity_type: str, user_id: str, submitted: int, outcome: SyncOutcome) -> None:
    logger.info(
        "sync.batch.completed",
        extra={
            "entity_type": entity_type,
            "user_id": user_id,
            "synced_count": len(outcome.synced_ids),
            "server_wins_count": len(outcome.server_wins),
            "skipped_count": len(outcome.skipped_ids),
            "processed_count": submitted,
        },
    )


def sync_activities(db: Session, *, user_id: str, items: Sequence[UpsertActivityRequest], clock: Clock) -> SyncOutcome:
    hooks = _repository_hooks(ActivityRepository(db), user_id=user_id, db=db)
    outcome = sync_batch(items, hooks, clock=clock)
    _log_outcome("activity", user_id, len(items), outcome)
    return outcome


def sync_activity_kinds(
    db: Session,
    *,
    user_id: str,
    items: Sequence[UpsertActivityKindRequest],
    clock: Clock,
) -> SyncOutcome:
    hooks = _repository_hooks(
        ActivityKindRepository(db),
        user_id=user_id,
        db=db,
        parent_id=lambda item: item.activity_id,
    )
    outcome = sync_batch(items, hooks, clock=clock)
    _log_outcome("activityKind", user_id, len(items), outcome)
    return outcome


def sync_activity_logs(
    db: Session,
    *,
    user_id: str,
    items: Sequence[UpsertActivityLogRequest],
    clock: Clock,
) -> SyncOutcome:
    hooks = _repository_hooks(
        ActivityLogRepository(db),
        user_id=user_id,
        db=db,
        parent_id=lambda item: item.activity_id,
    )
    outcome = sync_batch(items, hooks, clock=clock)
    _log_outcome("activityLog", user_id, len(items), outcome)
    return outcome


def sync_goals(db: Session, *, user_id: str, items: Sequence[UpsertGoalRequest], clock: Clock) -> SyncOutcome:
    hooks = _repository_hooks(
        GoalRepository(db),
        user_id=user_id,
        db=db,
        parent_id=lambda item: item.activity_id,
    )
    outcome = sync_batch(items, hooks, clock=clock)
    _log_outcome("goal", user_id, len(items), outcome)
    return outcome


def sync_tasks(db: Session, *, user_id: str, items: Sequence[UpsertTaskRequest], clock: Clock) -> SyncOutcome:
    hooks = _repository_hooks(TaskRepository(db), user_id=user_id, db=db)
    outcome = sync_batch(items, hooks, clock=clock)
    _log_outcome("task", user_id, len(items), outcome)
    return outcome
