from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from actiko_api.core.clock import FixedClock
from actiko_api.models import Activity, ActivityKind, ActivityLog, Task
from actiko_api.repositories.tasks import TaskRepository
from actiko_api.services.conflict import ConflictStrategy
from actiko_api.services.reconciliation import SyncItem, process_batch

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
EARLIER = NOW - timedelta(hours=1)


def _item(
    client_id: str,
    entity_type: str,
    entity_id: str,
    operation: str,
    payload: dict[str, Any] | None = None,
) -> SyncItem:
    return SyncItem(
        client_id=client_id,
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        payload=payload or {},
        timestamp=NOW,
    )


def _task_payload(title: str, *, updated_at: datetime = NOW, **extra: Any) -> dict[str, Any]:
    payload = {
        "title": title,
        "createdAt": EARLIER.isoformat(),
        "updatedAt": updated_at.isoformat(),
        "type": "persisted",
    }
    payload.update(extra)
    return payload


def _reload(db: Session, model: Any, record_id: str) -> Any:
    return db.scalar(select(model).where(model.id == record_id).execution_options(populate_existing=True))


def test_create_is_idempotent(db: Session, seed: Any, clock: FixedClock) -> None:
    item = _item("c1", "task", "t1", "create", _task_payload("Write report"))

    first = process_batch(db, user_id="user-1", items=[item], clock=clock)
    second = process_batch(db, user_id="user-1", items=[item], clock=clock)

    assert first[0].status == "success"
    assert first[0].server_id == "t1"
    assert second[0].status == "skipped"
    assert second[0].message == "Already exists"
    assert second[0].payload == first[0].payload
    assert len(db.scalars(select(Task)).all()) == 1


def test_payload_cannot_choose_the_owner(db: Session, seed: Any, clock: FixedClock) -> None:
    item = _item("c1", "task", "t1", "create", _task_payload("Mine", userId="user-2"))

    results = process_batch(db, user_id="user-1", items=[item], clock=clock)

    assert results[0].status == "success"
    assert _reload(db, Task, "t1").user_id == "user-1"


def test_activity_applies_before_log_in_same_batch(db: Session, seed: Any, clock: FixedClock) -> None:
    log = _item(
        "log",
        "activityLog",
        "l1",
        "create",
        {"activityId": "a1", "quantity": 3, "date": "2026-03-01", "createdAt": NOW.isoformat(), "updatedAt": NOW.isoformat()},
    )
    activity = _item(
        "act",
        "activity",
        "a1",
        "create",
        {
            "name": "Running",
            "quantityUnit": "km",
            "createdAt": NOW.isoformat(),
            "updatedAt": NOW.isoformat(),
            "kinds": [{"id": "k1", "name": "Trail"}],
        },
    )

    results = process_batch(db, user_id="user-1", items=[log, activity], clock=clock)

    assert [result.client_id for result in results] == ["log", "act"]
    assert [result.status for result in results] == ["success", "success"]
    assert _reload(db, ActivityLog, "l1").activity_id == "a1"
    assert _reload(db, ActivityKind, "k1").activity_id == "a1"


def test_update_without_target_is_an_error(db: Session, seed: Any, clock: FixedClock) -> None:
    results = process_batch(
        db,
        user_id="user-1",
        items=[_item("u1", "task", "missing", "update", _task_payload("Nope"))],
        clock=clock,
    )

    assert results[0].status == "error"
    assert "missing" in (results[0].error or "")


def test_delete_is_idempotent_and_soft(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.task("t1", updated_at=EARLIER)
    delete = _item("d1", "task", "t1", "delete")

    first = process_batch(db, user_id="user-1", items=[delete], clock=clock)
    second = process_batch(db, user_id="user-1", items=[delete], clock=clock)

    assert first[0].status == "success"
    assert second[0].status == "skipped"
    stored = _reload(db, Task, "t1")
    assert stored is not None
    assert stored.is_tombstone


def test_update_without_conflict_writes_client_value(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.task("t1", title="Old", updated_at=EARLIER)

    results = process_batch(
        db,
        user_id="user-1",
        items=[_item("u1", "task", "t1", "update", _task_payload("New", updated_at=NOW))],
        clock=clock,
    )

    assert results[0].status == "success"
    assert results[0].payload["title"] == "New"
    assert _reload(db, Task, "t1").title == "New"


@pytest.mark.parametrize(
    ("strategy", "stored_title", "losing_title"),
    [
        (ConflictStrategy.TIMESTAMP, "Server", "Client"),
        (ConflictStrategy.SERVER_WINS, "Server", "Client"),
        (ConflictStrategy.CLIENT_WINS, "Client", "Server"),
    ],
)
def test_stale_update_is_reported_as_conflict(
    db: Session,
    seed: Any,
    clock: FixedClock,
    strategy: ConflictStrategy,
    stored_title: str,
    losing_title: str,
) -> None:
    seed.task("t1", title="Server", updated_at=NOW)
    stale = _item("u1", "task", "t1", "update", _task_payload("Client", updated_at=EARLIER))

    results = process_batch(db, user_id="user-1", items=[stale], strategy=strategy, clock=clock)

    assert results[0].status == "conflict"
    assert results[0].conflict_data["title"] == losing_title
    assert results[0].payload["title"] == stored_title
    assert _reload(db, Task, "t1").title == stored_title


def test_new_snapshot_skips_conflict_detection(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.task("t1", title="Server", updated_at=NOW)
    item = _item("u1", "task", "t1", "update", _task_payload("Client", updated_at=EARLIER, type="new"))

    results = process_batch(db, user_id="user-1", items=[item], clock=clock)

    assert results[0].status == "success"
    assert _reload(db, Task, "t1").title == "Client"


def test_item_failure_does_not_abort_siblings(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.activity("a1")
    seed.activity("b1", user_id="user-2")
    base = {"date": "2026-03-01", "createdAt": NOW.isoformat(), "updatedAt": NOW.isoformat()}

    results = process_batch(
        db,
        user_id="user-1",
        items=[
            _item("bad", "activityLog", "l1", "create", {**base, "activityId": "b1"}),
            _item("good", "activityLog", "l2", "create", {**base, "activityId": "a1"}),
            _item("shape", "activityLog", "l3", "create", {"activityId": "a1"}),
        ],
        clock=clock,
    )

    assert [result.status for result in results] == ["error", "success", "error"]
    assert "b1" in (results[0].error or "")
    assert results[2].error == "Invalid activityLog payload"
    assert _reload(db, ActivityLog, "l1") is None
    assert _reload(db, ActivityLog, "l2") is not None


def test_log_kind_must_belong_to_its_activity(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.activity("a1")
    seed.activity("a2")
    seed.kind("k2", activity_id="a2")
    payload = {
        "activityId": "a1",
        "activityKindId": "k2",
        "date": "2026-03-01",
        "createdAt": NOW.isoformat(),
        "updatedAt": NOW.isoformat(),
    }

    results = process_batch(db, user_id="user-1", items=[_item("c1", "activityLog", "l1", "create", payload)], clock=clock)

    assert results[0].status == "error"


def test_unknown_entity_type_is_reported_per_item(db: Session, seed: Any, clock: FixedClock) -> None:
    results = process_batch(
        db,
        user_id="user-1",
        items=[
            _item("x", "note", "n1", "create"),
            _item("t", "task", "t1", "create", _task_payload("Fine")),
        ],
        clock=clock,
    )

    assert [result.status for result in results] == ["error", "success"]
    assert results[0].error == "Unknown entity type note"


def test_failed_group_commit_marks_only_that_group(
    db: Session,
    seed: Any,
    clock: FixedClock,
    monkeypatch: Any,
) -> None:
    real_commit = db.commit
    calls = {"count": 0}

    def flaky_commit() -> None:
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))
        real_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)

    results = process_batch(
        db,
        user_id="user-1",
        items=[
            _item("act", "activity", "a1", "create", {"name": "Reading", "createdAt": NOW.isoformat(), "updatedAt": NOW.isoformat()}),
            _item("task", "task", "t1", "create", _task_payload("Later group")),
        ],
        clock=clock,
    )

    assert [result.status for result in results] == ["error", "success"]
    assert _reload(db, Activity, "a1") is None
    assert _reload(db, Task, "t1") is not None


def test_out_of_range_timestamp_fails_only_its_item(db: Session, seed: Any, clock: FixedClock) -> None:
    results = process_batch(
        db,
        user_id="user-1",
        items=[
            _item("ok", "task", "t-ok", "create", _task_payload("Fine")),
            _item("far", "task", "t-far", "create", {"title": "Far", "updatedAt": "9999-12-31T23:59:59-01:00"}),
        ],
        clock=clock,
    )

    assert [result.status for result in results] == ["success", "error"]
    assert results[1].error == "Invalid task payload"
    assert _reload(db, Task, "t-ok") is not None


def test_unexpected_exception_becomes_item_error(
    db: Session,
    seed: Any,
    clock: FixedClock,
    monkeypatch: Any,
) -> None:
    real_create = TaskRepository.create

    def exploding_create(self: TaskRepository, user_id: str, item: Any) -> Any:
        if item.id == "t-bad":
            raise RuntimeError("boom")
        return real_create(self, user_id, item)

    monkeypatch.setattr(TaskRepository, "create", exploding_create)

    results = process_batch(
        db,
        user_id="user-1",
        items=[
            _item("bad", "task", "t-bad", "create", _task_payload("Bad")),
            _item("good", "task", "t-good", "create", _task_payload("Good")),
            _item("goal", "goal", "g1", "create", {"activityId": "missing", "dailyTargetQuantity": 1, "startDate": "2026-01-01"}),
        ],
        clock=clock,
    )

    assert [result.status for result in results] == ["error", "success", "error"]
    assert results[0].error == "Unexpected error while applying item"
    assert _reload(db, Task, "t-bad") is None
    assert _reload(db, Task, "t-good") is not None
