from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, date, datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from actiko_api.core.clock import FixedClock, as_utc
from actiko_api.models import Activity, ActivityGoal, ActivityLog, Task
from actiko_api.schemas.records import (
    UpsertActivityKindRequest,
    UpsertActivityLogRequest,
    UpsertActivityRequest,
    UpsertGoalRequest,
    UpsertTaskRequest,
)
from actiko_api.services.batch_upsert import (
    BatchSyncHooks,
    sync_activities,
    sync_activity_kinds,
    sync_activity_logs,
    sync_batch,
    sync_goals,
    sync_tasks,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
EARLIER = NOW - timedelta(hours=1)


def _task(task_id: str, *, updated_at: datetime = NOW, title: str = "Client title") -> UpsertTaskRequest:
    return UpsertTaskRequest(id=task_id, title=title, created_at=EARLIER, updated_at=updated_at)


def _log(log_id: str, *, activity_id: str, updated_at: datetime = NOW, quantity: float = 5) -> UpsertActivityLogRequest:
    return UpsertActivityLogRequest(
        id=log_id,
        activity_id=activity_id,
        quantity=quantity,
        date=date(2026, 3, 1),
        created_at=EARLIER,
        updated_at=updated_at,
    )


def _partition_ids(outcome: Any) -> list[str]:
    return sorted(outcome.synced_ids + [row["id"] for row in outcome.server_wins] + outcome.skipped_ids)


class _RecordingHooks:
    def __init__(self, *, owned: set[str] | None = None, server_rows: dict[str, dict[str, Any]] | None = None) -> None:
        self.owned = owned or set()
        self.server_rows = server_rows or {}
        self.upserted: list[list[str]] = []
        self.ownership_requests: list[set[str]] = []

    def upsert(self, items: Sequence[UpsertActivityLogRequest]) -> list[str]:
        ids = [item.id for item in items]
        self.upserted.append(ids)
        return [item_id for item_id in ids if item_id not in self.server_rows]

    def lookup(self, ids: Sequence[str]) -> dict[str, dict[str, Any]]:
        return {item_id: self.server_rows[item_id] for item_id in ids if item_id in self.server_rows}

    def ownership_check(self, parent_ids: set[str]) -> set[str]:
        self.ownership_requests.append(set(parent_ids))
        return parent_ids & self.owned

    def hooks(self) -> BatchSyncHooks[UpsertActivityLogRequest]:
        return BatchSyncHooks(
            upsert=self.upsert,
            lookup_by_ids=self.lookup,
            parent_id=lambda item: item.activity_id,
            ownership_check=self.ownership_check,
        )


def test_empty_batch_touches_nothing() -> None:
    recorder = _RecordingHooks()

    outcome = sync_batch([], recorder.hooks(), clock=FixedClock(NOW))

    assert outcome.synced_ids == [] and outcome.server_wins == [] and outcome.skipped_ids == []
    assert recorder.upserted == []
    assert recorder.ownership_requests == []


def test_unowned_parent_is_skipped_without_write() -> None:
    recorder = _RecordingHooks(owned={"a1"})

    outcome = sync_batch(
        [_log("l1", activity_id="a1"), _log("l2", activity_id="other")],
        recorder.hooks(),
        clock=FixedClock(NOW),
    )

    assert recorder.ownership_requests == [{"a1", "other"}]
    assert recorder.upserted == [["l1"]]
    assert outcome.synced_ids == ["l1"]
    assert outcome.skipped_ids == ["l2"]


def test_clock_skew_boundary_is_inclusive() -> None:
    recorder = _RecordingHooks(owned={"a1"})
    limit = NOW + timedelta(minutes=5)

    outcome = sync_batch(
        [
            _log("at-limit", activity_id="a1", updated_at=limit),
            _log("past-limit", activity_id="a1", updated_at=limit + timedelta(milliseconds=1)),
        ],
        recorder.hooks(),
        clock=FixedClock(NOW),
    )

    assert outcome.synced_ids == ["at-limit"]
    assert outcome.skipped_ids == ["past-limit"]
    assert recorder.upserted == [["at-limit"]]


def test_duplicate_ids_in_one_batch_keep_latest() -> None:
    recorder = _RecordingHooks(owned={"a1"})

    outcome = sync_batch(
        [
            _log("l1", activity_id="a1", updated_at=EARLIER, quantity=1),
            _log("l1", activity_id="a1", updated_at=NOW, quantity=2),
        ],
        recorder.hooks(),
        clock=FixedClock(NOW),
    )

    assert recorder.upserted == [["l1"]]
    assert outcome.synced_ids == ["l1"]


def test_tasks_insert_then_newer_overwrites(db: Session, seed: Any, clock: FixedClock) -> None:
    first = sync_tasks(db, user_id="user-1", items=[_task("t1", updated_at=EARLIER, title="v1")], clock=clock)
    db.commit()
    second = sync_tasks(db, user_id="user-1", items=[_task("t1", updated_at=NOW, title="v2")], clock=clock)
    db.commit()

    assert first.synced_ids == ["t1"]
    assert second.synced_ids == ["t1"]
    stored = db.scalar(select(Task).where(Task.id == "t1").execution_options(populate_existing=True))
    assert stored is not None
    assert stored.title == "v2"
    assert stored.user_id == "user-1"


def test_exact_timestamp_tie_keeps_server_row(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.task("t1", title="Server title", updated_at=EARLIER)

    outcome = sync_tasks(db, user_id="user-1", items=[_task("t1", updated_at=EARLIER)], clock=clock)
    db.commit()

    assert outcome.synced_ids == []
    assert [row["id"] for row in outcome.server_wins] == ["t1"]
    assert outcome.server_wins[0]["title"] == "Server title"
    db.expire_all()
    assert db.get(Task, "t1").title == "Server title"


def test_cross_user_row_is_skipped_and_untouched(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.task("t1", user_id="user-2", title="Theirs", updated_at=EARLIER)

    outcome = sync_tasks(db, user_id="user-1", items=[_task("t1", updated_at=NOW, title="Mine")], clock=clock)
    db.commit()

    assert outcome.skipped_ids == ["t1"]
    assert outcome.synced_ids == [] and outcome.server_wins == []
    db.expire_all()
    stored = db.get(Task, "t1")
    assert stored.user_id == "user-2"
    assert stored.title == "Theirs"


def test_stale_goal_reports_server_version_and_leaves_storage(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.activity("a1")
    seed.goal("g1", activity_id="a1", updated_at=NOW, daily_target_quantity=45)

    stale = UpsertGoalRequest(
        id="g1",
        activity_id="a1",
        daily_target_quantity=10,
        start_date=date(2026, 1, 1),
        created_at=EARLIER,
        updated_at=EARLIER,
    )
    outcome = sync_goals(db, user_id="user-1", items=[stale], clock=clock)
    db.commit()

    assert outcome.synced_ids == [] and outcome.skipped_ids == []
    assert len(outcome.server_wins) == 1
    server_row = outcome.server_wins[0]
    assert server_row["id"] == "g1"
    assert server_row["dailyTargetQuantity"] == 45
    assert datetime.fromisoformat(server_row["updatedAt"].replace("Z", "+00:00")) == NOW
    db.expire_all()
    stored = db.get(ActivityGoal, "g1")
    assert stored.daily_target_quantity == 45
    assert as_utc(stored.updated_at) == NOW


def test_mixed_activity_log_batch_uses_every_bucket(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.activity("a1")
    seed.activity("b1", user_id="user-2")
    seed.log("l3", activity_id="a1", updated_at=NOW, quantity=99)

    outcome = sync_activity_logs(
        db,
        user_id="user-1",
        items=[
            _log("l1", activity_id="a1", updated_at=NOW),
            _log("l2", activity_id="b1", updated_at=NOW),
            _log("l3", activity_id="a1", updated_at=EARLIER, quantity=1),
        ],
        clock=clock,
    )
    db.commit()

    assert outcome.synced_ids == ["l1"]
    assert outcome.skipped_ids == ["l2"]
    assert [row["id"] for row in outcome.server_wins] == ["l3"]
    assert outcome.server_wins[0]["quantity"] == 99
    assert _partition_ids(outcome) == ["l1", "l2", "l3"]
    assert db.get(ActivityLog, "l2") is None


def test_activity_icon_urls_survive_null_upload(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.activity(
        "a1",
        updated_at=EARLIER,
        icon_type="upload",
        icon_url="https://cdn.example.com/a1.png",
        icon_thumbnail_url="https://cdn.example.com/a1-thumb.png",
    )

    outcome = sync_activities(
        db,
        user_id="user-1",
        items=[
            UpsertActivityRequest(
                id="a1",
                name="Renamed",
                icon_type="upload",
                created_at=EARLIER,
                updated_at=NOW,
            ),
        ],
        clock=clock,
    )
    db.commit()

    assert outcome.synced_ids == ["a1"]
    stored = db.scalar(select(Activity).where(Activity.id == "a1").execution_options(populate_existing=True))
    assert stored.name == "Renamed"
    assert stored.icon_url == "https://cdn.example.com/a1.png"
    assert stored.icon_thumbnail_url == "https://cdn.example.com/a1-thumb.png"


def test_activity_kinds_require_owned_activity(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.activity("a1")
    seed.activity("b1", user_id="user-2")

    outcome = sync_activity_kinds(
        db,
        user_id="user-1",
        items=[
            UpsertActivityKindRequest(id="k1", activity_id="a1", name="Easy", created_at=EARLIER, updated_at=NOW),
            UpsertActivityKindRequest(id="k2", activity_id="b1", name="Hard", created_at=EARLIER, updated_at=NOW),
        ],
        clock=clock,
    )
    db.commit()

    assert outcome.synced_ids == ["k1"]
    assert outcome.skipped_ids == ["k2"]


def test_client_tombstone_is_applied_like_any_write(db: Session, seed: Any, clock: FixedClock) -> None:
    seed.task("t1", updated_at=EARLIER)
    tombstone = UpsertTaskRequest(id="t1", title="Task", created_at=EARLIER, updated_at=NOW, deleted_at=NOW)

    outcome = sync_tasks(db, user_id="user-1", items=[tombstone], clock=clock)
    db.commit()

    assert outcome.synced_ids == ["t1"]
    db.expire_all()
    stored = db.get(Task, "t1")
    assert stored.is_tombstone
