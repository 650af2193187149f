from __future__ import annotations

import os


os.environ.setdefault("ACTIKO_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ACTIKO_REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ACTIKO_JWT_SECRET", "test-secret")
os.environ.setdefault("ACTIKO_APP_ENV", "test")

from collections.abc import Iterator
from datetime import UTC, date, datetime
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from actiko_api.core.clock import FixedClock
from actiko_api.db.base import Base
from actiko_api.models import Activity, ActivityGoal, ActivityKind, ActivityLog, Task, User

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite needs explicit BEGIN for SAVEPOINT support.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine: Engine) -> Iterator[Session]:
    session = Session(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


class Seeder:
    """Writes committed fixture rows straight through the ORM."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _save(self, record: Any) -> Any:
        self.db.add(record)
        self.db.commit()
        return record

    def user(self, user_id: str = "user-1") -> User:
        return self._save(User(id=user_id, login_id=f"{user_id}@example.com", name=user_id))

    def activity(self, activity_id: str, *, user_id: str = "user-1", updated_at: datetime = NOW, **fields: Any) -> Activity:
        values: dict[str, Any] = {"name": f"Activity {activity_id}", "quantity_unit": "min"}
        values.update(fields)
        return self._save(
            Activity(id=activity_id, user_id=user_id, created_at=updated_at, updated_at=updated_at, **values),
        )

    def kind(self, kind_id: str, *, activity_id: str, updated_at: datetime = NOW) -> ActivityKind:
        return self._save(
            ActivityKind(
                id=kind_id,
                activity_id=activity_id,
                name=f"Kind {kind_id}",
                created_at=updated_at,
                updated_at=updated_at,
            ),
        )

    def log(
        self,
        log_id: str,
        *,
        activity_id: str,
        user_id: str = "user-1",
        updated_at: datetime = NOW,
        quantity: float = 10,
    ) -> ActivityLog:
        return self._save(
            ActivityLog(
                id=log_id,
                user_id=user_id,
                activity_id=activity_id,
                quantity=quantity,
                date=date(2026, 3, 1),
                created_at=updated_at,
                updated_at=updated_at,
            ),
        )

    def goal(
        self,
        goal_id: str,
        *,
        activity_id: str,
        user_id: str = "user-1",
        updated_at: datetime = NOW,
        daily_target_quantity: float = 30,
    ) -> ActivityGoal:
        return self._save(
            ActivityGoal(
                id=goal_id,
                user_id=user_id,
                activity_id=activity_id,
                daily_target_quantity=daily_target_quantity,
                start_date=date(2026, 1, 1),
                created_at=updated_at,
                updated_at=updated_at,
            ),
        )

    def task(
        self,
        task_id: str,
        *,
        user_id: str = "user-1",
        title: str = "Task",
        created_at: datetime | None = None,
        updated_at: datetime = NOW,
        deleted_at: datetime | None = None,
    ) -> Task:
        return self._save(
            Task(
                id=task_id,
                user_id=user_id,
                title=title,
                created_at=created_at or updated_at,
                updated_at=updated_at,
                deleted_at=deleted_at,
            ),
        )


@pytest.fixture
def seed(db: Session) -> Seeder:
    seeder = Seeder(db)
    seeder.user("user-1")
    seeder.user("user-2")
    return seeder
