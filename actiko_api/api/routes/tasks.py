from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from actiko_api.api.deps import ClockDep, CurrentUser, DBSession, enforce_batch_cap
from actiko_api.api.routes.activities import outcome_out
from actiko_api.core.clock import as_utc
from actiko_api.repositories.tasks import TaskRepository
from actiko_api.schemas.records import SyncOutcomeOut, SyncTasksRequest, TaskOut, TasksResponse
from actiko_api.services.batch_upsert import sync_tasks

router = APIRouter(tags=["tasks"])


@router.get("/tasks", response_model=TasksResponse)
def list_tasks(
    db: DBSession,
    user: CurrentUser,
    since: datetime | None = Query(default=None),
) -> TasksResponse:
    tasks = TaskRepository(db).list_for_user(user.id, since=as_utc(since) if since is not None else None)
    return TasksResponse(tasks=[TaskOut.model_validate(task) for task in tasks])


@router.post("/tasks/sync", response_model=SyncOutcomeOut)
def sync_tasks_batch(
    payload: SyncTasksRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
) -> SyncOutcomeOut:
    enforce_batch_cap(len(payload.tasks), field="tasks")
    outcome = sync_tasks(db, user_id=user.id, items=payload.tasks, clock=clock)
    db.commit()
    return outcome_out(outcome)
