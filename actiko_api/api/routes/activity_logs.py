from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from actiko_api.api.deps import ClockDep, CurrentUser, DBSession, enforce_batch_cap
from actiko_api.api.routes.activities import outcome_out
from actiko_api.core.clock import as_utc
from actiko_api.repositories.activity_logs import ActivityLogRepository
from actiko_api.schemas.records import ActivityLogOut, ActivityLogsResponse, SyncActivityLogsRequest, SyncOutcomeOut
from actiko_api.services.batch_upsert import sync_activity_logs

router = APIRouter(tags=["activity-logs"])


@router.get("/activity-logs", response_model=ActivityLogsResponse)
def list_activity_logs(
    db: DBSession,
    user: CurrentUser,
    since: datetime | None = Query(default=None),
) -> ActivityLogsResponse:
    logs = ActivityLogRepository(db).list_for_user(user.id, since=as_utc(since) if since is not None else None)
    return ActivityLogsResponse(activity_logs=[ActivityLogOut.model_validate(log) for log in logs])


@router.post("/activity-logs/sync", response_model=SyncOutcomeOut)
def sync_activity_logs_batch(
    payload: SyncActivityLogsRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
) -> SyncOutcomeOut:
    enforce_batch_cap(len(payload.activity_logs), field="activityLogs")
    outcome = sync_activity_logs(db, user_id=user.id, items=payload.activity_logs, clock=clock)
    db.commit()
    return outcome_out(outcome)
