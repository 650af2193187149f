from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from actiko_api.api.deps import ClockDep, CurrentUser, DBSession, enforce_batch_cap
from actiko_api.core.clock import as_utc
from actiko_api.repositories.activities import ActivityKindRepository, ActivityRepository
from actiko_api.schemas.records import (
    ActivitiesResponse,
    ActivityKindOut,
    ActivityOut,
    SyncActivitiesRequest,
    SyncActivitiesResponse,
    SyncOutcomeOut,
)
from actiko_api.services.batch_upsert import SyncOutcome, sync_activities, sync_activity_kinds

router = APIRouter(tags=["activities"])


def outcome_out(outcome: SyncOutcome) -> SyncOutcomeOut:
    return SyncOutcomeOut(
        synced_ids=outcome.synced_ids,
        server_wins=outcome.server_wins,
        skipped_ids=outcome.skipped_ids,
    )


@router.get("/activities", response_model=ActivitiesResponse)
def list_activities(
    db: DBSession,
    user: CurrentUser,
    since: datetime | None = Query(default=None),
) -> ActivitiesResponse:
    since_utc = as_utc(since) if since is not None else None
    activities = ActivityRepository(db).list_for_user(user.id, since=since_utc, include_tombstones=False)
    kinds = ActivityKindRepository(db).list_for_user(user.id, since=since_utc, include_tombstones=False)
    return ActivitiesResponse(
        activities=[ActivityOut.model_validate(activity) for activity in activities],
        activity_kinds=[ActivityKindOut.model_validate(kind) for kind in kinds],
    )


@router.post("/activities/sync", response_model=SyncActivitiesResponse)
def sync_activities_batch(
    payload: SyncActivitiesRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
) -> SyncActivitiesResponse:
    enforce_batch_cap(len(payload.activities), field="activities")
    enforce_batch_cap(len(payload.activity_kinds), field="activityKinds")

    activities = sync_activities(db, user_id=user.id, items=payload.activities, clock=clock)
    kinds = sync_activity_kinds(db, user_id=user.id, items=payload.activity_kinds, clock=clock)
    db.commit()
    return SyncActivitiesResponse(activities=outcome_out(activities), activity_kinds=outcome_out(kinds))
