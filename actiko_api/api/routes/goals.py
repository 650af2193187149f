from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Query

from actiko_api.api.deps import ClockDep, CurrentUser, DBSession, enforce_batch_cap
from actiko_api.api.routes.activities import outcome_out
from actiko_api.core.clock import as_utc
from actiko_api.repositories.goals import GoalRepository
from actiko_api.schemas.records import GoalOut, GoalsResponse, SyncGoalsRequest, SyncOutcomeOut
from actiko_api.services.batch_upsert import sync_goals

router = APIRouter(tags=["goals"])


@router.get("/goals", response_model=GoalsResponse)
def list_goals(
    db: DBSession,
    user: CurrentUser,
    since: datetime | None = Query(default=None),
) -> GoalsResponse:
    goals = GoalRepository(db).list_for_user(user.id, since=as_utc(since) if since is not None else None)
    return GoalsResponse(goals=[GoalOut.model_validate(goal) for goal in goals])


@router.post("/goals/sync", response_model=SyncOutcomeOut)
def sync_goals_batch(
    payload: SyncGoalsRequest,
    db: DBSession,
    user: CurrentUser,
    clock: ClockDep,
) -> SyncOutcomeOut:
    enforce_batch_cap(len(payload.goals), field="goals")
    outcome = sync_goals(db, user_id=user.id, items=payload.goals, clock=clock)
    db.commit()
    return outcome_out(outcome)
