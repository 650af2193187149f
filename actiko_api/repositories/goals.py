from __future__ import annotations

from typing import Any

from actiko_api.models import ActivityGoal
from actiko_api.repositories.base import RecordRepository
from actiko_api.schemas.records import GoalOut, UpsertGoalRequest


class GoalRepository(RecordRepository[ActivityGoal, UpsertGoalRequest]):
    model = ActivityGoal
    out_schema = GoalOut
    request_schema = UpsertGoalRequest

    def row_values(self, user_id: str, item: UpsertGoalRequest) -> dict[str, Any]:
        return {
            "id": item.id,
            "user_id": user_id,
            "activity_id": item.activity_id,
            "daily_target_quantity": item.daily_target_quantity,
            "start_date": item.start_date,
            "end_date": item.end_date,
            "is_active": item.is_active,
            "description": item.description,
            "created_at": item.created_at,
            "updated_at": item.updated_at,
            "deleted_at": item.deleted_at,
        }
