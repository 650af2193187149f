from __future__ import annotations

from typing import Any

from actiko_api.models import ActivityLog
from actiko_api.repositories.base import RecordRepository
from actiko_api.schemas.records import ActivityLogOut, UpsertActivityLogRequest


class ActivityLogRepository(RecordRepository[ActivityLog, UpsertActivityLogRequest]):
    model = ActivityLog
    out_schema = ActivityLogOut
    request_schema = UpsertActivityLogRequest

    def row_values(self, user_id: str, item: UpsertActivityLogRequest) -> dict[str, Any]:
        return {
            "id": item.id,
            "user_id": user_id,
            "activity_id": item.activity_id,
            "activity_kind_id": item.activity_kind_id,
            "quantity": item.quantity,
            "memo": item.memo,
            "date": item.date,
            "done_hour": item.time,
            "created_at": item.created_at,
            "updated_at": item.updated_at,
            "deleted_at": item.deleted_at,
        }
