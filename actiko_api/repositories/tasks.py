from __future__ import annotations

from typing import Any

from actiko_api.models import Task
from actiko_api.repositories.base import RecordRepository
from actiko_api.schemas.records import TaskOut, UpsertTaskRequest


class TaskRepository(RecordRepository[Task, UpsertTaskRequest]):
    model = Task
    out_schema = TaskOut
    request_schema = UpsertTaskRequest

    def row_values(self, user_id: str, item: UpsertTaskRequest) -> dict[str, Any]:
        return {
            "id": item.id,
            "user_id": user_id,
            "title": item.title,
            "start_date": item.start_date,
            "due_date": item.due_date,
            "done_date": item.done_date,
            "memo": item.memo,
            "archived_at": item.archived_at,
            "created_at": item.created_at,
            "updated_at": item.updated_at,
            "deleted_at": item.deleted_at,
        }
