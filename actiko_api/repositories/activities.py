from __future__ import annotations

from typing import Any

from sqlalchemy import ColumnElement, and_, select

from actiko_api.models import Activity, ActivityKind, IconType
from actiko_api.repositories.base import RecordRepository
from actiko_api.schemas.records import (
    ActivityKindOut,
    ActivityOut,
    UpsertActivityKindRequest,
    UpsertActivityRequest,
)


class ActivityRepository(RecordRepository[Activity, UpsertActivityRequest]):
    model = Activity
    out_schema = ActivityOut
    request_schema = UpsertActivityRequest
    preserve_when_null = ("icon_url", "icon_thumbnail_url")

    def row_values(self, user_id: str, item: UpsertActivityRequest) -> dict[str, Any]:
        return {
            "id": item.id,
            "user_id": user_id,
            "name": item.name,
            "label": item.label,
            "emoji": item.emoji,
            "icon_type": IconType(item.icon_type),
            "icon_url": item.icon_url,
            "icon_thumbnail_url": item.icon_thumbnail_url,
            "description": item.description,
            "quantity_unit": item.quantity_unit,
            "order_index": item.order_index,
            "show_combined_stats": item.show_combined_stats,
            "created_at": item.created_at,
            "updated_at": item.updated_at,
            "deleted_at": item.deleted_at,
        }


class ActivityKindRepository(RecordRepository[ActivityKind, UpsertActivityKindRequest]):
    """Kinds have no user column; ownership is inherited from the parent activity."""

    model = ActivityKind
    out_schema = ActivityKindOut
    request_schema = UpsertActivityKindRequest
    immutable_columns = ("id", "created_at")

    def owner_clause(self, user_id: str) -> ColumnElement[bool]:
        return ActivityKind.activity_id.in_(select(Activity.id).where(Activity.user_id == user_id))

    def upsert_guard(self, user_id: str, excluded: Any) -> ColumnElement[bool]:
        return and_(
            self.table.c.updated_at < excluded.updated_at,
            self.table.c.activity_id.in_(select(Activity.id).where(Activity.user_id == user_id)),
        )

    def row_values(self, user_id: str, item: UpsertActivityKindRequest) -> dict[str, Any]:
        return {
            "id": item.id,
            "activity_id": item.activity_id,
            "name": item.name,
            "color": item.color,
            "order_index": item.order_index,
            "created_at": item.created_at,
            "updated_at": item.updated_at,
            "deleted_at": item.deleted_at,
        }
