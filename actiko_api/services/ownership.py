from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from actiko_api.models import Activity


def owned_activity_ids(db: Session, *, user_id: str, activity_ids: Iterable[str]) -> set[str]:
    """Subset of ``activity_ids`` that exist, are live and belong to ``user_id``."""
    requested = {activity_id for activity_id in activity_ids if activity_id}
    if not requested:
        return set()

    rows = db.scalars(
        select(Activity.id).where(
            Activity.user_id == user_id,
            Activity.id.in_(sorted(requested)),
            Activity.deleted_at.is_(None),
        ),
    ).all()
    return set(rows)
