from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import ColumnElement, Select, Table, and_, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from actiko_api.core.exceptions import UnexpectedError
from actiko_api.models import SoftDeleteMixin
from actiko_api.schemas.records import _UpsertBase

ModelT = TypeVar("ModelT", bound=SoftDeleteMixin)
RequestT = TypeVar("RequestT", bound=_UpsertBase)


def dialect_insert(db: Session, table: Table) -> Any:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise UnexpectedError(f"Conditional upsert is not supported on dialect {dialect}")


class RecordRepository(Generic[ModelT, RequestT]):
    """Storage access for one syncable entity type.

    Every read goes through ``_scoped`` so ownership and tombstone filtering
    live in one place. ``include_tombstones`` is the only way to see
    soft-deleted rows.
    """

    model: ClassVar[type[Any]]
    out_schema: ClassVar[type[BaseModel]]
    request_schema: ClassVar[type[_UpsertBase]]
    # Columns kept when the incoming value is null, e.g. uploaded icon urls.
    preserve_when_null: ClassVar[tuple[str, ...]] = ()
    immutable_columns: ClassVar[tuple[str, ...]] = ("id", "user_id", "created_at")

    def __init__(self, db: Session) -> None:
        self.db = db

    @property
    def table(self) -> Table:
        return self.model.__table__

    def owner_clause(self, user_id: str) -> ColumnElement[bool]:
        return self.model.user_id == user_id

    def row_values(self, user_id: str, item: RequestT) -> dict[str, Any]:
        raise NotImplementedError

    def _scoped(self, user_id: str, *, include_tombstones: bool) -> Select[Any]:
        query = select(self.model).where(self.owner_clause(user_id))
        if not include_tombstones:
            query = query.where(self.model.deleted_at.is_(None))
        return query

    def get_by_id_and_user(
        self,
        user_id: str,
        record_id: str,
        *,
        include_tombstones: bool = False,
    ) -> ModelT | None:
        return self.db.scalar(
            self._scoped(user_id, include_tombstones=include_tombstones)
            .where(self.model.id == record_id)
            .execution_options(populate_existing=True),
        )

    def get_by_ids(self, user_id: str, ids: Sequence[str]) -> list[ModelT]:
        if not ids:
            return []
        return list(
            self.db.scalars(
                self._scoped(user_id, include_tombstones=True)
                .where(self.model.id.in_(list(ids)))
                .execution_options(populate_existing=True),
            ).all(),
        )

    def list_for_user(self, user_id: str, *, since: datetime | None = None, include_tombstones: bool = True) -> list[ModelT]:
        query = self._scoped(user_id, include_tombstones=include_tombstones)
        if since is not None:
            query = query.where(self.model.updated_at > since)
        return list(self.db.scalars(query.order_by(self.model.updated_at.asc(), self.model.id.asc())).all())

    def changes_after(self, user_id: str, since: datetime, limit: int) -> tuple[list[ModelT], bool]:
        rows = list(
            self.db.scalars(
                self._scoped(user_id, include_tombstones=True)
                .where(self.model.updated_at > since)
                .order_by(self.model.updated_at.asc(), self.model.id.asc())
                .limit(limit + 1),
            ).all(),
        )
        return rows[:limit], len(rows) > limit

    def changed_at(self, user_id: str, instant: datetime) -> list[ModelT]:
        return list(
            self.db.scalars(
                self._scoped(user_id, include_tombstones=True)
                .where(self.model.updated_at == instant)
                .order_by(self.model.id.asc()),
            ).all(),
        )

    def create(self, user_id: str, item: RequestT) -> ModelT:
        values = self.row_values(user_id, item)
        record = self.model(**self._attribute_values(values))
        self.db.add(record)
        self.db.flush()
        return record

    def update(self, record: ModelT, user_id: str, item: RequestT) -> ModelT:
        values = self.row_values(user_id, item)
        for column_name, value in values.items():
            if column_name in self.immutable_columns:
                continue
            if column_name in self.preserve_when_null and value is None:
                continue
            setattr(record, self._attribute_name(column_name), value)
        self.db.flush()
        return record

    def soft_delete(self, record: ModelT, deleted_at: datetime) -> ModelT:
        record.deleted_at = deleted_at
        if record.updated_at is None or _naive(record.updated_at) < _naive(deleted_at):
            record.updated_at = deleted_at
        self.db.flush()
        return record

    def upsert_guard(self, user_id: str, excluded: Any) -> ColumnElement[bool]:
        return and_(
            self.table.c.updated_at < excluded.updated_at,
            self.table.c.user_id == user_id,
        )

    def upsert_many(self, user_id: str, items: Sequence[RequestT]) -> list[str]:
        """Insert-or-overwrite keyed by id; returns the ids actually written.

        An existing row is overwritten only when the guard from
        ``upsert_guard`` holds (strictly older ``updated_at`` and same
        owner), so a tie leaves the server row untouched.
        """
        if not items:
            return []

        rows = [self.row_values(user_id, item) for item in items]
        stmt = dialect_insert(self.db, self.table).values(rows)
        excluded = stmt.excluded
        set_: dict[str, Any] = {}
        for column_name in rows[0]:
            if column_name in self.immutable_columns:
                continue
            if column_name in self.preserve_when_null:
                set_[column_name] = func.coalesce(excluded[column_name], self.table.c[column_name])
            else:
                set_[column_name] = excluded[column_name]

        stmt = stmt.on_conflict_do_update(
            index_elements=[self.table.c.id],
            set_=set_,
            where=self.upsert_guard(user_id, excluded),
        ).returning(self.table.c.id)

        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise UnexpectedError(f"Bulk upsert into {self.table.name} failed") from exc

    def to_payload(self, record: ModelT) -> dict[str, Any]:
        return self.out_schema.model_validate(record).model_dump(by_alias=True, mode="json")

    def _attribute_name(self, column_name: str) -> str:
        return self.model.__mapper__.get_property_by_column(self.table.c[column_name]).key

    def _attribute_values(self, values: dict[str, Any]) -> dict[str, Any]:
        return {self._attribute_name(name): value for name, value in values.items()}


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None) if value.tzinfo is not None else value
