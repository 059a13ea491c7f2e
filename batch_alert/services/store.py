"""Generic CRUD adapter over one ORM table.

Every call either returns persisted state read back from the database or
raises :class:`StoreError`. The session is rolled back on failure so callers
never observe half-applied writes.
"""

from __future__ import annotations

import logging
from typing import Any, Generic, Mapping, Sequence, TypeVar

from sqlalchemy import select as sa_select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from batch_alert.core.errors import ConflictError, RecordNotFoundError, StoreError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class TableStore(Generic[ModelT]):
    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self.session = session
        self.model = model

    @property
    def table_name(self) -> str:
        return getattr(self.model, "__tablename__", self.model.__name__)

    async def _fail(self, action: str, exc: SQLAlchemyError) -> StoreError:
        await self.session.rollback()
        logger.warning("Store %s on %s failed: %s", action, self.table_name, exc)
        if isinstance(exc, IntegrityError):
            return ConflictError(f"Failed to {action} {self.table_name}: constraint violated")
        return StoreError(f"Failed to {action} {self.table_name}")

    async def select(
        self,
        filters: Mapping[str, Any] | None = None,
        order_by: Sequence[str] | None = None,
        *,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[ModelT]:
        """Return rows matching equality ``filters``, ordered and limited.

        Rows are always tie-broken by primary key in the same direction so
        repeated reads without writes are identical.
        """

        query = sa_select(self.model)
        for column_name, value in (filters or {}).items():
            column = getattr(self.model, column_name)
            if value is None:
                query = query.where(column.is_(None))
            else:
                query = query.where(column == value)
        columns = [getattr(self.model, name) for name in (order_by or [])]
        columns.append(getattr(self.model, "id"))
        query = query.order_by(
            *(column.desc() if descending else column.asc() for column in columns)
        )
        if limit is not None:
            query = query.limit(limit)
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as exc:
            raise await self._fail("select", exc) from exc
        return list(result.scalars().all())

    async def get(self, row_id: int) -> ModelT:
        try:
            row = await self.session.get(self.model, row_id, populate_existing=True)
        except SQLAlchemyError as exc:
            raise await self._fail("read", exc) from exc
        if row is None:
            raise RecordNotFoundError(f"{self.model.__name__} {row_id} not found")
        return row

    async def insert(self, values: Mapping[str, Any]) -> ModelT:
        row = self.model(**dict(values))
        self.session.add(row)
        try:
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            raise await self._fail("insert into", exc) from exc
        return row

    async def update(self, row_id: int, partial: Mapping[str, Any]) -> ModelT:
        """Apply ``partial`` in a single commit and return the refreshed row."""

        row = await self.get(row_id)
        for key, value in partial.items():
            setattr(row, key, value)
        try:
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            raise await self._fail("update", exc) from exc
        return row

    async def delete(self, row_id: int) -> None:
        row = await self.get(row_id)
        try:
            await self.session.delete(row)
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("delete from", exc) from exc

    async def null_references(
        self, column_name: str, target_id: int, *, commit: bool = True
    ) -> None:
        """Detach rows pointing at ``target_id`` through ``column_name``.

        With ``commit=False`` the change stays pending so the caller can commit
        it together with its own write, e.g. the delete of the referenced row.
        """

        rows = await self.select({column_name: target_id})
        for row in rows:
            setattr(row, column_name, None)
        if not rows or not commit:
            return
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("detach rows in", exc) from exc
