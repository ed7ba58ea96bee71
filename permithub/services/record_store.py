from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, Protocol, TypeVar

from sqlalchemy import Table, delete, func, insert, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from permithub.errors import StoreError, StoreErrorKind, TransientStoreError
from permithub.models import Base

logger = logging.getLogger(__name__)

T = TypeVar('T')

_SQLSTATE_KINDS = {
    '23503': StoreErrorKind.FOREIGN_KEY_VIOLATION,
    '23505': StoreErrorKind.UNIQUE_VIOLATION,
    '42501': StoreErrorKind.PERMISSION_DENIED,
}


class RecordStore(Protocol):
    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    async def upsert(self, table: str, rows: list[dict[str, Any]], *, on_conflict: str) -> list[dict[str, Any]]: ...

    async def update(self, table: str, values: dict[str, Any], filters: dict[str, Any]) -> int: ...

    async def delete(self, table: str, filters: dict[str, Any]) -> int: ...

    async def count(self, table: str, filters: dict[str, Any] | None = None) -> int: ...


def _sqlstate(exc: BaseException) -> str | None:
    orig = getattr(exc, 'orig', None) or exc
    # psycopg 3 exposes sqlstate, psycopg2 exposes pgcode.
    code = getattr(orig, 'sqlstate', None) or getattr(orig, 'pgcode', None)
    return str(code) if code else None


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    code = _sqlstate(exc)
    if code in _SQLSTATE_KINDS:
        return _SQLSTATE_KINDS[code]
    if code is None and isinstance(exc, DBAPIError):
        # Drivers without SQLSTATE (sqlite) only report the constraint in the message.
        text = str(getattr(exc, 'orig', exc)).lower()
        if 'foreign key constraint' in text:
            return StoreErrorKind.FOREIGN_KEY_VIOLATION
        if 'unique constraint' in text:
            return StoreErrorKind.UNIQUE_VIOLATION
    return StoreErrorKind.OTHER


def to_store_error(exc: BaseException) -> StoreError:
    kind = classify_store_error(exc)
    message = str(getattr(exc, 'orig', None) or exc).strip()
    if kind is StoreErrorKind.FOREIGN_KEY_VIOLATION:
        return TransientStoreError(message, code=_sqlstate(exc))
    return StoreError(message, kind=kind, code=_sqlstate(exc))


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class SqlRecordStore:
    """RecordStore over the portal's SQLAlchemy tables, addressed by table name."""

    def __init__(self, session_factory: Callable[[], Session] | None = None) -> None:
        if session_factory is None:
            from permithub.db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory

    def _table(self, name: str) -> Table:
        table = Base.metadata.tables.get(name)
        if table is None:
            raise StoreError(f'Unknown table {name}')
        return table

    def _where(self, table: Table, filters: dict[str, Any] | None) -> list:
        conditions = []
        for column_name, value in (filters or {}).items():
            column = table.c[column_name]
            if isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(column.in_(list(value)))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)
        return conditions

    def _run(self, work: Callable[[Session], T]) -> T:
        with self._session_factory() as db:
            try:
                result = work(db)
                db.commit()
                return result
            except SQLAlchemyError as exc:
                db.rollback()
                error = to_store_error(exc)
                logger.warning('store error kind=%s code=%s: %s', error.kind.value, error.code, error.message)
                raise error from exc

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        target = self._table(table)
        stmt = select(target).where(*self._where(target, filters))
        if order_by:
            column = target.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        def work(db: Session) -> list[dict[str, Any]]:
            return [{key: _plain(value) for key, value in row.items()} for row in db.execute(stmt).mappings().all()]

        return await run_in_threadpool(self._run, work)

    async def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not rows:
            return []
        target = self._table(table)
        stmt = insert(target).values(rows).returning(*target.c)

        def work(db: Session) -> list[dict[str, Any]]:
            return [{key: _plain(value) for key, value in row.items()} for row in db.execute(stmt).mappings().all()]

        return await run_in_threadpool(self._run, work)

    async def upsert(self, table: str, rows: list[dict[str, Any]], *, on_conflict: str) -> list[dict[str, Any]]:
        if not rows:
            return []
        target = self._table(table)
        stmt = pg_insert(target).values(rows)
        replaced = {name: stmt.excluded[name] for name in rows[0] if name != on_conflict}
        stmt = stmt.on_conflict_do_update(index_elements=[target.c[on_conflict]], set_=replaced).returning(*target.c)

        def work(db: Session) -> list[dict[str, Any]]:
            return [{key: _plain(value) for key, value in row.items()} for row in db.execute(stmt).mappings().all()]

        return await run_in_threadpool(self._run, work)

    async def update(self, table: str, values: dict[str, Any], filters: dict[str, Any]) -> int:
        if not filters:
            raise StoreError(f'Refusing unfiltered update on {table}')
        target = self._table(table)
        stmt = update(target).where(*self._where(target, filters)).values(**values)
        return await run_in_threadpool(self._run, lambda db: db.execute(stmt).rowcount)

    async def delete(self, table: str, filters: dict[str, Any]) -> int:
        if not filters:
            raise StoreError(f'Refusing unfiltered delete on {table}')
        target = self._table(table)
        stmt = delete(target).where(*self._where(target, filters))
        return await run_in_threadpool(self._run, lambda db: db.execute(stmt).rowcount)

    async def count(self, table: str, filters: dict[str, Any] | None = None) -> int:
        target = self._table(table)
        stmt = select(func.count()).select_from(target).where(*self._where(target, filters))
        return await run_in_threadpool(self._run, lambda db: int(db.execute(stmt).scalar_one()))
