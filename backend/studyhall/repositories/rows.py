"""SQLAlchemy-backed implementation of the directory row store."""

from __future__ import annotations

import asyncio
import logging
import operator
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import Column, ColumnElement, select, update
from sqlalchemy.exc import IntegrityError, MultipleResultsFound, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..constants import DUPLICATE_KEY_CODE, NO_ROWS_CODE, TRANSIENT_CODE
from ..db.base import Base
from ..db.models import MODELS_BY_TABLE
from ..db.session import get_session_factory, session_scope
from ..directory import Filters, Row, RowResult, RowsResult, WriteResult

logger = logging.getLogger(__name__)

_COMPARATORS: Dict[str, Callable[[Any, Any], ColumnElement[bool]]] = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
}


def _model_for(table: str) -> type[Base]:
    try:
        return MODELS_BY_TABLE[table]
    except KeyError as exc:
        raise ValueError(f"Unknown table: {table}") from exc


def _column(model: type[Base], name: str) -> Column[Any]:
    try:
        return model.__table__.c[name]  # type: ignore[attr-defined]
    except KeyError as exc:
        raise ValueError(f"Unknown column {name!r} on {model.__tablename__}") from exc


def _where(model: type[Base], filters: Filters) -> List[ColumnElement[bool]]:
    clauses: List[ColumnElement[bool]] = []
    for key, value in filters.items():
        name, _, lookup = key.partition("__")
        column = _column(model, name)
        if not lookup:
            clauses.append(column.is_(None) if value is None else column == value)
        elif lookup == "in":
            clauses.append(column.in_(list(value)))
        elif lookup in _COMPARATORS:
            clauses.append(_COMPARATORS[lookup](column, value))
        else:
            raise ValueError(f"Unsupported filter lookup: {key}")
    return clauses


def _order(model: type[Base], order_by: Sequence[str]) -> List[Any]:
    ordering = []
    for entry in order_by:
        descending = entry.startswith("-")
        column = _column(model, entry.lstrip("-"))
        ordering.append(column.desc() if descending else column.asc())
    return ordering


def _columns_only(model: type[Base], data: Row) -> Row:
    columns = model.__table__.c  # type: ignore[attr-defined]
    unknown = [key for key in data if key not in columns]
    if unknown:
        raise ValueError(f"Unknown columns for {model.__tablename__}: {', '.join(sorted(unknown))}")
    return dict(data)


def _to_row(instance: Base) -> Row:
    return {column.key: getattr(instance, column.key) for column in instance.__table__.columns}  # type: ignore[attr-defined]


def _integrity_code(exc: IntegrityError) -> str:
    pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if isinstance(pgcode, str) and pgcode:
        return pgcode
    if "UNIQUE" in str(exc.orig).upper():
        return DUPLICATE_KEY_CODE
    return "23000"


class SqlRowStore:
    """Row store over the local relational schema.

    Each call opens its own session and runs in a worker thread so the event loop
    never blocks on the database driver.
    """

    def __init__(self, session_factory: Optional[sessionmaker[Session]] = None) -> None:
        self._session_factory = session_factory

    def _factory(self) -> sessionmaker[Session]:
        return self._session_factory or get_session_factory()

    async def read_row(self, table: str, filters: Filters) -> RowResult:
        return await asyncio.to_thread(self._read_row, table, filters)

    async def select_rows(self, table: str, filters: Filters, order_by: Sequence[str] = ()) -> RowsResult:
        return await asyncio.to_thread(self._select_rows, table, filters, order_by)

    async def insert_row(self, table: str, data: Row) -> WriteResult:
        return await asyncio.to_thread(self._insert_row, table, data)

    async def update_row(self, table: str, filters: Filters, data: Row) -> WriteResult:
        return await asyncio.to_thread(self._update_row, table, filters, data)

    async def upsert_row(self, table: str, data: Row, on_conflict: Sequence[str] = ("id",)) -> WriteResult:
        return await asyncio.to_thread(self._upsert_row, table, data, on_conflict)

    def _read_row(self, table: str, filters: Filters) -> RowResult:
        model = _model_for(table)
        stmt = select(model).where(*_where(model, filters))
        try:
            with session_scope(self._factory(), commit=False) as session:
                instance = session.execute(stmt).scalar_one_or_none()
                if instance is None:
                    return RowResult(error_code=NO_ROWS_CODE, error_message="No rows returned")
                return RowResult(row=_to_row(instance))
        except MultipleResultsFound:
            logger.error("Single-row read on %s matched several rows for %s", table, filters)
            return RowResult(error_code=TRANSIENT_CODE, error_message="Multiple rows returned for a single-row read")
        except SQLAlchemyError as exc:
            logger.warning("Row read failed for %s: %s", table, exc)
            return RowResult(error_code=TRANSIENT_CODE, error_message=str(exc))

    def _select_rows(self, table: str, filters: Filters, order_by: Sequence[str]) -> RowsResult:
        model = _model_for(table)
        stmt = select(model).where(*_where(model, filters)).order_by(*_order(model, order_by))
        try:
            with session_scope(self._factory(), commit=False) as session:
                return RowsResult(rows=[_to_row(instance) for instance in session.execute(stmt).scalars()])
        except SQLAlchemyError as exc:
            logger.warning("Row select failed for %s: %s", table, exc)
            return RowsResult(error_code=TRANSIENT_CODE, error_message=str(exc))

    def _insert_row(self, table: str, data: Row) -> WriteResult:
        model = _model_for(table)
        payload = _columns_only(model, data)
        try:
            with session_scope(self._factory()) as session:
                instance = model(**payload)
                session.add(instance)
                session.flush()
                return WriteResult(rows=[_to_row(instance)], count=1)
        except IntegrityError as exc:
            return WriteResult(error_code=_integrity_code(exc), error_message=str(exc.orig))
        except SQLAlchemyError as exc:
            logger.warning("Row insert failed for %s: %s", table, exc)
            return WriteResult(error_code=TRANSIENT_CODE, error_message=str(exc))

    def _update_row(self, table: str, filters: Filters, data: Row) -> WriteResult:
        model = _model_for(table)
        payload = _columns_only(model, data)
        stmt = update(model).where(*_where(model, filters)).values(**payload)
        try:
            with session_scope(self._factory()) as session:
                result = session.execute(stmt)
                return WriteResult(count=result.rowcount or 0)
        except IntegrityError as exc:
            return WriteResult(error_code=_integrity_code(exc), error_message=str(exc.orig))
        except SQLAlchemyError as exc:
            logger.warning("Row update failed for %s: %s", table, exc)
            return WriteResult(error_code=TRANSIENT_CODE, error_message=str(exc))

    def _upsert_row(self, table: str, data: Row, on_conflict: Sequence[str]) -> WriteResult:
        model = _model_for(table)
        payload = _columns_only(model, data)
        missing = [key for key in on_conflict if key not in payload]
        if missing:
            raise ValueError(f"Upsert payload for {table} lacks conflict columns: {', '.join(missing)}")
        stmt = select(model).where(*_where(model, {key: payload[key] for key in on_conflict}))
        try:
            with session_scope(self._factory()) as session:
                instance = session.execute(stmt).scalar_one_or_none()
                if instance is None:
                    instance = model(**payload)
                    session.add(instance)
                else:
                    for key, value in payload.items():
                        setattr(instance, key, value)
                session.flush()
                return WriteResult(rows=[_to_row(instance)], count=1)
        except IntegrityError as exc:
            return WriteResult(error_code=_integrity_code(exc), error_message=str(exc.orig))
        except SQLAlchemyError as exc:
            logger.warning("Row upsert failed for %s: %s", table, exc)
            return WriteResult(error_code=TRANSIENT_CODE, error_message=str(exc))


__all__ = ["SqlRowStore"]
