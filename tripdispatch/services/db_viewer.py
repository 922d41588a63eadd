# tripdispatch/services/db_viewer.py
"""
Просмотр таблиц для администратора.

Имена таблиц и колонок берутся только из метаданных ORM, пересечённых
с живым каталогом БД. Запросы строятся из объектов Table/Column,
пользовательские строки в SQL не подставляются.
"""
from __future__ import annotations

import datetime as dt
import decimal

from sqlalchemy import Table, func, inspect, select
from sqlalchemy.orm import Session

from ..db import Base

EXCLUDED_TABLES = {"user_sessions"}
MAX_LIMIT = 1000


def allowed_tables(db: Session) -> dict[str, Table]:
    live = set(inspect(db.get_bind()).get_table_names())
    return {
        name: table
        for name, table in sorted(Base.metadata.tables.items())
        if name in live and name not in EXCLUDED_TABLES
    }


def _table(db: Session, name: str) -> Table:
    table = allowed_tables(db).get(name)
    if table is None:
        raise LookupError(f"Таблица {name} не найдена")
    return table


def _column(table: Table, name: str):
    if name not in table.c:
        raise LookupError(f"Колонка {name} не найдена в таблице {table.name}")
    return table.c[name]


def _coerce(column, raw: str):
    if raw.lower() == "null":
        return None
    try:
        py = column.type.python_type
    except NotImplementedError:
        return raw
    if py is bool:
        return raw.lower() in ("1", "true", "t", "yes")
    if py in (int, float, decimal.Decimal):
        try:
            return py(raw)
        except (ValueError, decimal.InvalidOperation):
            raise ValueError(f"Некорректное значение для {column.name}: {raw}")
    if py is dt.datetime:
        try:
            return dt.datetime.fromisoformat(raw)
        except ValueError:
            raise ValueError(f"Некорректная дата для {column.name}: {raw}")
    return raw


def _jsonable(value):
    if isinstance(value, (dt.datetime, dt.date)):
        return value.isoformat()
    if isinstance(value, decimal.Decimal):
        return float(value)
    return value


def list_tables(db: Session) -> list[dict]:
    out = []
    for name, table in allowed_tables(db).items():
        count = db.execute(select(func.count()).select_from(table)).scalar_one()
        out.append({
            "name": name,
            "rows": int(count),
            "columns": [{"name": c.name, "type": str(c.type)} for c in table.columns],
        })
    return out


def read_table(db: Session, name: str, filters: dict[str, str] | None = None,
               limit: int = 100, offset: int = 0) -> dict:
    table = _table(db, name)
    limit = max(1, min(int(limit), MAX_LIMIT))
    offset = max(0, int(offset))

    conditions = []
    for col_name, raw in (filters or {}).items():
        col = _column(table, col_name)
        value = _coerce(col, raw)
        conditions.append(col.is_(None) if value is None else col == value)

    total = db.execute(select(func.count()).select_from(table).where(*conditions)).scalar_one()
    order = list(table.primary_key.columns) or list(table.columns)[:1]
    rows = db.execute(
        select(table).where(*conditions).order_by(*order).limit(limit).offset(offset)
    ).mappings().all()

    return {
        "table": name,
        "columns": [c.name for c in table.columns],
        "rows": [{k: _jsonable(v) for k, v in r.items()} for r in rows],
        "total": int(total),
        "limit": limit,
        "offset": offset,
    }


def distinct_values(db: Session, name: str, column: str) -> list:
    table = _table(db, name)
    col = _column(table, column)
    values = db.execute(select(col).distinct().order_by(col).limit(MAX_LIMIT)).scalars().all()
    return [_jsonable(v) for v in values]
