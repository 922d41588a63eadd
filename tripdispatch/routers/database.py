# tripdispatch/routers/database.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_admin
from ..services.db_viewer import list_tables, read_table, distinct_values

router = APIRouter(tags=["database"], dependencies=[Depends(require_admin)])

_RESERVED = {"limit", "offset"}


@router.get("/api/database/tables")
def api_tables(db: Session = Depends(get_db)):
    return {"success": True, "tables": list_tables(db)}


@router.get("/api/database/tables/{table}")
def api_table_rows(
    table: str,
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    filters = {k: v for k, v in request.query_params.items() if k not in _RESERVED}
    try:
        data = read_table(db, table, filters, limit=limit, offset=offset)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **data}


@router.get("/api/database/tables/{table}/distinct/{column}")
def api_table_distinct(table: str, column: str, db: Session = Depends(get_db)):
    try:
        values = distinct_values(db, table, column)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "table": table, "column": column, "values": values}
