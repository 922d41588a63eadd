# tripdispatch/routers/points.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_staff, require_admin
from ..services.points import list_points, create_point, update_point, delete_point

router = APIRouter(tags=["points"])


@router.get("/api/points", dependencies=[Depends(require_staff)])
def api_points(db: Session = Depends(get_db)):
    return {"success": True, "points": [p.to_dict() for p in list_points(db)]}


@router.post("/api/points", dependencies=[Depends(require_admin)])
def api_point_create(payload: dict, db: Session = Depends(get_db)):
    try:
        p = create_point(db, payload)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "point": p.to_dict()}


@router.put("/api/points/{point_pk}", dependencies=[Depends(require_admin)])
def api_point_update(point_pk: int, payload: dict, db: Session = Depends(get_db)):
    try:
        p = update_point(db, point_pk, payload)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "point": p.to_dict()}


@router.delete("/api/points/{point_pk}", dependencies=[Depends(require_admin)])
def api_point_delete(point_pk: int, db: Session = Depends(get_db)):
    try:
        delete_point(db, point_pk)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "id": point_pk}
