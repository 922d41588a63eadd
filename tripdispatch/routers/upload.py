# tripdispatch/routers/upload.py
from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_staff
from ..models.user import User
from ..services.ingestion import ingest_upload

router = APIRouter(tags=["upload"])


@router.post("/api/upload")
async def api_upload(
    file: UploadFile = File(...),
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
):
    content = await file.read()
    try:
        trip_id, results = ingest_upload(db, content, carpark=user.carpark)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "tripId": trip_id, "results": results}
