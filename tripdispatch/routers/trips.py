# tripdispatch/routers/trips.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import require_staff, get_telegram
from ..models import TripMessage
from ..models.user import User
from ..services.corrections import TripConflict, find_conflicts, save_corrections
from ..services.dispatch import dispatch_trip, resend_group
from ..services.telegram import TelegramClient
from ..services.trips import (
    list_trips, get_trip, resolve_trip_id, trip_counts, trip_to_dict,
    trip_messages, trip_points, delete_trip,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["trips"])


def _checked_trip(db: Session, trip_id: int, user: User):
    try:
        return get_trip(db, trip_id, user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.get("/api/trips")
def api_trips(user: User = Depends(require_staff), db: Session = Depends(get_db)):
    try:
        trips = list_trips(db, user)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"success": True, "trips": trips}


@router.get("/api/trips/{trip_id}")
def api_trip(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    trip = _checked_trip(db, trip_id, user)
    return {"success": True, "trip": trip_to_dict(trip, trip_counts(db, [trip.id])[trip.id])}


@router.get("/api/trips/{trip_id}/messages")
def api_trip_messages(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    _checked_trip(db, trip_id, user)
    return {"success": True, "messages": [m.to_dict() for m in trip_messages(db, trip_id)]}


@router.get("/api/trips/{trip_id}/points")
def api_trip_points(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    _checked_trip(db, trip_id, user)
    return {"success": True, "points": [p.to_dict() for p in trip_points(db, trip_id)]}


@router.delete("/api/trips/{trip_id}")
def api_trip_delete(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    _checked_trip(db, trip_id, user)
    try:
        result = delete_trip(db, trip_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Trip %s deleted by user %s", trip_id, user.id)
    return {"success": True, **result}


# ---------- отправка ----------

@router.post("/api/trips/{trip_id}/send")
async def api_trip_send(
    trip_id: str,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    telegram: TelegramClient = Depends(get_telegram),
):
    try:
        tid = resolve_trip_id(db, trip_id, user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _checked_trip(db, tid, user)

    result = await dispatch_trip(db, telegram, tid, delay=settings.SEND_DELAY_SEC)
    return {"success": True, **result}


@router.post("/api/trips/messages/{message_id}/resend")
async def api_message_resend(
    message_id: int,
    payload: Optional[dict] = Body(None),
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    telegram: TelegramClient = Depends(get_telegram),
):
    msg = db.get(TripMessage, message_id)
    if not msg:
        raise HTTPException(status_code=404, detail="Сообщение не найдено")
    _checked_trip(db, msg.trip_id, user)

    is_correction = bool((payload or {}).get("is_correction"))
    try:
        result = await resend_group(db, telegram, message_id, is_correction=is_correction)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}


# ---------- корректировки ----------

def _conflict_response(conflicts: list[dict]) -> JSONResponse:
    return JSONResponse(status_code=409, content={
        "success": False,
        "error": "trip_already_assigned",
        "trip_identifiers": sorted({c["trip_identifier"] for c in conflicts}),
        "conflict_data": conflicts,
    })


@router.post("/api/trips/check-conflicts")
def api_check_conflicts(payload: dict, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    identifiers = payload.get("trip_identifiers")
    if not identifiers or not isinstance(identifiers, list):
        raise HTTPException(status_code=400, detail="Не указаны trip_identifiers")

    conflicts = find_conflicts(db, [str(x) for x in identifiers], exclude_phone=payload.get("exclude_phone"))
    if conflicts:
        return _conflict_response(conflicts)
    return {"success": True, "conflicts": []}


@router.post("/api/trips/{trip_id}/corrections")
async def api_trip_corrections(
    trip_id: int,
    payload: dict,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    telegram: TelegramClient = Depends(get_telegram),
):
    _checked_trip(db, trip_id, user)
    if not payload.get("phone"):
        raise HTTPException(status_code=400, detail="Не указан телефон")

    try:
        result = await save_corrections(
            db, telegram, trip_id, str(payload["phone"]),
            payload.get("corrections") or [],
            payload.get("deleted_trips") or [],
        )
    except TripConflict as e:
        return _conflict_response(e.conflicts)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Trip %s corrected for %s by user %s", trip_id, result["phone"], user.id)
    return {"success": True, **result}
