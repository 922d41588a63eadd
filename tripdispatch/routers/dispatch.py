# tripdispatch/routers/dispatch.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_staff, get_telegram
from ..models.user import User
from ..services.dispatch import dispatcher_confirm
from ..services.telegram import TelegramClient
from ..services.trips import get_trip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["dispatch"])


@router.post("/api/dispatch/confirm")
async def api_dispatch_confirm(
    payload: dict,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    telegram: TelegramClient = Depends(get_telegram),
):
    trip_id = payload.get("trip_id")
    phone = payload.get("phone")
    if not trip_id or not phone:
        raise HTTPException(status_code=400, detail="Не указаны trip_id или phone")
    try:
        trip_id = int(trip_id)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Некорректный trip_id")

    try:
        get_trip(db, trip_id, user)
        result = await dispatcher_confirm(db, telegram, trip_id, str(phone), payload.get("dispatcher_comment"))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    logger.info("Dispatcher %s confirmed trip %s for %s", user.id, trip_id, result["phone"])
    return {"success": True, **result}
