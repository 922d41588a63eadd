# tripdispatch/routers/subscriptions.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_staff, get_poller
from ..models.user import User
from ..services.trips import get_trip
from ..services.notifications import (
    SubscriptionPoller, subscribe, unsubscribe, get_subscription, list_subscriptions,
)

router = APIRouter(tags=["subscriptions"])


@router.post("/api/trips/{trip_id}/subscribe")
def api_subscribe(trip_id: int, payload: dict, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    try:
        sub = subscribe(db, user, trip_id, payload.get("interval_minutes"))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "subscription": sub.to_dict()}


def _unsubscribe(db: Session, user: User, trip_id: int) -> dict:
    try:
        sub = unsubscribe(db, user, trip_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"success": True, "subscription": sub.to_dict()}


@router.delete("/api/trips/{trip_id}/subscribe")
def api_unsubscribe(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    return _unsubscribe(db, user, trip_id)


@router.post("/api/trips/{trip_id}/unsubscribe")
def api_unsubscribe_post(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    return _unsubscribe(db, user, trip_id)


@router.get("/api/trips/{trip_id}/subscription")
def api_subscription(trip_id: int, user: User = Depends(require_staff), db: Session = Depends(get_db)):
    sub = get_subscription(db, user, trip_id)
    return {"success": True, "subscription": sub.to_dict() if sub else None}


@router.get("/api/subscriptions")
def api_subscriptions(user: User = Depends(require_staff), db: Session = Depends(get_db)):
    return {"success": True, "subscriptions": [s.to_dict() for s in list_subscriptions(db, user)]}


@router.post("/api/trips/{trip_id}/send-notifications")
async def api_trip_send_notifications(
    trip_id: int,
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    poller: SubscriptionPoller = Depends(get_poller),
):
    try:
        get_trip(db, trip_id, user)
        result = await poller.notify_trip(db, trip_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return {"success": True, **result}
