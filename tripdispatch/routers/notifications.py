# tripdispatch/routers/notifications.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_staff, get_poller, verify_cron
from ..models.user import User
from ..services.notifications import SubscriptionPoller

router = APIRouter(tags=["notifications"])


# ---------- ручной запуск из админки ----------
@router.get("/api/notifications/send")
async def api_notifications_check(
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    poller: SubscriptionPoller = Depends(get_poller),
):
    result = await poller.run(db, force=False)
    return {"success": True, **result}


@router.post("/api/notifications/send")
async def api_notifications_force(
    user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    poller: SubscriptionPoller = Depends(get_poller),
):
    result = await poller.run(db, force=True)
    return {"success": True, **result}


# ---------- планировщик ----------
@router.api_route("/api/cron/send-notifications", methods=["GET", "POST"], dependencies=[Depends(verify_cron)])
async def api_cron_send_notifications(
    db: Session = Depends(get_db),
    poller: SubscriptionPoller = Depends(get_poller),
):
    result = await poller.run(db, force=False)
    return {"success": True, **result}
