# tripdispatch/routers/webhook.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import get_telegram, verify_webhook_secret
from ..models.common import utcnow
from ..services.bot import handle_update, notify_failure
from ..services.telegram import TelegramClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post(settings.WEBHOOK_PATH, dependencies=[Depends(verify_webhook_secret)])
async def telegram_webhook(
    update: dict,
    db: Session = Depends(get_db),
    telegram: TelegramClient = Depends(get_telegram),
):
    logger.debug("Update %s received", update.get("update_id"))
    try:
        result = await handle_update(db, telegram, update)
    except Exception as e:
        db.rollback()
        logger.exception("Failed to handle update %s", update.get("update_id"))
        await notify_failure(telegram, update)
        raise HTTPException(status_code=500, detail="Ошибка обработки обновления") from e
    return {"ok": True, "status": result}


@router.get(settings.WEBHOOK_PATH)
def telegram_webhook_health():
    return {"ok": True, "status": "webhook is alive", "time": utcnow().isoformat()}
