# tripdispatch/routers/bot_admin.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException

from ..config import settings
from ..deps import require_admin, get_telegram
from ..services.telegram import TelegramClient
from ..services.webhook_manager import WebhookManager

router = APIRouter(tags=["bot-admin"], dependencies=[Depends(require_admin)])


def get_webhook_manager(telegram: TelegramClient = Depends(get_telegram)) -> WebhookManager:
    return WebhookManager(telegram, settings.APP_URL, settings.WEBHOOK_PATH, secret_token=settings.WEBHOOK_SECRET)


@router.get("/api/bot/webhook")
async def api_webhook_info(manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, "info": await manager.info()}


@router.post("/api/bot/webhook")
async def api_webhook_set(payload: Optional[dict] = Body(None), manager: WebhookManager = Depends(get_webhook_manager)):
    payload = payload or {}
    try:
        result = await manager.set(
            url=payload.get("url"),
            drop_pending_updates=bool(payload.get("drop_pending_updates", True)),
            allowed_updates=payload.get("allowed_updates"),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}


@router.delete("/api/bot/webhook")
async def api_webhook_delete(drop_pending_updates: bool = False,
                             manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, **(await manager.delete(drop_pending_updates=drop_pending_updates))}


@router.get("/api/bot/webhook/verify")
async def api_webhook_verify(manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, **(await manager.verify())}


@router.get("/api/bot/commands")
async def api_commands_get(manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, "commands": await manager.get_commands()}


@router.post("/api/bot/commands")
async def api_commands_set(payload: Optional[dict] = Body(None), manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, **(await manager.set_commands((payload or {}).get("commands")))}


@router.delete("/api/bot/commands")
async def api_commands_delete(manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, **(await manager.delete_commands())}


@router.post("/api/bot/description")
async def api_description_set(payload: Optional[dict] = Body(None), manager: WebhookManager = Depends(get_webhook_manager)):
    return {"success": True, **(await manager.set_description((payload or {}).get("description")))}
