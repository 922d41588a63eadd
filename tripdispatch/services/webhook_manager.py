# tripdispatch/services/webhook_manager.py
from __future__ import annotations

import logging

from .telegram import TelegramClient

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_UPDATES = ["message", "callback_query"]

BOT_COMMANDS = [
    {"command": "start", "description": "🚀 Начать работу с ботом"},
    {"command": "status", "description": "📊 Проверить статус регистрации"},
    {"command": "help", "description": "❓ Получить справку"},
]

BOT_DESCRIPTION = (
    "Бот системы уведомлений о рейсах. "
    "Присылает водителям запланированные рейсы и принимает подтверждения."
)

COMMAND_SCOPES = [{"type": "default"}, {"type": "all_private_chats"}]


class WebhookManager:
    """Настройка вебхука и меню бота через Bot API."""

    def __init__(self, telegram: TelegramClient, app_url: str, path: str = "/api/webhook",
                 allowed_updates: list[str] | None = None, secret_token: str | None = None) -> None:
        self.telegram = telegram
        self.app_url = (app_url or "").rstrip("/")
        self.path = path if path.startswith("/") else f"/{path}"
        self.allowed_updates = allowed_updates or list(DEFAULT_ALLOWED_UPDATES)
        self.secret_token = secret_token

    @property
    def expected_url(self) -> str:
        return f"{self.app_url}{self.path}"

    async def set(self, url: str | None = None, drop_pending_updates: bool = True,
                  allowed_updates: list[str] | None = None) -> dict:
        target = url or self.expected_url
        if not target.startswith("https://"):
            raise ValueError("Telegram принимает только https-адрес вебхука")
        updates = allowed_updates or self.allowed_updates
        await self.telegram.set_webhook(target, updates, drop_pending_updates=drop_pending_updates,
                                        secret_token=self.secret_token)
        logger.info("Webhook set to %s (%s)", target, ", ".join(updates))
        return {"url": target, "allowed_updates": updates, "info": await self.info()}

    async def info(self) -> dict:
        return await self.telegram.get_webhook_info()

    async def delete(self, drop_pending_updates: bool = False) -> dict:
        await self.telegram.delete_webhook(drop_pending_updates=drop_pending_updates)
        logger.info("Webhook deleted (drop_pending_updates=%s)", drop_pending_updates)
        return {"deleted": True}

    async def verify(self) -> dict:
        info = await self.info()
        actual = info.get("url") or ""
        return {
            "expected_url": self.expected_url,
            "actual_url": actual,
            "url_matches": actual == self.expected_url,
            "pending_update_count": info.get("pending_update_count", 0),
            "last_error_date": info.get("last_error_date"),
            "last_error_message": info.get("last_error_message"),
            "allowed_updates": info.get("allowed_updates"),
        }

    # ---------- меню бота ----------

    async def set_commands(self, commands: list[dict] | None = None, language_code: str = "ru") -> dict:
        commands = commands or BOT_COMMANDS
        for scope in COMMAND_SCOPES:
            await self.telegram.set_my_commands(commands, scope=scope)
            await self.telegram.set_my_commands(commands, scope=scope, language_code=language_code)
        return {"commands": commands}

    async def get_commands(self) -> dict:
        return {s["type"]: await self.telegram.get_my_commands(scope=s) for s in COMMAND_SCOPES}

    async def delete_commands(self) -> dict:
        for scope in COMMAND_SCOPES:
            await self.telegram.delete_my_commands(scope=scope)
        return {"deleted": True}

    async def set_description(self, description: str | None = None) -> dict:
        text = description or BOT_DESCRIPTION
        await self.telegram.set_my_description(text)
        return {"description": text}
