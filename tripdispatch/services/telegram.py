from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


class TelegramError(Exception):
    """Ошибка Bot API: нет токена, сетевой сбой или ответ ok=false."""


def inline_keyboard(rows: list[list[tuple[str, str]]]) -> dict:
    return {
        "inline_keyboard": [
            [{"text": text, "callback_data": data} for text, data in row]
            for row in rows
        ]
    }


def confirm_reject_keyboard(message_id: int) -> dict:
    return inline_keyboard([[
        ("✅ Подтвердить", f"confirm_{message_id}"),
        ("❌ Отклонить", f"reject_{message_id}"),
    ]])


CONTACT_KEYBOARD = {
    "keyboard": [[{"text": "📱 Поделиться номером", "request_contact": True}]],
    "one_time_keyboard": True,
    "resize_keyboard": True,
}


class TelegramClient:
    """
    Тонкая обёртка над Telegram Bot HTTP API.
    Каждый вызов открывает свой httpx.AsyncClient.
    """

    def __init__(
        self,
        token: str | None,
        api_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "TelegramClient":
        return cls(settings.BOT_TOKEN, settings.TELEGRAM_API_URL, settings.TELEGRAM_TIMEOUT_SEC)

    async def call(self, method: str, payload: dict | None = None) -> Any:
        if not self.token:
            raise TelegramError("BOT_TOKEN не указан")

        url = f"{self.api_url}/bot{self.token}/{method}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as c:
                resp = await c.post(url, json=payload or {})
        except httpx.HTTPError as e:
            raise TelegramError(f"{method}: {e}") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise TelegramError(f"{method}: HTTP {resp.status_code}, не JSON") from e

        if not data.get("ok"):
            raise TelegramError(f"{method}: {data.get('description') or resp.status_code}")
        return data.get("result")

    # ---------- сообщения ----------

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: dict | None = None,
        reply_to_message_id: int | None = None,
        parse_mode: str | None = "HTML",
    ) -> dict:
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if reply_markup:
            payload["reply_markup"] = reply_markup
        if reply_to_message_id:
            payload["reply_to_message_id"] = reply_to_message_id
        return await self.call("sendMessage", payload)

    async def send_message_with_buttons(self, chat_id: int, text: str, keyboard: dict) -> dict:
        return await self.send_message(chat_id, text, reply_markup=keyboard)

    async def send_contact_request(self, chat_id: int) -> dict:
        return await self.send_message(
            chat_id,
            "Пожалуйста, поделитесь своим номером телефона для регистрации в системе рассылки.",
            reply_markup=CONTACT_KEYBOARD,
            parse_mode=None,
        )

    async def edit_message_reply_markup(self, chat_id: int, message_id: int, reply_markup: dict | None = None) -> Any:
        return await self.call("editMessageReplyMarkup", {
            "chat_id": chat_id,
            "message_id": message_id,
            "reply_markup": reply_markup or {"inline_keyboard": []},
        })

    async def remove_buttons(self, chat_id: int, message_id: int) -> bool:
        """Убирает inline-кнопки. Ошибка не фатальна: пишем в лог и идём дальше."""
        try:
            await self.edit_message_reply_markup(chat_id, message_id)
            return True
        except TelegramError as e:
            logger.warning("Could not remove buttons from message %s in chat %s: %s", message_id, chat_id, e)
            return False

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> Any:
        payload: dict[str, Any] = {"callback_query_id": callback_query_id, "show_alert": False}
        if text:
            payload["text"] = text
        return await self.call("answerCallbackQuery", payload)

    # ---------- вебхук и меню бота ----------

    async def set_webhook(self, url: str, allowed_updates: list[str], drop_pending_updates: bool = True,
                          secret_token: str | None = None) -> Any:
        payload: dict[str, Any] = {
            "url": url,
            "allowed_updates": allowed_updates,
            "drop_pending_updates": drop_pending_updates,
        }
        if secret_token:
            payload["secret_token"] = secret_token
        return await self.call("setWebhook", payload)

    async def delete_webhook(self, drop_pending_updates: bool = False) -> Any:
        return await self.call("deleteWebhook", {"drop_pending_updates": drop_pending_updates})

    async def get_webhook_info(self) -> dict:
        return await self.call("getWebhookInfo")

    async def set_my_commands(self, commands: list[dict], scope: dict | None = None,
                              language_code: str | None = None) -> Any:
        payload: dict[str, Any] = {"commands": commands}
        if scope:
            payload["scope"] = scope
        if language_code:
            payload["language_code"] = language_code
        return await self.call("setMyCommands", payload)

    async def get_my_commands(self, scope: dict | None = None) -> list[dict]:
        return await self.call("getMyCommands", {"scope": scope} if scope else {})

    async def delete_my_commands(self, scope: dict | None = None) -> Any:
        return await self.call("deleteMyCommands", {"scope": scope} if scope else {})

    async def set_my_description(self, description: str) -> Any:
        return await self.call("setMyDescription", {"description": description})
