# tripdispatch/services/bot.py
"""
Обработка входящих апдейтов Telegram (вебхук).

Ветки: нажатие inline-кнопки, контакт, команда, произвольный текст.
Каждая ветка возвращает короткий статус, он уходит в ответ вебхука.
"""
from __future__ import annotations

import html
import logging

from sqlalchemy.orm import Session

from ..models import ResponseStatus, User, UserRole
from .dispatch import AlreadyAnswered, record_response
from .telegram import TelegramClient, TelegramError
from .users import get_by_telegram_id, upsert_from_contact

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "🤖 Добро пожаловать в систему уведомлений!\n\n"
    "Этот бот используется для получения важных сообщений о рейсах.\n\n"
    "📱 Для регистрации в системе, пожалуйста, поделитесь своим номером телефона."
)
HELP_UNREGISTERED_TEXT = (
    "👋 Для работы с системой уведомлений необходимо зарегистрироваться.\n\n"
    "📱 Пожалуйста, поделитесь своим номером телефона, нажав на кнопку ниже."
)
HELP_REGISTERED_TEXT = (
    "ℹ️ Бот присылает уведомления о запланированных рейсах.\n\n"
    "Под каждым уведомлением есть кнопки «Подтвердить» и «Отклонить».\n"
    "/status — проверить статус регистрации"
)
UNKNOWN_COMMAND_TEXT = "❓ Неизвестная команда. Используйте /start для начала работы."
FOREIGN_CONTACT_TEXT = "❌ Пожалуйста, отправьте свой собственный номер телефона кнопкой ниже."
ERROR_TEXT = "❌ Произошла ошибка. Попробуйте еще раз."
ALREADY_ANSWERED_TEXT = "Вы уже ответили на этот рейс"

_ROLE_TITLES = {
    UserRole.ADMIN.value: "администратор",
    UserRole.OPERATOR.value: "оператор",
    UserRole.DRIVER.value: "водитель",
}


def profile_text(user: User) -> str:
    e = html.escape
    return (
        f"👋 Здравствуйте, {e(user.first_name or user.name or 'водитель')}!\n\n"
        "Вы уже зарегистрированы в системе уведомлений.\n"
        f"📱 Телефон: {e(user.phone or '—')}\n"
        f"👤 Роль: {_ROLE_TITLES.get(user.role, user.role)}\n"
        f"🏢 Автопарк: {e(user.carpark or 'не указан')}\n"
        f"{'✅ Номер подтвержден' if user.verified else '⏳ Ожидает подтверждения оператором'}\n\n"
        "Ожидайте сообщения о предстоящих рейсах."
    )


async def handle_update(db: Session, telegram: TelegramClient, update: dict) -> str:
    if update.get("callback_query"):
        return await _handle_callback(db, telegram, update["callback_query"])

    message = update.get("message") or {}
    if not message:
        return "ignored"

    chat_id = (message.get("chat") or {}).get("id")
    sender = message.get("from") or {}

    if message.get("contact"):
        return await _handle_contact(db, telegram, chat_id, sender, message["contact"])

    text = (message.get("text") or "").strip()
    if not text:
        return "ignored"

    user = get_by_telegram_id(db, sender["id"]) if sender.get("id") else None

    if text.startswith("/"):
        command = text.split()[0].split("@")[0].lower()
        return await _handle_command(telegram, chat_id, command, user)

    if user is None or not user.is_registered:
        await telegram.send_message(chat_id, HELP_UNREGISTERED_TEXT)
        await telegram.send_contact_request(chat_id)
        return "help_sent"

    await telegram.send_message(chat_id, HELP_REGISTERED_TEXT)
    return "help_sent"


async def _handle_command(telegram: TelegramClient, chat_id: int, command: str, user: User | None) -> str:
    registered = user is not None and user.is_registered

    if command in ("/start", "/status"):
        if registered:
            await telegram.send_message(chat_id, profile_text(user))
            return "profile_sent"
        await telegram.send_message(chat_id, WELCOME_TEXT)
        await telegram.send_contact_request(chat_id)
        return "contact_requested"

    if command == "/help":
        if registered:
            await telegram.send_message(chat_id, HELP_REGISTERED_TEXT)
        else:
            await telegram.send_message(chat_id, HELP_UNREGISTERED_TEXT)
            await telegram.send_contact_request(chat_id)
        return "help_sent"

    await telegram.send_message(chat_id, UNKNOWN_COMMAND_TEXT)
    return "unknown_command"


async def _handle_contact(db: Session, telegram: TelegramClient, chat_id: int, sender: dict, contact: dict) -> str:
    # принимаем только собственный номер отправителя
    owner = contact.get("user_id")
    if owner is not None and sender.get("id") is not None and int(owner) != int(sender["id"]):
        await telegram.send_message(chat_id, FOREIGN_CONTACT_TEXT)
        await telegram.send_contact_request(chat_id)
        return "contact_rejected"

    if not sender.get("id"):
        return "ignored"

    user, created = upsert_from_contact(db, sender["id"], contact, username=sender.get("username"))
    logger.info("Contact from telegram_id=%s: user %s %s", sender["id"], user.id, "created" if created else "updated")

    await telegram.send_message(
        chat_id,
        "✅ Отлично! Регистрация завершена.\n\n"
        f"📱 Телефон: {html.escape(user.phone)}\n\n"
        "Ожидайте оповещения о предстоящих рейсах.",
        reply_markup={"remove_keyboard": True},
    )
    return "registered" if created else "updated"


async def _handle_callback(db: Session, telegram: TelegramClient, cq: dict) -> str:
    data = cq.get("data") or ""
    action, _, raw_id = data.partition("_")
    if action not in ("confirm", "reject") or not raw_id.isdigit():
        await telegram.answer_callback_query(cq["id"])
        return "callback_ignored"

    status = ResponseStatus.CONFIRMED if action == "confirm" else ResponseStatus.REJECTED
    try:
        affected = record_response(db, int(raw_id), status)
    except LookupError:
        await telegram.answer_callback_query(cq["id"], "Сообщение не найдено")
        return "callback_not_found"
    except AlreadyAnswered:
        await telegram.answer_callback_query(cq["id"], ALREADY_ANSWERED_TEXT)
        msg = cq.get("message") or {}
        if (msg.get("chat") or {}).get("id") and msg.get("message_id"):
            await telegram.remove_buttons(msg["chat"]["id"], msg["message_id"])
        return "already_answered"

    logger.info("Response %s for message %s (%s rows)", status.value, raw_id, len(affected))

    await telegram.answer_callback_query(
        cq["id"], "Рейс подтвержден!" if status is ResponseStatus.CONFIRMED else "Рейс отклонен!"
    )

    msg = cq.get("message") or {}
    chat_id = (msg.get("chat") or {}).get("id") or (cq.get("from") or {}).get("id")
    if chat_id and msg.get("message_id"):
        await telegram.remove_buttons(chat_id, msg["message_id"])
    if chat_id:
        await telegram.send_message(
            chat_id,
            "✅ Спасибо! Рейс подтвержден." if status is ResponseStatus.CONFIRMED
            else "❌ Рейс отклонен. Спасибо за ответ.",
        )
    return status.value


def update_chat_id(update: dict) -> int | None:
    if update.get("callback_query"):
        cq = update["callback_query"]
        return ((cq.get("message") or {}).get("chat") or {}).get("id") or (cq.get("from") or {}).get("id")
    return ((update.get("message") or {}).get("chat") or {}).get("id")


async def notify_failure(telegram: TelegramClient, update: dict) -> None:
    """Сообщаем водителю о сбое. Ошибка самой отправки только логируется."""
    chat_id = update_chat_id(update)
    if not chat_id:
        return
    try:
        await telegram.send_message(chat_id, ERROR_TEXT)
    except TelegramError as e:
        logger.warning("Could not report failure to chat %s: %s", chat_id, e)
