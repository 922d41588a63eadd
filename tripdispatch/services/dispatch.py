# tripdispatch/services/dispatch.py
from __future__ import annotations

import asyncio
import datetime as dt
import html
import logging
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models import (
    Point, Trip, TripMessage, TripPoint, MessageStatus, ResponseStatus, PointType,
)
from ..models.common import utcnow
from .telegram import TelegramClient, TelegramError, confirm_reject_keyboard
from .users import get_by_phone, normalize_phone

logger = logging.getLogger(__name__)

DISPATCHER_CONFIRM_COMMENT = "Подтверждено диспетчером"


class AlreadyAnswered(ValueError):
    """Водитель уже ответил на рейс иначе."""


@dataclass
class TripBlock:
    message: TripMessage
    loading: list[Point] = field(default_factory=list)
    unloading: list[Point] = field(default_factory=list)

    @property
    def points(self) -> list[Point]:
        return self.loading + self.unloading


# ---------- текст сообщения ----------

def format_loading_time(value: str | None) -> str:
    if not value:
        return "—"
    try:
        return dt.datetime.fromisoformat(value).strftime("%d.%m.%Y %H:%M")
    except ValueError:
        return value


def build_route_url(points: list[Point]) -> str | None:
    """Маршрут в Яндекс.Картах, только если координаты есть у всех точек и их хотя бы две."""
    if len(points) < 2 or not all(p.has_coordinates for p in points):
        return None
    rtext = "~".join(f"{p.longitude},{p.latitude}" for p in points)
    return f"https://yandex.ru/maps/?rtext={rtext}&rtt=auto"


def compose_message(first_name: str | None, blocks: list[TripBlock], is_correction: bool = False) -> str:
    e = html.escape
    lines = ["🌅 Доброго времени суток!", "", f"👤 Уважаемый, {e(first_name or 'Водитель')}", ""]
    if is_correction:
        lines += ["⚠️ <b>Корректировка рейса</b>", ""]

    for b in blocks:
        m = b.message
        lines.append(f"🚛 На Вас запланирован рейс <b>{e(m.trip_identifier)}</b>")
        lines.append(f"🚗 Транспорт: {e(m.vehicle_number or 'Не указан')}")
        lines.append(f"⏰ Плановое время погрузки: {e(format_loading_time(m.planned_loading_time))}")
        lines.append("")

        if b.loading:
            lines.append("📦 Погрузка:")
            for i, p in enumerate(b.loading, 1):
                lines.append(f"{i}) {e(p.point_name)}")
            lines.append("")

        if b.unloading:
            lines.append("📤 Разгрузка:")
            for i, p in enumerate(b.unloading, 1):
                lines.append(f"{i}) {e(p.point_name)}")
                if p.reception_windows:
                    lines.append(f"   🕐 Окна приемки: {e(', '.join(p.reception_windows))}")
            lines.append("")

        if m.driver_comment:
            lines += ["💬 Комментарий по рейсу:", e(m.driver_comment), ""]

        route = build_route_url(b.points)
        if route:
            lines += [f'🗺️ <a href="{e(route)}">Построить маршрут</a>', ""]

    lines.append("🙏 Просьба подтвердить рейс")
    return "\n".join(lines)


# ---------- выборки ----------

def load_blocks(db: Session, messages: list[TripMessage]) -> list[TripBlock]:
    blocks = []
    for m in messages:
        rows = db.execute(
            select(TripPoint, Point)
            .join(Point, Point.id == TripPoint.point_id)
            .where(
                TripPoint.trip_id == m.trip_id,
                TripPoint.trip_identifier == m.trip_identifier,
                TripPoint.driver_phone == m.phone,
            )
            .order_by(TripPoint.point_num, TripPoint.id)
        ).all()
        block = TripBlock(message=m)
        for tp, p in rows:
            (block.loading if tp.point_type == PointType.LOADING.value else block.unloading).append(p)
        blocks.append(block)
    return blocks


def resolve_chat_id(db: Session, message: TripMessage) -> tuple[int | None, str | None]:
    """(chat_id, first_name) для телефона сообщения."""
    user = get_by_phone(db, message.phone)
    first_name = (user.first_name or user.name) if user else None
    if message.telegram_id:
        return message.telegram_id, first_name
    return (user.telegram_id if user else None), first_name


def _group_messages(db: Session, trip_id: int, phone: str) -> list[TripMessage]:
    return list(db.execute(
        select(TripMessage)
        .where(
            TripMessage.trip_id == trip_id,
            TripMessage.phone == phone,
            TripMessage.status != MessageStatus.DELETED.value,
        )
        .order_by(TripMessage.id)
    ).scalars().all())


def _mark_sent(messages: list[TripMessage], chat_id: int, telegram_message_id: int | None, text: str) -> None:
    now = utcnow()
    for m in messages:
        m.status = MessageStatus.SENT.value
        m.sent_at = now
        m.telegram_id = chat_id
        m.telegram_message_id = telegram_message_id
        m.message = text
        m.error_message = None


def _mark_error(messages: list[TripMessage], error: str) -> None:
    for m in messages:
        m.status = MessageStatus.ERROR.value
        m.error_message = error


# ---------- рассылка ----------

async def dispatch_trip(db: Session, telegram: TelegramClient, trip_id: int, delay: float = 0.0) -> dict:
    """
    Отправляет все pending-сообщения рассылки.
    Одно сообщение на телефон, внутри все рейсы этого водителя.
    """
    trip = db.get(Trip, trip_id)
    if not trip:
        raise LookupError("Рассылка не найдена")

    pending = db.execute(
        select(TripMessage)
        .where(TripMessage.trip_id == trip_id, TripMessage.status == MessageStatus.PENDING.value)
        .order_by(TripMessage.id)
    ).scalars().all()

    by_phone: dict[str, list[TripMessage]] = {}
    for m in pending:
        by_phone.setdefault(m.phone, []).append(m)

    result = {"trip_id": trip_id, "total": len(pending), "sent": 0, "errors": 0, "skipped": 0, "details": []}

    first = True
    for phone, messages in by_phone.items():
        chat_id, first_name = resolve_chat_id(db, messages[0])
        if not chat_id:
            result["skipped"] += len(messages)
            result["details"].append({"phone": phone, "status": "skipped", "error": "Нет Telegram ID"})
            continue

        if not first and delay > 0:
            await asyncio.sleep(delay)
        first = False

        text = compose_message(first_name, load_blocks(db, messages))
        try:
            sent = await telegram.send_message(chat_id, text, reply_markup=confirm_reject_keyboard(messages[0].id))
        except TelegramError as e:
            logger.error("Trip %s: send to %s failed: %s", trip_id, phone, e)
            _mark_error(messages, str(e))
            db.commit()
            result["errors"] += len(messages)
            result["details"].append({"phone": phone, "status": "error", "error": str(e)})
            continue

        telegram_message_id = (sent or {}).get("message_id")
        _mark_sent(messages, chat_id, telegram_message_id, text)
        db.commit()
        result["sent"] += len(messages)
        result["details"].append({
            "phone": phone,
            "status": "sent",
            "trip_identifiers": [m.trip_identifier for m in messages],
            "telegram_message_id": telegram_message_id,
        })

    logger.info("Trip %s dispatched: sent=%s errors=%s skipped=%s",
                trip_id, result["sent"], result["errors"], result["skipped"])
    return result


async def resend_group(db: Session, telegram: TelegramClient, message_id: int, is_correction: bool = False) -> dict:
    """
    Повторная отправка объединённого сообщения водителю.
    Старые кнопки снимаем, ответы сбрасываем в pending. Новых строк не создаём.
    """
    msg = db.get(TripMessage, message_id)
    if not msg:
        raise LookupError("Сообщение не найдено")

    group = _group_messages(db, msg.trip_id, msg.phone)
    chat_id, first_name = resolve_chat_id(db, msg)
    if not chat_id:
        raise ValueError("У пользователя нет Telegram ID")

    for old_id in sorted({m.telegram_message_id for m in group if m.telegram_message_id}):
        await telegram.remove_buttons(chat_id, old_id)

    text = compose_message(first_name, load_blocks(db, group), is_correction=is_correction)
    try:
        sent = await telegram.send_message(chat_id, text, reply_markup=confirm_reject_keyboard(group[0].id))
    except TelegramError as e:
        logger.error("Resend of message %s failed: %s", message_id, e)
        _mark_error(group, str(e))
        db.commit()
        raise

    telegram_message_id = (sent or {}).get("message_id")
    _mark_sent(group, chat_id, telegram_message_id, text)
    for m in group:
        m.response_status = ResponseStatus.PENDING.value
        m.response_at = None
        m.response_comment = None
    db.commit()

    return {
        "message_id": message_id,
        "telegram_message_id": telegram_message_id,
        "updated": len(group),
        "message": text,
    }


# ---------- ответы ----------

def record_response(db: Session, message_id: int, status: ResponseStatus,
                    comment: str | None = None) -> list[TripMessage]:
    """
    Ответ водителя на кнопку. Применяется ко всем сообщениям того же
    водителя в рассылке, ушедшим одним Telegram-сообщением.
    Повтор того же ответа ничего не меняет, противоположный даёт AlreadyAnswered.
    """
    msg = db.get(TripMessage, message_id)
    if not msg:
        raise LookupError("Сообщение не найдено")

    q = select(TripMessage).where(TripMessage.trip_id == msg.trip_id, TripMessage.phone == msg.phone)
    if msg.telegram_message_id is not None:
        q = q.where(TripMessage.telegram_message_id == msg.telegram_message_id)
    else:
        q = q.where(TripMessage.id == msg.id)
    affected = list(db.execute(q).scalars().all())

    # ответ принимается один раз за цикл отправки; сброс только через resend
    values = {"response_status": status.value, "response_at": utcnow()}
    if comment is not None:
        values["response_comment"] = comment
    updated = db.execute(
        update(TripMessage)
        .where(
            TripMessage.id.in_([m.id for m in affected]),
            TripMessage.response_status == ResponseStatus.PENDING.value,
        )
        .values(**values)
    ).rowcount
    db.commit()

    if not updated:
        for m in affected:
            db.refresh(m)
        if any(m.response_status != status.value for m in affected):
            raise AlreadyAnswered("На рейс уже получен ответ")
    return affected


async def dispatcher_confirm(db: Session, telegram: TelegramClient, trip_id: int, phone: str,
                             dispatcher_comment: str | None = None) -> dict:
    phone = normalize_phone(phone)
    messages = db.execute(
        select(TripMessage).where(TripMessage.trip_id == trip_id, TripMessage.phone == phone)
    ).scalars().all()
    if not messages:
        raise LookupError("Сообщения для указанного рейса и телефона не найдены")

    now = utcnow()
    for m in messages:
        m.response_status = ResponseStatus.CONFIRMED.value
        m.response_comment = DISPATCHER_CONFIRM_COMMENT
        m.response_at = now
        if dispatcher_comment:
            m.dispatcher_comment = dispatcher_comment
    db.commit()

    chat_id, _ = resolve_chat_id(db, messages[0])
    if chat_id:
        tg_ids = sorted({m.telegram_message_id for m in messages if m.telegram_message_id})
        for tg_id in tg_ids:
            await telegram.remove_buttons(chat_id, tg_id)
        text = (
            "✅ Рейс(ы) подтвержден(ы) диспетчером!\n\n"
            f"Комментарий диспетчера: {html.escape(dispatcher_comment or 'без комментария')}"
        )
        try:
            await telegram.send_message(chat_id, text, reply_to_message_id=tg_ids[0] if tg_ids else None)
        except TelegramError as e:
            logger.warning("Trip %s: could not notify %s about dispatcher confirm: %s", trip_id, phone, e)

    return {"trip_id": trip_id, "phone": phone, "updated": len(messages)}
