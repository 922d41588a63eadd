# tripdispatch/services/corrections.py
from __future__ import annotations

import logging

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from ..db import transaction
from ..models import Point, Trip, TripMessage, TripPoint, User, MessageStatus, ResponseStatus
from .dispatch import resend_group, resolve_chat_id
from .telegram import TelegramClient
from .users import get_by_phone, normalize_phone

logger = logging.getLogger(__name__)


class TripConflict(Exception):
    """Рейс уже закреплён за другим водителем."""

    def __init__(self, conflicts: list[dict]):
        self.conflicts = conflicts
        super().__init__("trip_already_assigned")

    @property
    def trip_identifiers(self) -> list[str]:
        return sorted({c["trip_identifier"] for c in self.conflicts})


def find_conflicts(db: Session, trip_identifiers: list[str], exclude_phone: str | None = None) -> list[dict]:
    """
    Сообщения других водителей с теми же trip_identifier.
    Отклонённые, ошибочные и удалённые сообщения рейс не занимают.
    """
    if not trip_identifiers:
        return []

    q = (
        select(TripMessage, User)
        .outerjoin(User, User.phone == TripMessage.phone)
        .where(
            TripMessage.trip_identifier.in_(trip_identifiers),
            TripMessage.response_status != ResponseStatus.REJECTED.value,
            TripMessage.status.not_in([MessageStatus.ERROR.value, MessageStatus.DELETED.value]),
        )
        .order_by(TripMessage.trip_identifier, TripMessage.id)
    )
    if exclude_phone:
        q = q.where(TripMessage.phone != normalize_phone(exclude_phone))

    return [
        {
            "trip_identifier": m.trip_identifier,
            "driver_phone": m.phone,
            "driver_name": (u.full_name or u.first_name or m.phone) if u else m.phone,
            "trip_id": m.trip_id,
        }
        for m, u in db.execute(q).all()
    ]


def _group_corrections(corrections: list[dict]) -> dict[str, dict]:
    """Плоские строки корректировки → рейсы по исходному идентификатору."""
    groups: dict[str, dict] = {}
    for i, c in enumerate(corrections, 1):
        if not isinstance(c, dict):
            raise ValueError(f"Корректировка {i}: ожидается объект")
        new_id = str(c.get("trip_identifier") or "").strip()
        if not new_id:
            raise ValueError(f"Корректировка {i}: отсутствует идентификатор рейса")
        original = str(c.get("original_trip_identifier") or "").strip()

        g = groups.setdefault(original or new_id, {
            "original": original or None,
            "trip_identifier": new_id,
            "vehicle_number": c.get("vehicle_number") or None,
            "planned_loading_time": c.get("planned_loading_time") or None,
            "driver_comment": c.get("driver_comment") or None,
            "points": [],
        })

        point_id = str(c.get("point_id") or "").strip().upper()
        if not point_id:
            continue
        point_type = str(c.get("point_type") or "P").strip().upper()
        if point_type not in ("P", "D"):
            raise ValueError(f'Корректировка {i}: неверный тип пункта "{point_type}" (должен быть P или D)')
        try:
            point_num = int(c.get("point_num") or 0)
        except (TypeError, ValueError):
            raise ValueError(f'Корректировка {i}: неверный номер пункта "{c.get("point_num")}"')
        g["points"].append((point_type, point_num, point_id))
    return groups


def _driver_messages(db: Session, trip_id: int, phone: str) -> dict[str, TripMessage]:
    rows = db.execute(
        select(TripMessage).where(
            TripMessage.trip_id == trip_id,
            TripMessage.phone == phone,
            TripMessage.status != MessageStatus.DELETED.value,
        )
    ).scalars().all()
    return {m.trip_identifier: m for m in rows}


def _replace_points(db: Session, trip_id: int, phone: str, old_identifier: str, group: dict,
                    points: dict[str, Point]) -> None:
    db.execute(
        delete(TripPoint).where(
            TripPoint.trip_id == trip_id,
            TripPoint.driver_phone == phone,
            TripPoint.trip_identifier == old_identifier,
        )
    )
    for point_type, point_num, code in group["points"]:
        db.add(TripPoint(
            trip_id=trip_id,
            point_id=points[code].id,
            point_type=point_type,
            point_num=point_num,
            trip_identifier=group["trip_identifier"],
            driver_phone=phone,
        ))


async def save_corrections(
    db: Session,
    telegram: TelegramClient,
    trip_id: int,
    phone: str,
    corrections: list[dict],
    deleted_trips: list[str] | None = None,
) -> dict:
    """
    Правка рейсов одного водителя в рассылке.

    Порядок: проверка конфликтов, удаление рейсов из deleted_trips, правка и
    добавление рейсов (каждый trip_identifier в своей транзакции), затем
    повторная отправка водителю с пометкой «Корректировка».
    Ответ водителя по исправленным рейсам сбрасывается в pending.
    """
    phone = normalize_phone(phone)
    if not phone:
        raise ValueError("Не указан телефон")
    if not isinstance(corrections, list):
        raise ValueError("corrections должен быть списком")
    deleted = [str(x).strip() for x in (deleted_trips or []) if str(x).strip()]

    if db.get(Trip, trip_id) is None:
        raise LookupError("Рассылка не найдена")

    groups = _group_corrections(corrections)

    identifiers = list(dict.fromkeys(deleted + [g["trip_identifier"] for g in groups.values()]))
    conflicts = find_conflicts(db, identifiers, exclude_phone=phone)
    if conflicts:
        raise TripConflict(conflicts)

    existing = _driver_messages(db, trip_id, phone)
    released = set(deleted) | {g["original"] for g in groups.values() if g["original"]}
    for g in groups.values():
        if g["original"] and g["original"] not in existing:
            raise LookupError(f"Рейс {g['original']} не найден у водителя")
        if g["original"] in deleted:
            raise ValueError(f"Рейс {g['original']} одновременно правится и удаляется")
        target = g["trip_identifier"]
        if target != g["original"] and target in existing and target not in released:
            raise ValueError(f"Рейс {target} уже есть у водителя")

    codes = {code for g in groups.values() for _, _, code in g["points"]}
    points = {}
    if codes:
        points = {p.point_id: p for p in db.execute(select(Point).where(Point.point_id.in_(codes))).scalars()}
    missing = sorted(codes - set(points))
    if missing:
        raise ValueError(f"Пункты не найдены: {', '.join(missing)}")

    user = get_by_phone(db, phone)
    old_telegram_ids = sorted({m.telegram_message_id for m in existing.values() if m.telegram_message_id})

    removed = 0
    for identifier in deleted:
        with transaction(db):
            removed += db.execute(
                delete(TripMessage).where(
                    TripMessage.trip_id == trip_id,
                    TripMessage.phone == phone,
                    TripMessage.trip_identifier == identifier,
                )
            ).rowcount
            db.execute(
                delete(TripPoint).where(
                    TripPoint.trip_id == trip_id,
                    TripPoint.driver_phone == phone,
                    TripPoint.trip_identifier == identifier,
                )
            )

    updated = created = 0
    for g in groups.values():
        with transaction(db):
            if g["original"]:
                msg = existing[g["original"]]
                msg.trip_identifier = g["trip_identifier"]
                msg.vehicle_number = g["vehicle_number"]
                msg.planned_loading_time = g["planned_loading_time"]
                msg.driver_comment = g["driver_comment"]
                msg.response_status = ResponseStatus.PENDING.value
                msg.response_comment = None
                msg.response_at = None
                _replace_points(db, trip_id, phone, g["original"], g, points)
                updated += 1
            else:
                db.add(TripMessage(
                    trip_id=trip_id,
                    phone=phone,
                    telegram_id=user.telegram_id if user else None,
                    status=MessageStatus.PENDING.value,
                    response_status=ResponseStatus.PENDING.value,
                    trip_identifier=g["trip_identifier"],
                    vehicle_number=g["vehicle_number"],
                    planned_loading_time=g["planned_loading_time"],
                    driver_comment=g["driver_comment"],
                ))
                _replace_points(db, trip_id, phone, g["trip_identifier"], g, points)
                created += 1
            db.flush()

    logger.info("Trip %s corrections for %s: updated=%s created=%s deleted=%s",
                trip_id, phone, updated, created, removed)

    result = {
        "trip_id": trip_id,
        "phone": phone,
        "updated_trips": updated,
        "created_trips": created,
        "deleted_trips": removed,
        "notified": False,
        "telegram_message_id": None,
    }

    remaining = db.execute(
        select(TripMessage)
        .where(
            TripMessage.trip_id == trip_id,
            TripMessage.phone == phone,
            TripMessage.status != MessageStatus.DELETED.value,
        )
        .order_by(TripMessage.id)
        .limit(1)
    ).scalar_one_or_none()
    if remaining is None:
        # у водителя не осталось рейсов: снимаем кнопки со старого сообщения
        chat_id = user.telegram_id if user else None
        if chat_id:
            for tg_id in old_telegram_ids:
                await telegram.remove_buttons(chat_id, tg_id)
        return result

    chat_id, _ = resolve_chat_id(db, remaining)
    if not chat_id:
        logger.warning("Trip %s: corrections for %s saved without notification, no Telegram ID", trip_id, phone)
        return result

    sent = await resend_group(db, telegram, remaining.id, is_correction=True)
    result["notified"] = True
    result["telegram_message_id"] = sent["telegram_message_id"]
    return result
