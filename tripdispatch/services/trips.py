# tripdispatch/services/trips.py
from __future__ import annotations

from sqlalchemy import select, func, case, delete
from sqlalchemy.orm import Session

from ..db import transaction
from ..models import (
    Trip, TripMessage, TripPoint, TripSubscription, User, UserRole, MessageStatus, ResponseStatus,
)


def _iso(x):
    return x.isoformat() if x else None


def trip_counts(db: Session, trip_ids: list[int]) -> dict[int, dict]:
    """Агрегаты по сообщениям рассылок. Удалённые сообщения не считаются."""
    if not trip_ids:
        return {}

    sent = MessageStatus.SENT.value

    def _count(cond):
        return func.coalesce(func.sum(case((cond, 1), else_=0)), 0)

    rows = db.execute(
        select(
            TripMessage.trip_id,
            func.count(TripMessage.id),
            _count(TripMessage.status == sent),
            _count(TripMessage.status == MessageStatus.ERROR.value),
            _count(TripMessage.response_status == ResponseStatus.CONFIRMED.value),
            _count(TripMessage.response_status == ResponseStatus.REJECTED.value),
            _count((TripMessage.response_status == ResponseStatus.PENDING.value) & (TripMessage.status == sent)),
            func.min(TripMessage.sent_at),
            func.max(TripMessage.sent_at),
        )
        .where(TripMessage.trip_id.in_(trip_ids), TripMessage.status != MessageStatus.DELETED.value)
        .group_by(TripMessage.trip_id)
    ).all()

    out = {
        tid: {"total": 0, "sent": 0, "errors": 0, "confirmed": 0, "rejected": 0, "pending": 0,
              "first_sent_at": None, "last_sent_at": None}
        for tid in trip_ids
    }
    for tid, total, sent_n, err, conf, rej, pend, first_at, last_at in rows:
        out[tid] = {
            "total": int(total),
            "sent": int(sent_n),
            "errors": int(err),
            "confirmed": int(conf),
            "rejected": int(rej),
            "pending": int(pend),
            "first_sent_at": _iso(first_at),
            "last_sent_at": _iso(last_at),
        }
    return out


def trip_to_dict(trip: Trip, counts: dict) -> dict:
    return {
        "id": trip.id,
        "status": trip.status,
        "carpark": trip.carpark,
        "created_at": _iso(trip.created_at),
        **counts,
    }


def _visible(user: User):
    q = select(Trip)
    if user.role == UserRole.ADMIN.value:
        return q
    if user.role == UserRole.OPERATOR.value:
        return q.where(Trip.carpark == user.carpark)
    raise PermissionError("Недостаточно прав")


def list_trips(db: Session, user: User) -> list[dict]:
    trips = db.execute(_visible(user).order_by(Trip.created_at.desc(), Trip.id.desc())).scalars().all()
    counts = trip_counts(db, [t.id for t in trips])
    return [trip_to_dict(t, counts[t.id]) for t in trips]


def get_trip(db: Session, trip_id: int, user: User) -> Trip:
    trip = db.get(Trip, trip_id)
    if not trip:
        raise LookupError("Рассылка не найдена")
    if user.role == UserRole.DRIVER.value:
        raise PermissionError("Недостаточно прав")
    if user.role == UserRole.OPERATOR.value and trip.carpark != user.carpark:
        raise PermissionError("Рассылка другого автопарка")
    return trip


def resolve_trip_id(db: Session, raw: str, user: User) -> int:
    """Целый id или "latest": последняя видимая пользователю рассылка."""
    if raw == "latest":
        trip_id = db.execute(
            _visible(user).with_only_columns(Trip.id).order_by(Trip.created_at.desc(), Trip.id.desc()).limit(1)
        ).scalar_one_or_none()
        if trip_id is None:
            raise LookupError("Рассылок пока нет")
        return trip_id
    try:
        return int(raw)
    except ValueError:
        raise ValueError("Некорректный id рассылки")


def trip_messages(db: Session, trip_id: int) -> list[TripMessage]:
    return list(db.execute(
        select(TripMessage).where(TripMessage.trip_id == trip_id).order_by(TripMessage.phone, TripMessage.id)
    ).scalars().all())


def trip_points(db: Session, trip_id: int) -> list[TripPoint]:
    return list(db.execute(
        select(TripPoint)
        .where(TripPoint.trip_id == trip_id)
        .order_by(TripPoint.trip_identifier, TripPoint.point_type, TripPoint.point_num)
    ).scalars().all())


def delete_trip(db: Session, trip_id: int) -> dict:
    """Удалять можно, только когда нет сообщений, ожидающих ответа (кроме ошибочных)."""
    trip = db.get(Trip, trip_id)
    if not trip:
        raise LookupError("Рассылка не найдена")

    pending = db.execute(
        select(func.count(TripMessage.id)).where(
            TripMessage.trip_id == trip_id,
            TripMessage.response_status == ResponseStatus.PENDING.value,
            TripMessage.status != MessageStatus.ERROR.value,
        )
    ).scalar_one()
    if pending:
        raise ValueError(f"Нельзя удалить рассылку: {pending} сообщений ожидают ответа")

    with transaction(db):
        deleted_messages = db.execute(delete(TripMessage).where(TripMessage.trip_id == trip_id)).rowcount
        deleted_points = db.execute(delete(TripPoint).where(TripPoint.trip_id == trip_id)).rowcount
        db.execute(delete(TripSubscription).where(TripSubscription.trip_id == trip_id))
        db.execute(delete(Trip).where(Trip.id == trip_id))

    return {"trip_id": trip_id, "deleted_messages": deleted_messages, "deleted_points": deleted_points}
