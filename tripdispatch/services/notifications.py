# tripdispatch/services/notifications.py
from __future__ import annotations

import asyncio
import datetime as dt
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..config import settings
from ..models import Trip, TripStatus, TripSubscription, User
from ..models.common import utcnow
from .telegram import TelegramClient, TelegramError
from .trips import get_trip, trip_counts

logger = logging.getLogger(__name__)


def _pct(part: int, whole: int) -> int:
    return int(part * 100 / whole + 0.5) if whole > 0 else 0


def is_trip_complete(c: dict) -> bool:
    responded = c["confirmed"] + c["rejected"]
    return c["total"] > 0 and c["sent"] == c["total"] and responded == c["sent"]


def format_progress_message(trip_id: int, c: dict, app_url: str | None = None) -> str:
    responded = c["confirmed"] + c["rejected"]
    lines = [
        f"📊 <b>Прогресс рассылки #{trip_id}</b>",
        "",
        f"📤 <b>Отправка:</b> {c['sent']}/{c['total']} ({_pct(c['sent'], c['total'])}%)",
        f"📥 <b>Ответы:</b> {responded}/{c['sent']} ({_pct(responded, c['sent'])}%)",
        "",
        f"✅ Подтверждено: {c['confirmed']}",
        f"❌ Отклонено: {c['rejected']}",
        f"⏳ Ожидают: {c['pending']}",
    ]
    if c.get("errors"):
        lines.append(f"🚫 Ошибки: {c['errors']}")
    lines.append("")

    if is_trip_complete(c):
        lines.append("🎉 <b>Рассылка завершена!</b>")
        lines.append("Все водители ответили. Подписка автоматически отменена.")
    elif c["sent"] < c["total"]:
        lines.append("🚀 Рассылка в процессе отправки...")
    elif c["pending"] > 0:
        lines.append(f"⏰ Ожидаем ответы от {c['pending']} водителей...")
    else:
        lines.append("📋 Статус рассылки обновлен")

    if app_url:
        lines += ["", f'🔗 <a href="{app_url.rstrip("/")}/trips/{trip_id}">Посмотреть детали рассылки</a>']
    return "\n".join(lines)


def is_due(sub: TripSubscription, now: dt.datetime) -> bool:
    if sub.last_notification_at is None:
        return True
    return sub.last_notification_at <= now - dt.timedelta(minutes=sub.interval_minutes)


class SubscriptionPoller:
    """
    Рассылка сводок по подпискам. Сам себя не запускает:
    вызывается из cron-эндпоинта или вручную.

    Один экземпляр на приложение (app.state.poller). Хранит время последней
    проверки и флаг выполнения: параллельный вызов сразу возвращает skipped.
    """

    def __init__(self, telegram: TelegramClient, min_interval_sec: int = 60, delay: float = 0.0,
                 app_url: str | None = None) -> None:
        self.telegram = telegram
        self.min_interval = dt.timedelta(seconds=min_interval_sec)
        self.delay = delay
        self.app_url = app_url
        self.last_check_at: dt.datetime | None = None
        self.in_flight = False

    @classmethod
    def from_settings(cls, telegram: TelegramClient) -> "SubscriptionPoller":
        return cls(telegram, settings.POLLER_MIN_INTERVAL_SEC, settings.SEND_DELAY_SEC, settings.APP_URL)

    def due_subscriptions(self, db: Session, now: dt.datetime) -> list[TripSubscription]:
        rows = db.execute(
            select(TripSubscription)
            .join(Trip, Trip.id == TripSubscription.trip_id)
            .join(User, User.id == TripSubscription.user_id)
            .where(
                TripSubscription.is_active.is_(True),
                Trip.status != TripStatus.COMPLETED.value,
                User.telegram_id.is_not(None),
            )
            .order_by(TripSubscription.id)
        ).scalars().all()
        return [s for s in rows if is_due(s, now)]

    async def run(self, db: Session, force: bool = False) -> dict:
        now = utcnow()
        if self.in_flight:
            return {"sent": 0, "errors": 0, "total": 0, "skipped": True, "reason": "in_flight"}
        if not force and self.last_check_at and now - self.last_check_at < self.min_interval:
            return {"sent": 0, "errors": 0, "total": 0, "skipped": True, "reason": "throttled"}

        self.in_flight = True
        self.last_check_at = now
        try:
            subs = self.due_subscriptions(db, now)
            logger.info("Poller: %s subscriptions due", len(subs))
            return await self._process(db, subs)
        finally:
            self.in_flight = False

    async def notify_trip(self, db: Session, trip_id: int) -> dict:
        """Немедленная сводка всем активным подписчикам рассылки, без учёта интервала."""
        trip = db.get(Trip, trip_id)
        if not trip:
            raise LookupError("Рассылка не найдена")
        subs = db.execute(
            select(TripSubscription)
            .join(User, User.id == TripSubscription.user_id)
            .where(
                TripSubscription.trip_id == trip_id,
                TripSubscription.is_active.is_(True),
                User.telegram_id.is_not(None),
            )
            .order_by(TripSubscription.id)
        ).scalars().all()
        return await self._process(db, list(subs))

    async def _process(self, db: Session, subs: list[TripSubscription]) -> dict:
        result = {"sent": 0, "errors": 0, "total": len(subs), "completed": 0, "skipped": False}

        for i, sub in enumerate(subs):
            if i and self.delay > 0:
                await asyncio.sleep(self.delay)

            counts = trip_counts(db, [sub.trip_id])[sub.trip_id]
            text = format_progress_message(sub.trip_id, counts, self.app_url)
            try:
                await self.telegram.send_message(sub.user.telegram_id, text)
            except TelegramError as e:
                logger.error("Poller: subscription %s (trip %s) send failed: %s", sub.id, sub.trip_id, e)
                result["errors"] += 1
                continue

            # состояние меняем только после успешной отправки
            sub.last_notification_at = utcnow()
            if is_trip_complete(counts):
                sub.is_active = False
                sub.trip.status = TripStatus.COMPLETED.value
                result["completed"] += 1
                logger.info("Poller: trip %s completed, subscription %s closed", sub.trip_id, sub.id)
            db.commit()
            result["sent"] += 1

        return result


# ---------- управление подписками ----------

def validate_interval(value) -> int:
    try:
        minutes = int(value)
    except (TypeError, ValueError):
        raise ValueError("interval_minutes должен быть целым числом")
    lo, hi, step = settings.SUBSCRIPTION_MIN_MINUTES, settings.SUBSCRIPTION_MAX_MINUTES, settings.SUBSCRIPTION_STEP_MINUTES
    if minutes < lo or minutes > hi:
        raise ValueError(f"Интервал должен быть от {lo} до {hi} минут")
    if minutes % step:
        raise ValueError(f"Интервал должен быть кратен {step} минутам")
    return minutes


def subscribe(db: Session, user: User, trip_id: int, interval_minutes) -> TripSubscription:
    minutes = validate_interval(interval_minutes)

    trip = get_trip(db, trip_id, user)
    if trip.status == TripStatus.COMPLETED.value:
        raise ValueError("Рассылка уже завершена")
    if not user.telegram_id:
        raise ValueError("Для подписки нужен привязанный Telegram")

    sub = db.execute(
        select(TripSubscription).where(TripSubscription.trip_id == trip_id, TripSubscription.user_id == user.id)
    ).scalar_one_or_none()
    if sub is None:
        sub = TripSubscription(trip_id=trip_id, user_id=user.id, interval_minutes=minutes)
        db.add(sub)
    sub.interval_minutes = minutes
    sub.is_active = True
    sub.last_notification_at = None
    db.commit()
    db.refresh(sub)
    logger.info("User %s subscribed to trip %s every %s min", user.id, trip_id, minutes)
    return sub


def get_subscription(db: Session, user: User, trip_id: int) -> TripSubscription | None:
    return db.execute(
        select(TripSubscription).where(
            TripSubscription.trip_id == trip_id,
            TripSubscription.user_id == user.id,
            TripSubscription.is_active.is_(True),
        )
    ).scalar_one_or_none()


def unsubscribe(db: Session, user: User, trip_id: int) -> TripSubscription:
    sub = get_subscription(db, user, trip_id)
    if sub is None:
        raise LookupError("Активная подписка не найдена")
    sub.is_active = False
    db.commit()
    return sub


def list_subscriptions(db: Session, user: User) -> list[TripSubscription]:
    return list(db.execute(
        select(TripSubscription)
        .where(TripSubscription.user_id == user.id, TripSubscription.is_active.is_(True))
        .order_by(TripSubscription.created_at.desc())
    ).scalars().all())
