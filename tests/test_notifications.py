import asyncio
import datetime as dt

import pytest

from tripdispatch.models import Trip, TripMessage, TripStatus, TripSubscription
from tripdispatch.models.common import utcnow
from tripdispatch.services.notifications import format_progress_message, is_trip_complete, subscribe

from conftest import make_user


def _trip_with_responses(db, responses, carpark="AP1"):
    """responses: список (status, response_status) для сообщений рассылки."""
    trip = Trip(carpark=carpark)
    db.add(trip)
    db.commit()
    for i, (status, response) in enumerate(responses):
        db.add(TripMessage(trip_id=trip.id, phone=f"7999000000{i}", trip_identifier=f"T{i}",
                           status=status, response_status=response))
    db.commit()
    return trip


def _subscription(db, trip, user, interval=30, minutes_ago=None):
    sub = TripSubscription(
        trip_id=trip.id, user_id=user.id, interval_minutes=interval,
        last_notification_at=utcnow() - dt.timedelta(minutes=minutes_ago) if minutes_ago is not None else None,
    )
    db.add(sub)
    db.commit()
    return sub


def test_progress_message_counts_and_status_line():
    counts = {"total": 5, "sent": 5, "errors": 0, "confirmed": 1, "rejected": 1, "pending": 3}
    text = format_progress_message(7, counts, "https://dispatch.example.com/")

    assert "📊 <b>Прогресс рассылки #7</b>" in text
    assert "📤 <b>Отправка:</b> 5/5 (100%)" in text
    assert "📥 <b>Ответы:</b> 2/5 (40%)" in text
    assert "⏳ Ожидают: 3" in text
    assert "⏰ Ожидаем ответы от 3 водителей..." in text
    assert 'href="https://dispatch.example.com/trips/7"' in text


def test_trip_complete_rule():
    assert is_trip_complete({"total": 2, "sent": 2, "confirmed": 1, "rejected": 1})
    assert not is_trip_complete({"total": 3, "sent": 2, "confirmed": 1, "rejected": 1})
    assert not is_trip_complete({"total": 0, "sent": 0, "confirmed": 0, "rejected": 0})


def test_due_subscription_is_notified_and_stays_active(db, poller, fake_tg, operator):
    trip = _trip_with_responses(db, [("sent", "confirmed"), ("sent", "rejected")] + [("sent", "pending")] * 3)
    sub = _subscription(db, trip, operator, interval=30, minutes_ago=45)
    before = sub.last_notification_at

    result = asyncio.run(poller.run(db))

    assert result["sent"] == 1 and result["errors"] == 0 and result["total"] == 1
    db.refresh(sub)
    assert sub.is_active is True
    assert sub.last_notification_at > before
    (payload,) = fake_tg.sent()
    assert payload["chat_id"] == operator.telegram_id
    assert "(40%)" in payload["text"]


def test_recent_subscription_is_skipped(db, poller, fake_tg, operator):
    trip = _trip_with_responses(db, [("sent", "pending")])
    _subscription(db, trip, operator, interval=30, minutes_ago=10)

    result = asyncio.run(poller.run(db))

    assert result["total"] == 0
    assert fake_tg.sent() == []


def test_completed_trip_closes_subscription(db, poller, operator):
    trip = _trip_with_responses(db, [("sent", "confirmed"), ("sent", "rejected")])
    sub = _subscription(db, trip, operator)

    result = asyncio.run(poller.run(db))

    assert result["completed"] == 1
    db.refresh(sub)
    db.refresh(trip)
    assert sub.is_active is False
    assert trip.status == TripStatus.COMPLETED.value


def test_send_failure_leaves_state_and_continues(db, poller, fake_tg, operator, admin):
    trip = _trip_with_responses(db, [("sent", "confirmed")])
    failing = _subscription(db, trip, operator)
    working = _subscription(db, trip, admin)
    fake_tg.fail_chats.add(operator.telegram_id)

    result = asyncio.run(poller.run(db))

    assert result["errors"] == 1 and result["sent"] == 1
    db.refresh(failing)
    db.refresh(working)
    assert failing.last_notification_at is None
    assert failing.is_active is True
    assert working.is_active is False


def test_throttle_and_in_flight_guard(db, poller):
    assert asyncio.run(poller.run(db))["skipped"] is False
    assert asyncio.run(poller.run(db))["reason"] == "throttled"
    assert asyncio.run(poller.run(db, force=True))["skipped"] is False

    poller.in_flight = True
    assert asyncio.run(poller.run(db, force=True))["reason"] == "in_flight"


def test_subscribe_validates_interval(db, operator):
    trip = _trip_with_responses(db, [("sent", "pending")])

    for bad in (10, 20, 1500, "x"):
        with pytest.raises(ValueError):
            subscribe(db, operator, trip.id, bad)

    sub = subscribe(db, operator, trip.id, 45)
    assert sub.interval_minutes == 45 and sub.is_active


def test_subscribe_upsert_reactivates(staff_client, db, operator):
    trip = _trip_with_responses(db, [("sent", "pending")])

    r = staff_client.post(f"/api/trips/{trip.id}/subscribe", json={"interval_minutes": 15})
    assert r.status_code == 200
    assert staff_client.delete(f"/api/trips/{trip.id}/subscribe").status_code == 200
    assert staff_client.get(f"/api/trips/{trip.id}/subscription").json()["subscription"] is None

    r = staff_client.post(f"/api/trips/{trip.id}/subscribe", json={"interval_minutes": 60})
    assert r.json()["subscription"]["is_active"] is True
    assert db.query(TripSubscription).count() == 1
    assert len(staff_client.get("/api/subscriptions").json()["subscriptions"]) == 1


def test_subscribe_rejects_completed_trip_and_unlinked_user(staff_client, db, operator):
    trip = _trip_with_responses(db, [("sent", "confirmed")])
    trip.status = TripStatus.COMPLETED.value
    db.commit()

    assert staff_client.post(f"/api/trips/{trip.id}/subscribe", json={"interval_minutes": 15}).status_code == 400
    assert staff_client.post("/api/trips/999/subscribe", json={"interval_minutes": 15}).status_code == 404
    assert staff_client.post(f"/api/trips/{trip.id}/unsubscribe").status_code == 404


def test_send_notifications_now_ignores_interval(staff_client, db, fake_tg, operator):
    trip = _trip_with_responses(db, [("sent", "pending")])
    _subscription(db, trip, operator, interval=60, minutes_ago=1)

    r = staff_client.post(f"/api/trips/{trip.id}/send-notifications")

    assert r.status_code == 200
    assert r.json()["sent"] == 1
    assert len(fake_tg.sent()) == 1


def test_cron_requires_bearer_secret(client, db, operator):
    trip = _trip_with_responses(db, [("sent", "pending")])
    _subscription(db, trip, operator)

    assert client.get("/api/cron/send-notifications").status_code == 401
    assert client.get("/api/cron/send-notifications", headers={"Authorization": "Bearer wrong"}).status_code == 401

    r = client.post("/api/cron/send-notifications", headers={"Authorization": "Bearer cron-secret"})
    assert r.status_code == 200
    assert r.json()["sent"] == 1


def test_manual_send_get_throttles_post_forces(staff_client):
    assert staff_client.get("/api/notifications/send").json()["skipped"] is False
    assert staff_client.get("/api/notifications/send").json()["skipped"] is True
    assert staff_client.post("/api/notifications/send").json()["skipped"] is False
