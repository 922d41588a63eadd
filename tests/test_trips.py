from sqlalchemy import select

from tripdispatch.models import Trip, TripMessage, TripPoint, TripSubscription, UserRole
from tripdispatch.models.common import utcnow

from conftest import make_user, make_point, login


def _trip(db, carpark="AP1", messages=()):
    trip = Trip(carpark=carpark)
    db.add(trip)
    db.commit()
    for i, (status, response) in enumerate(messages):
        db.add(TripMessage(trip_id=trip.id, phone=f"7999000000{i}", trip_identifier=f"T{i}",
                           status=status, response_status=response,
                           sent_at=utcnow() if status == "sent" else None))
    db.commit()
    return trip


def test_list_is_scoped_to_operator_carpark(staff_client, db):
    own = _trip(db, "AP1", [("sent", "confirmed"), ("sent", "pending"), ("error", "pending")])
    _trip(db, "AP2")

    r = staff_client.get("/api/trips")

    assert r.status_code == 200
    (row,) = r.json()["trips"]
    assert row["id"] == own.id
    assert row["total"] == 3
    assert row["sent"] == 2
    assert row["errors"] == 1
    assert row["confirmed"] == 1
    assert row["pending"] == 1
    assert row["first_sent_at"] is not None


def test_admin_sees_all_trips(admin_client, db):
    _trip(db, "AP1")
    _trip(db, "AP2")
    assert len(admin_client.get("/api/trips").json()["trips"]) == 2


def test_driver_is_forbidden(client, db):
    driver = make_user(db, phone="79990000009", role=UserRole.DRIVER, telegram_id=42)
    login(client, db, driver)

    r = client.get("/api/trips")

    assert r.status_code == 403
    assert r.json() == {"success": False, "error": "Недостаточно прав"}


def test_no_session_is_unauthorized(client):
    assert client.get("/api/trips").status_code == 401


def test_operator_cannot_open_foreign_trip(staff_client, db):
    foreign = _trip(db, "AP2")
    assert staff_client.get(f"/api/trips/{foreign.id}").status_code == 403
    assert staff_client.get("/api/trips/999").status_code == 404


def test_operator_cannot_subscribe_to_foreign_trip(staff_client, db):
    foreign = _trip(db, "AP2", [("sent", "pending")])

    r = staff_client.post(f"/api/trips/{foreign.id}/subscribe", json={"interval_minutes": 15})

    assert r.status_code == 403
    assert db.query(TripSubscription).count() == 0


def test_operator_cannot_push_progress_of_foreign_trip(staff_client, db, fake_tg, admin):
    foreign = _trip(db, "AP2", [("sent", "pending")])
    db.add(TripSubscription(trip_id=foreign.id, user_id=admin.id, interval_minutes=30))
    db.commit()

    r = staff_client.post(f"/api/trips/{foreign.id}/send-notifications")

    assert r.status_code == 403
    assert fake_tg.sent() == []


def test_operator_cannot_confirm_for_foreign_trip(staff_client, db, fake_tg):
    foreign = _trip(db, "AP2", [("sent", "pending")])

    r = staff_client.post("/api/dispatch/confirm", json={"trip_id": foreign.id, "phone": "79990000000"})

    assert r.status_code == 403
    db.expire_all()
    (m,) = db.execute(select(TripMessage).where(TripMessage.trip_id == foreign.id)).scalars().all()
    assert m.response_status == "pending"
    assert fake_tg.calls == []


def test_trip_detail_messages_and_points(staff_client, db):
    trip = _trip(db, messages=[("sent", "pending")])
    p = make_point(db, "A1", name="Склад")
    db.add(TripPoint(trip_id=trip.id, point_id=p.id, point_type="P", point_num=1, trip_identifier="T0"))
    db.commit()

    assert staff_client.get(f"/api/trips/{trip.id}").json()["trip"]["total"] == 1
    assert staff_client.get(f"/api/trips/{trip.id}/messages").json()["messages"][0]["trip_identifier"] == "T0"
    assert staff_client.get(f"/api/trips/{trip.id}/points").json()["points"][0]["point_name"] == "Склад"


def test_delete_refused_while_responses_pending(staff_client, db):
    trip = _trip(db, messages=[("sent", "pending"), ("error", "pending")])

    r = staff_client.delete(f"/api/trips/{trip.id}")

    assert r.status_code == 400
    assert db.execute(select(TripMessage).where(TripMessage.trip_id == trip.id)).scalars().all()


def test_delete_removes_trip_with_children(staff_client, db, operator):
    trip = _trip(db, messages=[("sent", "confirmed"), ("error", "pending")])
    p = make_point(db, "A1")
    db.add(TripPoint(trip_id=trip.id, point_id=p.id, point_type="P", point_num=1))
    db.add(TripSubscription(trip_id=trip.id, user_id=operator.id, interval_minutes=15))
    db.commit()
    trip_id = trip.id

    r = staff_client.delete(f"/api/trips/{trip_id}")

    assert r.status_code == 200
    assert r.json()["deleted_messages"] == 2
    db.expire_all()
    assert db.get(Trip, trip_id) is None
    assert db.execute(select(TripPoint)).first() is None
    assert db.execute(select(TripSubscription)).first() is None


def test_delete_missing_trip(staff_client):
    assert staff_client.delete("/api/trips/12345").status_code == 404
