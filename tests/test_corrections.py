import asyncio

from sqlalchemy import select

from tripdispatch.models import Point, Trip, TripMessage, TripPoint, ResponseStatus
from tripdispatch.services.dispatch import dispatch_trip

from conftest import make_user, make_point


def _sent_trip(db, fake_tg, identifiers=("T1",), phone="79990000000", carpark="AP1"):
    make_user(db, phone=phone, telegram_id=111)
    a, b = make_point(db, "A1"), make_point(db, "B1")
    trip = Trip(carpark=carpark)
    db.add(trip)
    db.commit()
    for ident in identifiers:
        db.add(TripMessage(trip_id=trip.id, phone=phone, trip_identifier=ident, vehicle_number="A123BC"))
        db.add(TripPoint(trip_id=trip.id, point_id=a.id, point_type="P", point_num=1,
                         trip_identifier=ident, driver_phone=phone))
        db.add(TripPoint(trip_id=trip.id, point_id=b.id, point_type="D", point_num=2,
                         trip_identifier=ident, driver_phone=phone))
    db.commit()
    asyncio.run(dispatch_trip(db, fake_tg, trip.id))
    return trip


def _points(db, trip_id, identifier):
    return db.execute(
        select(TripPoint.point_type, TripPoint.point_num, Point.point_id)
        .join(Point, Point.id == TripPoint.point_id)
        .where(TripPoint.trip_id == trip_id, TripPoint.trip_identifier == identifier)
        .order_by(TripPoint.point_num)
    ).all()


def _messages(db, trip_id):
    db.expire_all()
    return db.execute(
        select(TripMessage).where(TripMessage.trip_id == trip_id).order_by(TripMessage.id)
    ).scalars().all()


def test_correction_updates_trip_and_resends_with_mark(staff_client, db, fake_tg):
    trip = _sent_trip(db, fake_tg)
    make_point(db, "C1")
    make_point(db, "C2")
    (m,) = _messages(db, trip.id)
    old_tg_id = m.telegram_message_id
    m.response_status = ResponseStatus.CONFIRMED.value
    m.response_comment = "ok"
    db.commit()

    r = staff_client.post(f"/api/trips/{trip.id}/corrections", json={
        "phone": "+79990000000",
        "corrections": [
            {"original_trip_identifier": "T1", "trip_identifier": "T1", "vehicle_number": "B777BB",
             "point_type": "P", "point_num": 1, "point_id": "c1"},
            {"original_trip_identifier": "T1", "trip_identifier": "T1", "vehicle_number": "B777BB",
             "point_type": "D", "point_num": 2, "point_id": "C2"},
        ],
    })

    assert r.status_code == 200
    body = r.json()
    assert body["updated_trips"] == 1
    assert body["notified"] is True

    (m,) = _messages(db, trip.id)
    assert m.vehicle_number == "B777BB"
    assert m.response_status == ResponseStatus.PENDING.value
    assert m.response_comment is None
    assert m.status == "sent"
    assert m.telegram_message_id == body["telegram_message_id"] != old_tg_id
    assert "Корректировка рейса" in m.message
    assert _points(db, trip.id, "T1") == [("P", 1, "C1"), ("D", 2, "C2")]
    assert fake_tg.sent("editMessageReplyMarkup")[0]["message_id"] == old_tg_id


def test_correction_adds_and_deletes_trips(staff_client, db, fake_tg):
    trip = _sent_trip(db, fake_tg, identifiers=("T1", "T2"))

    r = staff_client.post(f"/api/trips/{trip.id}/corrections", json={
        "phone": "79990000000",
        "corrections": [{"trip_identifier": "T3", "vehicle_number": "X001XX",
                         "point_type": "P", "point_num": 1, "point_id": "A1"}],
        "deleted_trips": ["T2"],
    })

    assert r.status_code == 200
    assert r.json()["created_trips"] == 1
    assert r.json()["deleted_trips"] == 1

    messages = _messages(db, trip.id)
    assert [x.trip_identifier for x in messages] == ["T1", "T3"]
    assert {x.status for x in messages} == {"sent"}
    assert len({x.telegram_message_id for x in messages}) == 1
    assert _points(db, trip.id, "T2") == []
    assert _points(db, trip.id, "T3") == [("P", 1, "A1")]


def test_correction_refused_when_trip_held_by_another_driver(staff_client, db, fake_tg):
    trip = _sent_trip(db, fake_tg)
    make_user(db, phone="79990000001", telegram_id=222, first_name="Пётр")
    other = Trip(carpark="AP1")
    db.add(other)
    db.commit()
    holder = TripMessage(trip_id=other.id, phone="79990000001", trip_identifier="T9", status="sent")
    db.add(holder)
    db.commit()
    payload = {"phone": "79990000000", "corrections": [{"trip_identifier": "T9", "point_id": "A1"}]}

    r = staff_client.post(f"/api/trips/{trip.id}/corrections", json=payload)

    assert r.status_code == 409
    assert r.json()["error"] == "trip_already_assigned"
    assert r.json()["trip_identifiers"] == ["T9"]
    assert r.json()["conflict_data"] == [
        {"trip_identifier": "T9", "driver_phone": "79990000001", "driver_name": "Пётр", "trip_id": other.id},
    ]
    assert [x.trip_identifier for x in _messages(db, trip.id)] == ["T1"]

    holder = db.get(TripMessage, holder.id)
    holder.response_status = ResponseStatus.REJECTED.value
    db.commit()

    assert staff_client.post(f"/api/trips/{trip.id}/corrections", json=payload).status_code == 200


def test_correction_validation(staff_client, db, fake_tg):
    trip = _sent_trip(db, fake_tg)
    url = f"/api/trips/{trip.id}/corrections"

    assert staff_client.post(url, json={"corrections": []}).status_code == 400
    r = staff_client.post(url, json={"phone": "79990000000", "corrections": [
        {"original_trip_identifier": "T1", "trip_identifier": "T1", "point_id": "NOPE"},
    ]})
    assert r.status_code == 400
    assert "NOPE" in r.json()["error"]
    r = staff_client.post(url, json={"phone": "79990000000", "corrections": [
        {"original_trip_identifier": "T5", "trip_identifier": "T5"},
    ]})
    assert r.status_code == 404
    assert staff_client.post("/api/trips/999/corrections", json={"phone": "7999"}).status_code == 404


def test_operator_cannot_correct_foreign_trip(staff_client, db, fake_tg):
    trip = _sent_trip(db, fake_tg, carpark="AP2")
    r = staff_client.post(f"/api/trips/{trip.id}/corrections", json={"phone": "79990000000", "corrections": []})
    assert r.status_code == 403


def test_check_conflicts(staff_client, db, fake_tg):
    _sent_trip(db, fake_tg, identifiers=("T1",))

    r = staff_client.post("/api/trips/check-conflicts", json={"trip_identifiers": ["T1", "T2"]})
    assert r.status_code == 409
    assert r.json()["conflict_data"][0]["driver_phone"] == "79990000000"

    r = staff_client.post("/api/trips/check-conflicts",
                          json={"trip_identifiers": ["T1"], "exclude_phone": "+7 999 000 00 00"})
    assert r.status_code == 200
    assert r.json() == {"success": True, "conflicts": []}

    assert staff_client.post("/api/trips/check-conflicts", json={}).status_code == 400
