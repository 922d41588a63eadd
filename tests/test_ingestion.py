from sqlalchemy import select

from tripdispatch.models import Trip, TripMessage, TripPoint, MessageStatus
from tripdispatch.services.ingestion import ingest_upload

from conftest import make_user, make_point, xlsx_bytes


def _rows(phone="79990000000", trip="T1"):
    return [
        [phone, trip, "A123BC", "05.03.2024 08:30", "P", 1, "A1", ""],
        [phone, trip, "A123BC", "05.03.2024 08:30", "D", 1, "B1", "хрупкий груз"],
    ]


def test_upload_creates_trip_message_and_points(db):
    make_user(db, phone="79990000000", telegram_id=111)
    make_point(db, "A1")
    make_point(db, "B1")

    trip_id, results = ingest_upload(db, xlsx_bytes(_rows()), carpark="AP1")

    assert results["processed"] == 1
    assert results["errors"] == 0
    assert db.get(Trip, trip_id).carpark == "AP1"

    messages = db.execute(select(TripMessage).where(TripMessage.trip_id == trip_id)).scalars().all()
    assert len(messages) == 1
    m = messages[0]
    assert m.status == MessageStatus.PENDING.value
    assert m.telegram_id == 111
    assert m.driver_comment == "хрупкий груз"

    points = db.execute(select(TripPoint).where(TripPoint.trip_id == trip_id)).scalars().all()
    assert sorted(p.point_type for p in points) == ["D", "P"]
    assert all(p.trip_identifier == "T1" and p.driver_phone == "79990000000" for p in points)


def test_missing_point_skips_unit_and_is_counted(db):
    make_user(db, phone="79990000000")
    make_point(db, "A1")

    rows = _rows() + [["79990000000", "T2", "", "", "P", 1, "A1", ""]]
    trip_id, results = ingest_upload(db, xlsx_bytes(rows))

    assert results["processed"] == 1
    assert results["missing_points"] == 1
    missing = [d for d in results["details"] if d["status"] == "missing_points"]
    assert missing == [{"phone": "79990000000", "trip_identifier": "T1",
                        "status": "missing_points", "missing_points": ["B1"]}]

    idents = db.execute(
        select(TripMessage.trip_identifier).where(TripMessage.trip_id == trip_id)
    ).scalars().all()
    assert idents == ["T2"]
    assert db.execute(select(TripPoint).where(TripPoint.trip_identifier == "T1")).first() is None


def test_unknown_and_unverified_phones_are_reported(db):
    make_user(db, phone="79990000001", verified=False)
    make_point(db, "A1")
    make_point(db, "B1")

    rows = _rows(phone="79990000000") + _rows(phone="79990000001")
    trip_id, results = ingest_upload(db, xlsx_bytes(rows))

    assert results["processed"] == 0
    assert results["errors"] == 1
    assert results["unverified"] == 1
    # рассылка создаётся даже без единого сообщения
    assert db.get(Trip, trip_id) is not None


def test_upload_route_returns_trip_id(staff_client, db):
    make_user(db, phone="79990000000", telegram_id=111)
    make_point(db, "A1")
    make_point(db, "B1")

    r = staff_client.post(
        "/api/upload",
        files={"file": ("trips.xlsx", xlsx_bytes(_rows()),
                        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")},
    )

    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["results"]["processed"] == 1
    assert db.get(Trip, body["tripId"]).carpark == "AP1"


def test_upload_route_rejects_bad_header(staff_client):
    r = staff_client.post("/api/upload", files={"file": ("trips.csv", b"phone;name\n1;2\n", "text/csv")})

    assert r.status_code == 400
    assert r.json()["success"] is False
    assert "trip_identifier" in r.json()["error"]


def test_upload_requires_session(client):
    r = client.post("/api/upload", files={"file": ("trips.csv", b"x", "text/csv")})
    assert r.status_code == 401
