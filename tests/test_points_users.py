from tripdispatch.models import User

from conftest import make_user


def test_point_crud(admin_client):
    r = admin_client.post("/api/points", json={"point_id": " a1 ", "point_name": "Склад", "latitude": "55.7"})
    assert r.status_code == 200
    point = r.json()["point"]
    assert point["point_id"] == "A1"
    assert point["latitude"] == 55.7

    dup = admin_client.post("/api/points", json={"point_id": "A1", "point_name": "Другой"})
    assert dup.status_code == 400

    upd = admin_client.put(f"/api/points/{point['id']}", json={"door_open_1": "08:00-12:00"})
    assert upd.json()["point"]["door_open_1"] == "08:00-12:00"

    assert admin_client.delete(f"/api/points/{point['id']}").status_code == 200
    assert admin_client.delete(f"/api/points/{point['id']}").status_code == 404


def test_operator_reads_points_but_cannot_write(staff_client):
    assert staff_client.get("/api/points").status_code == 200
    assert staff_client.post("/api/points", json={"point_id": "A1", "point_name": "x"}).status_code == 403


def test_users_list_scoped_by_carpark(staff_client, db):
    make_user(db, phone="79990000000", carpark="AP1")
    make_user(db, phone="79990000001", carpark="AP2")

    phones = {u["phone"] for u in staff_client.get("/api/users").json()["users"]}

    assert "79990000000" in phones
    assert "79990000001" not in phones


def test_admin_edits_user(admin_client, db):
    u = make_user(db, phone="79990000000", verified=False)

    r = admin_client.put(f"/api/users/{u.id}", json={"verified": True, "carpark": "AP9"})
    assert r.json()["user"]["verified"] is True
    assert r.json()["user"]["carpark"] == "AP9"

    assert admin_client.put(f"/api/users/{u.id}", json={"role": "boss"}).status_code == 400
    assert admin_client.put("/api/users/9999", json={}).status_code == 404


def test_admin_deletes_user(admin_client, db):
    u = make_user(db, phone="79990000000")
    uid = u.id

    assert admin_client.delete(f"/api/users/{uid}").status_code == 200
    db.expire_all()
    assert db.get(User, uid) is None


def test_operator_cannot_edit_users(staff_client, db):
    u = make_user(db, phone="79990000000")
    assert staff_client.put(f"/api/users/{u.id}", json={"verified": True}).status_code == 403
