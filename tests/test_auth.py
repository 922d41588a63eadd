import time

from tripdispatch.auth.telegram import sign_login_widget, verify_login_widget
from tripdispatch.config import settings
from tripdispatch.models import UserSession

from conftest import make_user

TOKEN = "123456:TEST-TOKEN"


def _widget(tg_id, **extra):
    data = {"id": tg_id, "first_name": "Оля", "username": "olya", "auth_date": int(time.time()), **extra}
    data["hash"] = sign_login_widget(data, TOKEN)
    return data


def test_verify_login_widget():
    data = _widget(1)
    assert verify_login_widget(data, TOKEN)["id"] == 1
    assert verify_login_widget({**data, "first_name": "Другая"}, TOKEN) is None
    assert verify_login_widget(data, "other-token") is None


def test_stale_auth_date_is_rejected():
    data = _widget(1, auth_date=int(time.time()) - 3 * 86400)
    assert verify_login_widget(data, TOKEN) is None


def test_operator_login_sets_session_cookie(client, db, operator):
    r = client.post("/api/auth/telegram", json=_widget(operator.telegram_id))

    assert r.status_code == 200
    assert r.json()["user"]["role"] == "operator"
    assert settings.SESSION_COOKIE_NAME in r.cookies
    assert db.query(UserSession).filter_by(user_id=operator.id).count() == 1

    me = client.get("/api/auth/me")
    assert me.json()["user"]["id"] == operator.id


def test_relogin_replaces_session(client, db, operator):
    client.post("/api/auth/telegram", json=_widget(operator.telegram_id))
    client.post("/api/auth/telegram", json=_widget(operator.telegram_id))
    assert db.query(UserSession).filter_by(user_id=operator.id).count() == 1


def test_driver_cannot_login(client, db):
    make_user(db, phone="79990000000", telegram_id=77)
    assert client.post("/api/auth/telegram", json=_widget(77)).status_code == 403


def test_bad_signature_is_unauthorized(client, operator):
    data = _widget(operator.telegram_id)
    data["hash"] = "0" * 64
    assert client.post("/api/auth/telegram", json=data).status_code == 401


def test_logout_drops_session(client, db, operator):
    client.post("/api/auth/telegram", json=_widget(operator.telegram_id))

    assert client.post("/api/auth/logout").json()["success"] is True
    assert db.query(UserSession).count() == 0
    assert client.get("/api/auth/me").status_code == 401
