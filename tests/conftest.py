import io
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BOT_TOKEN"] = "123456:TEST-TOKEN"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["SEND_DELAY_SEC"] = "0"
os.environ["APP_URL"] = "https://dispatch.example.com"
os.environ.pop("WEBHOOK_SECRET", None)

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from tripdispatch.config import settings
from tripdispatch.db import Base, engine, SessionLocal
from tripdispatch.deps import get_telegram, get_poller
from tripdispatch.main import app
from tripdispatch.models import Point, User, UserRole, RegistrationState
from tripdispatch.services.notifications import SubscriptionPoller
from tripdispatch.services.sessions import create_session
from tripdispatch.services.telegram import TelegramClient, TelegramError

HEADERS = [
    "phone", "trip_identifier", "vehicle_number", "planned_loading_time",
    "point_type", "point_num", "point_id", "driver_comment",
]


class FakeTelegram(TelegramClient):
    """Записывает вызовы Bot API вместо реальной отправки."""

    def __init__(self):
        super().__init__("TEST", "https://telegram.invalid")
        self.calls = []
        self.fail_methods = set()
        self.fail_chats = set()
        self.webhook_info = {"url": "", "pending_update_count": 0}
        self._next_message_id = 500

    async def call(self, method, payload=None):
        payload = payload or {}
        self.calls.append((method, payload))
        if method in self.fail_methods or payload.get("chat_id") in self.fail_chats:
            raise TelegramError(f"{method}: Forbidden: bot was blocked by the user")
        if method == "sendMessage":
            self._next_message_id += 1
            return {"message_id": self._next_message_id, "chat": {"id": payload["chat_id"]}}
        if method == "getWebhookInfo":
            return self.webhook_info
        if method == "getMyCommands":
            return []
        return True

    def sent(self, method="sendMessage"):
        return [p for m, p in self.calls if m == method]


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_tg():
    return FakeTelegram()


@pytest.fixture
def poller(fake_tg):
    return SubscriptionPoller(fake_tg, min_interval_sec=60, delay=0)


@pytest.fixture
def client(db, fake_tg, poller):
    app.dependency_overrides[get_telegram] = lambda: fake_tg
    app.dependency_overrides[get_poller] = lambda: poller
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def make_user(db, phone="79990000000", role=UserRole.DRIVER, telegram_id=None, carpark="AP1",
              verified=True, first_name="Иван", **extra):
    u = User(
        phone=phone,
        role=role.value if isinstance(role, UserRole) else role,
        telegram_id=telegram_id,
        carpark=carpark,
        verified=verified,
        first_name=first_name,
        registration_state=RegistrationState.COMPLETED.value if telegram_id else None,
        **extra,
    )
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def make_point(db, code, name=None, lat=None, lon=None, **doors):
    p = Point(point_id=code, point_name=name or f"Пункт {code}", latitude=lat, longitude=lon, **doors)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def login(client, db, user):
    s = create_session(db, user)
    client.cookies.set(settings.SESSION_COOKIE_NAME, s.session_token)
    return client


def xlsx_bytes(rows, headers=HEADERS):
    wb = Workbook()
    ws = wb.active
    ws.append(headers)
    for r in rows:
        ws.append(list(r))
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


@pytest.fixture
def operator(db):
    return make_user(db, phone="70000000001", role=UserRole.OPERATOR, telegram_id=9001, first_name="Оператор")


@pytest.fixture
def admin(db):
    return make_user(db, phone="70000000002", role=UserRole.ADMIN, telegram_id=9002, carpark=None,
                     first_name="Админ")


@pytest.fixture
def staff_client(client, db, operator):
    return login(client, db, operator)


@pytest.fixture
def admin_client(client, db, admin):
    return login(client, db, admin)
