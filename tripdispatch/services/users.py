from sqlalchemy.orm import Session
from sqlalchemy import select

from ..models.user import User, UserRole, RegistrationState


def normalize_phone(phone) -> str:
    # в базе телефон хранится без "+" и пробелов
    s = str(phone or "").strip().replace(" ", "").replace("-", "")
    return s[1:] if s.startswith("+") else s


def get_by_phone(db: Session, phone: str) -> User | None:
    return db.execute(select(User).where(User.phone == normalize_phone(phone))).scalar_one_or_none()


def get_by_telegram_id(db: Session, telegram_id: int) -> User | None:
    return db.execute(select(User).where(User.telegram_id == int(telegram_id))).scalar_one_or_none()


def upsert_from_contact(db: Session, telegram_id: int, contact: dict, username: str | None = None) -> tuple[User, bool]:
    """
    Регистрация по контакту из Telegram.
    Ищем по телефону: нашли, обновляем; нет, создаём водителя (не верифицирован).
    Возвращает (user, created).
    """
    phone = normalize_phone(contact.get("phone_number"))
    if not phone:
        raise ValueError("В контакте нет номера телефона")

    first = (contact.get("first_name") or "").strip()
    last = (contact.get("last_name") or "").strip()
    name = f"{first} {last}".strip() or None

    u = get_by_phone(db, phone)
    created = u is None

    # telegram_id уникален: если он висел на другой записи, снимаем
    other = get_by_telegram_id(db, telegram_id)
    if other is not None and (u is None or other.id != u.id):
        other.telegram_id = None
        db.flush()

    if u is None:
        u = User(
            phone=phone,
            role=UserRole.DRIVER.value,
            verified=False,
        )
        db.add(u)

    u.telegram_id = int(telegram_id)
    if name:
        u.name = name
        u.first_name = u.first_name or (first or None)
        u.last_name = u.last_name or (last or None)
        u.full_name = u.full_name or name
    if username:
        u.username = username
    u.registration_state = RegistrationState.COMPLETED.value

    db.commit()
    db.refresh(u)
    return u, created


_EDITABLE = ("name", "first_name", "last_name", "full_name", "carpark", "role", "verified", "registration_state", "phone")


def admin_update_user(db: Session, user_id: int, payload: dict) -> User:
    u = db.get(User, user_id)
    if not u:
        raise LookupError("Пользователь не найден")

    for key in _EDITABLE:
        if key not in payload:
            continue
        value = payload[key]
        if key == "role":
            try:
                value = UserRole(value).value
            except ValueError:
                raise ValueError(f"Недопустимая роль: {value}")
        elif key == "verified":
            value = bool(value)
        elif key == "phone":
            value = normalize_phone(value) or None
        elif isinstance(value, str):
            value = value.strip() or None
        setattr(u, key, value)

    db.commit()
    db.refresh(u)
    return u


def admin_delete_user(db: Session, user_id: int) -> None:
    u = db.get(User, user_id)
    if not u:
        raise LookupError("Пользователь не найден")
    db.delete(u)
    db.commit()


def list_users(db: Session, carpark: str | None = None) -> list[User]:
    q = select(User).order_by(User.created_at.desc(), User.id.desc())
    if carpark is not None:
        q = q.where(User.carpark == carpark)
    return list(db.execute(q).scalars().all())
