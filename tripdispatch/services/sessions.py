from __future__ import annotations

import datetime as dt
import secrets

from sqlalchemy import select, delete
from sqlalchemy.orm import Session

from ..config import settings
from ..models import User, UserSession
from ..models.common import utcnow


def create_session(db: Session, user: User) -> UserSession:
    # одна живая сессия на пользователя: старую заменяем
    db.execute(delete(UserSession).where(UserSession.user_id == user.id))
    s = UserSession(
        user_id=user.id,
        session_token=secrets.token_hex(32),
        expires_at=utcnow() + dt.timedelta(days=settings.SESSION_TTL_DAYS),
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def get_session_user(db: Session, token: str | None) -> User | None:
    if not token:
        return None
    s = db.execute(select(UserSession).where(UserSession.session_token == token)).scalar_one_or_none()
    if s is None:
        return None
    if s.expires_at <= utcnow():
        db.delete(s)
        db.commit()
        return None
    return s.user


def delete_session(db: Session, token: str | None) -> bool:
    if not token:
        return False
    n = db.execute(delete(UserSession).where(UserSession.session_token == token)).rowcount
    db.commit()
    return bool(n)
