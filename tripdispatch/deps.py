# tripdispatch/deps.py
from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from .models.user import User, UserRole
from .services.notifications import SubscriptionPoller
from .services.sessions import get_session_user
from .services.telegram import TelegramClient


# ------------------ Сессия по cookie ------------------

def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    user = get_session_user(db, token)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Требуется авторизация",
        )
    return user


def require_roles(*roles: UserRole):
    """
    Пропускает пользователя с одной из ролей, иначе 403.
    Пример: Depends(require_roles(UserRole.ADMIN, UserRole.OPERATOR))
    """
    allowed = {r.value if isinstance(r, UserRole) else r for r in roles}

    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Недостаточно прав",
            )
        return user

    return _guard


require_staff = require_roles(UserRole.ADMIN, UserRole.OPERATOR)
require_admin = require_roles(UserRole.ADMIN)


# ------------------ Общие объекты приложения ------------------

def get_telegram(request: Request) -> TelegramClient:
    return request.app.state.telegram


def get_poller(request: Request) -> SubscriptionPoller:
    return request.app.state.poller


# ------------------ Секреты внешних вызовов ------------------

def verify_cron(authorization: Optional[str] = Header(None)) -> None:
    expected = settings.CRON_SECRET
    if not expected or not authorization or not hmac.compare_digest(authorization, f"Bearer {expected}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def verify_webhook_secret(
    x_telegram_bot_api_secret_token: Optional[str] = Header(None, alias="X-Telegram-Bot-Api-Secret-Token"),
) -> None:
    expected = settings.WEBHOOK_SECRET
    if not expected:
        return
    if not x_telegram_bot_api_secret_token or not hmac.compare_digest(x_telegram_bot_api_secret_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Bad webhook secret")
