# tripdispatch/routers/auth.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..auth.telegram import verify_login_widget
from ..config import settings
from ..db import get_db
from ..deps import get_current_user
from ..models.user import User, UserRole
from ..services.sessions import create_session, delete_session
from ..services.users import get_by_telegram_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

_STAFF = {UserRole.ADMIN.value, UserRole.OPERATOR.value}


@router.post("/api/auth/telegram")
def api_auth_telegram(payload: dict, response: Response, db: Session = Depends(get_db)):
    data = verify_login_widget(payload, settings.BOT_TOKEN or "")
    if data is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Неверная подпись Telegram")

    user = get_by_telegram_id(db, int(data["id"]))
    if user is None or user.role not in _STAFF:
        logger.warning("Login denied for telegram_id=%s", data["id"])
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Доступ только для операторов и администраторов")

    s = create_session(db, user)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=s.session_token,
        max_age=settings.SESSION_TTL_DAYS * 86400,
        httponly=True,
        secure=settings.COOKIE_SECURE,
        samesite=settings.COOKIE_SAMESITE,
        path="/",
    )
    logger.info("User %s logged in", user.id)
    return {"success": True, "user": user.to_dict()}


@router.get("/api/auth/me")
def api_auth_me(user: User = Depends(get_current_user)):
    return {"success": True, "user": user.to_dict()}


@router.post("/api/auth/logout")
def api_auth_logout(request: Request, response: Response, db: Session = Depends(get_db)):
    delete_session(db, request.cookies.get(settings.SESSION_COOKIE_NAME))
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return {"success": True}
