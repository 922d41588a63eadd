# tripdispatch/routers/users.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import require_staff, require_admin
from ..models.user import User, UserRole
from ..services.users import list_users, admin_update_user, admin_delete_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


@router.get("/api/users")
def api_users(user: User = Depends(require_staff), db: Session = Depends(get_db)):
    # оператор видит только свой автопарк
    carpark = None if user.role == UserRole.ADMIN.value else user.carpark
    if carpark is None and user.role != UserRole.ADMIN.value:
        return {"success": True, "users": []}
    return {"success": True, "users": [u.to_dict() for u in list_users(db, carpark)]}


@router.put("/api/users/{user_id}")
def api_user_update(user_id: int, payload: dict, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    try:
        u = admin_update_user(db, user_id, payload)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    logger.info("Admin %s updated user %s", admin.id, user_id)
    return {"success": True, "user": u.to_dict()}


@router.delete("/api/users/{user_id}")
def api_user_delete(user_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Нельзя удалить самого себя")
    try:
        admin_delete_user(db, user_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    logger.info("Admin %s deleted user %s", admin.id, user_id)
    return {"success": True, "id": user_id}
