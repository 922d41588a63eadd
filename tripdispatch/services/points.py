from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import Point

_FIELDS = ("point_name", "door_open_1", "door_open_2", "door_open_3", "address")


def _coord(value, name: str):
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Некорректное значение {name}")


def _apply(p: Point, payload: dict) -> None:
    for key in _FIELDS:
        if key in payload:
            v = payload[key]
            setattr(p, key, (str(v).strip() or None) if v is not None else None)
    for key in ("latitude", "longitude"):
        if key in payload:
            setattr(p, key, _coord(payload[key], key))


def _ensure_unique(db: Session, code: str, exclude_id: int | None = None) -> None:
    q = select(Point.id).where(Point.point_id == code)
    if exclude_id is not None:
        q = q.where(Point.id != exclude_id)
    if db.execute(q).first():
        raise ValueError(f"Пункт с ID {code} уже существует")


def list_points(db: Session) -> list[Point]:
    return list(db.execute(select(Point).order_by(Point.point_id)).scalars().all())


def create_point(db: Session, payload: dict) -> Point:
    code = str(payload.get("point_id") or "").strip().upper()
    name = str(payload.get("point_name") or "").strip()
    if not code or not name:
        raise ValueError("point_id и point_name обязательны")
    _ensure_unique(db, code)

    p = Point(point_id=code)
    _apply(p, payload)
    db.add(p)
    db.commit()
    db.refresh(p)
    return p


def update_point(db: Session, pk: int, payload: dict) -> Point:
    p = db.get(Point, pk)
    if not p:
        raise LookupError("Пункт не найден")
    if "point_id" in payload:
        code = str(payload["point_id"] or "").strip().upper()
        if not code:
            raise ValueError("point_id не может быть пустым")
        _ensure_unique(db, code, exclude_id=p.id)
        p.point_id = code
    _apply(p, payload)
    if not p.point_name:
        raise ValueError("point_name не может быть пустым")
    db.commit()
    db.refresh(p)
    return p


def delete_point(db: Session, pk: int) -> None:
    p = db.get(Point, pk)
    if not p:
        raise LookupError("Пункт не найден")
    db.delete(p)
    db.commit()
