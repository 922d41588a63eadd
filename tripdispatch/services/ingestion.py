# tripdispatch/services/ingestion.py
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..db import transaction
from ..models import Point, Trip, TripMessage, TripPoint, TripStatus, MessageStatus, ResponseStatus, User
from .spreadsheet import TripData, parse_upload
from .users import get_by_phone

logger = logging.getLogger(__name__)


def _load_points(db: Session, codes: set[str]) -> dict[str, Point]:
    if not codes:
        return {}
    rows = db.execute(select(Point).where(Point.point_id.in_(codes))).scalars().all()
    return {p.point_id: p for p in rows}


def _create_unit(db: Session, trip: Trip, td: TripData, user: User, points: dict[str, Point]) -> TripMessage:
    """Один рейс водителя: сообщение + его пункты, одной транзакцией."""
    with transaction(db):
        msg = TripMessage(
            trip_id=trip.id,
            phone=td.phone,
            telegram_id=user.telegram_id,
            status=MessageStatus.PENDING.value,
            response_status=ResponseStatus.PENDING.value,
            trip_identifier=td.trip_identifier,
            vehicle_number=td.vehicle_number or None,
            planned_loading_time=td.planned_loading_time or None,
            driver_comment=td.driver_comment or None,
        )
        db.add(msg)
        for kind, refs in (("P", td.loading_points), ("D", td.unloading_points)):
            for ref in refs:
                db.add(TripPoint(
                    trip_id=trip.id,
                    point_id=points[ref.point_id].id,
                    point_type=kind,
                    point_num=ref.point_num,
                    trip_identifier=td.trip_identifier,
                    driver_phone=td.phone,
                ))
        db.flush()
    return msg


def ingest_upload(db: Session, content: bytes, carpark: str | None = None) -> tuple[int, dict]:
    """
    Файл → новая рассылка (Trip) + сообщения в статусе pending.

    Ошибки по отдельным телефонам/рейсам попадают в сводку и не прерывают обработку:
    частичный успех возможен.
    Возвращает (trip_id, results).
    """
    grouped, validation_errors, _ = parse_upload(content)

    trip = Trip(status=TripStatus.ACTIVE.value, carpark=carpark)
    db.add(trip)
    db.commit()
    db.refresh(trip)

    all_codes = {code for trips in grouped.values() for td in trips.values() for code in td.point_ids}
    points = _load_points(db, all_codes)

    results = {
        "processed": 0,
        "errors": 0,
        "unverified": 0,
        "missing_points": 0,
        "details": [],
        "validation_errors": validation_errors,
    }
    missing_codes: set[str] = set()

    for phone, trips in grouped.items():
        user = get_by_phone(db, phone)
        if user is None:
            results["errors"] += 1
            results["details"].append({"phone": phone, "status": "error", "error": "Пользователь не найден"})
            continue
        if not user.verified:
            results["unverified"] += 1
            results["details"].append({"phone": phone, "status": "unverified", "error": "Пользователь не верифицирован"})
            continue

        for trip_identifier, td in trips.items():
            missing = sorted({code for code in td.point_ids if code not in points})
            if missing:
                missing_codes.update(missing)
                results["details"].append({
                    "phone": phone,
                    "trip_identifier": trip_identifier,
                    "status": "missing_points",
                    "missing_points": missing,
                })
                continue

            try:
                msg = _create_unit(db, trip, td, user, points)
            except SQLAlchemyError as e:
                logger.error("Trip %s: failed to store %s/%s: %s", trip.id, phone, trip_identifier, e)
                results["errors"] += 1
                results["details"].append({
                    "phone": phone,
                    "trip_identifier": trip_identifier,
                    "status": "error",
                    "error": str(e.__cause__ or e),
                })
                continue

            results["processed"] += 1
            results["details"].append({
                "phone": phone,
                "trip_identifier": trip_identifier,
                "status": "success",
                "message_id": msg.id,
            })

    results["missing_points"] = len(missing_codes)
    logger.info(
        "Trip %s ingested: processed=%s errors=%s unverified=%s missing_points=%s",
        trip.id, results["processed"], results["errors"], results["unverified"], results["missing_points"],
    )
    return trip.id, results
