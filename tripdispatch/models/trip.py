from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, DateTime, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
import enum

from ..db import Base
from .common import utcnow


class TripStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    ERROR = "error"
    DELETED = "deleted"


class ResponseStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class PointType(str, enum.Enum):
    LOADING = "P"
    UNLOADING = "D"


class Trip(Base):
    """Рассылка: пачка уведомлений водителям из одной загрузки файла."""
    __tablename__ = "trips"

    id = Column(Integer, primary_key=True)
    status = Column(String(20), nullable=False, default=TripStatus.ACTIVE.value)
    carpark = Column(String(50), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    messages = relationship("TripMessage", back_populates="trip", cascade="all, delete-orphan")
    points = relationship("TripPoint", back_populates="trip", cascade="all, delete-orphan")


class TripMessage(Base):
    __tablename__ = "trip_messages"

    id = Column(Integer, primary_key=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    phone = Column(String(32), nullable=False, index=True)
    telegram_id = Column(BigInteger, nullable=True)

    message = Column(Text, nullable=True)          # последний отправленный текст
    status = Column(String(20), nullable=False, default=MessageStatus.PENDING.value)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    telegram_message_id = Column(BigInteger, nullable=True)

    response_status = Column(String(20), nullable=False, default=ResponseStatus.PENDING.value)
    response_comment = Column(Text, nullable=True)
    response_at = Column(DateTime, nullable=True)
    dispatcher_comment = Column(Text, nullable=True)

    trip_identifier = Column(String(100), nullable=False)
    vehicle_number = Column(String(50), nullable=True)
    planned_loading_time = Column(String(50), nullable=True)
    driver_comment = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    trip = relationship("Trip", back_populates="messages")

    __table_args__ = (
        UniqueConstraint("trip_id", "phone", "trip_identifier", name="uniq_trip_message_per_phone_trip"),
        Index("ix_trip_messages_trip_status", "trip_id", "status"),
    )

    def to_dict(self) -> dict:
        def _dt(x):
            return x.isoformat() if x else None

        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "phone": self.phone,
            "telegram_id": self.telegram_id,
            "status": self.status,
            "error_message": self.error_message,
            "sent_at": _dt(self.sent_at),
            "telegram_message_id": self.telegram_message_id,
            "response_status": self.response_status,
            "response_comment": self.response_comment,
            "response_at": _dt(self.response_at),
            "dispatcher_comment": self.dispatcher_comment,
            "trip_identifier": self.trip_identifier,
            "vehicle_number": self.vehicle_number,
            "planned_loading_time": self.planned_loading_time,
            "driver_comment": self.driver_comment,
            "created_at": _dt(self.created_at),
        }


class TripPoint(Base):
    __tablename__ = "trip_points"

    id = Column(Integer, primary_key=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    point_id = Column(Integer, ForeignKey("points.id"), nullable=False)
    point_type = Column(String(1), nullable=False)      # P: погрузка, D: разгрузка
    point_num = Column(Integer, nullable=False, default=0)
    trip_identifier = Column(String(100), nullable=True)
    driver_phone = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    trip = relationship("Trip", back_populates="points")
    point = relationship("Point")

    __table_args__ = (Index("ix_trip_points_trip_identifier", "trip_id", "trip_identifier"),)

    def to_dict(self) -> dict:
        p = self.point
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "point_type": self.point_type,
            "point_num": self.point_num,
            "trip_identifier": self.trip_identifier,
            "driver_phone": self.driver_phone,
            "point_id": p.point_id if p else None,
            "point_name": p.point_name if p else None,
            "latitude": p.latitude if p else None,
            "longitude": p.longitude if p else None,
        }
