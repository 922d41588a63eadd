from sqlalchemy import Column, Integer, String, Float, DateTime

from ..db import Base
from .common import utcnow


class Point(Base):
    __tablename__ = "points"

    id = Column(Integer, primary_key=True)
    point_id = Column(String(50), unique=True, index=True, nullable=False)   # короткий код пункта
    point_name = Column(String(255), nullable=False)

    # окна приёмки
    door_open_1 = Column(String(100), nullable=True)
    door_open_2 = Column(String(100), nullable=True)
    door_open_3 = Column(String(100), nullable=True)

    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    address = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def reception_windows(self) -> list[str]:
        return [w for w in (self.door_open_1, self.door_open_2, self.door_open_3) if w]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "point_id": self.point_id,
            "point_name": self.point_name,
            "door_open_1": self.door_open_1,
            "door_open_2": self.door_open_2,
            "door_open_3": self.door_open_3,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }
