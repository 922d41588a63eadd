from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..db import Base
from .common import utcnow


class TripSubscription(Base):
    """Подписка оператора на периодические сводки по рассылке."""
    __tablename__ = "trip_subscriptions"

    id = Column(Integer, primary_key=True)
    trip_id = Column(Integer, ForeignKey("trips.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    interval_minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_notification_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = relationship("User")
    trip = relationship("Trip")

    __table_args__ = (
        # не более одной подписки на пару (рассылка, пользователь)
        UniqueConstraint("trip_id", "user_id", name="uniq_subscription_per_trip_user"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trip_id": self.trip_id,
            "user_id": self.user_id,
            "interval_minutes": self.interval_minutes,
            "is_active": self.is_active,
            "last_notification_at": self.last_notification_at.isoformat() if self.last_notification_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
