# Импорт всех моделей, чтобы Base.metadata знал о таблицах
from .user import User, UserSession, UserRole, RegistrationState  # noqa: F401
from .point import Point  # noqa: F401
from .trip import (  # noqa: F401
    Trip, TripStatus, TripMessage, MessageStatus, ResponseStatus, TripPoint, PointType,
)
from .subscription import TripSubscription  # noqa: F401
