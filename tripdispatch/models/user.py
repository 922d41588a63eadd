from sqlalchemy import Column, Integer, BigInteger, String, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
import enum

from ..db import Base
from .common import utcnow


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    OPERATOR = "operator"
    DRIVER = "driver"


class RegistrationState(str, enum.Enum):
    AWAITING_CONTACT = "awaiting_contact"
    COMPLETED = "completed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    telegram_id = Column(BigInteger, unique=True, index=True, nullable=True)
    phone = Column(String(32), unique=True, index=True, nullable=True)   # без ведущего "+"

    name = Column(String(200), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    full_name = Column(String(200), nullable=True)
    username = Column(String(100), nullable=True)

    role = Column(String(20), nullable=False, default=UserRole.DRIVER.value)
    carpark = Column(String(50), nullable=True)          # автохозяйство
    verified = Column(Boolean, nullable=False, default=False)
    registration_state = Column(String(30), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        return self.full_name or self.first_name or self.name or (f"@{self.username}" if self.username else f"ID {self.id}")

    @property
    def is_registered(self) -> bool:
        return bool(self.telegram_id) and self.registration_state == RegistrationState.COMPLETED.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "telegram_id": self.telegram_id,
            "phone": self.phone,
            "name": self.name,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "username": self.username,
            "role": self.role,
            "carpark": self.carpark,
            "verified": self.verified,
            "registration_state": self.registration_state,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True)
    # одна живая сессия на пользователя
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    session_token = Column(String(128), unique=True, index=True, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User")
