from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


# ---------- Declarative Base ----------
class Base(DeclarativeBase):
    pass


# ---------- Engine / Session ----------
DATABASE_URL = settings.DATABASE_URL

if DATABASE_URL.startswith("sqlite"):
    # sqlite: один коннект на процесс для in-memory, без проверки потока
    sqlite_kwargs = {"connect_args": {"check_same_thread": False}}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        sqlite_kwargs["poolclass"] = StaticPool
    engine = create_engine(DATABASE_URL, future=True, **sqlite_kwargs)
else:
    engine = create_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        future=True,
    )

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def init_db() -> None:
    # регистрируем все таблицы перед create_all
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


# ---------- Dependency ----------
def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Атомарный блок записи: commit при успехе, rollback при любой ошибке.
    Ошибка пробрасывается вызывающему.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
