"""Engine construction and the session scope used by the SQL local store."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from ..config import Settings
from .base import Base


def build_store_engine(settings: Settings) -> Engine:
    """Engine for the ``database`` local store mode."""
    database_url = settings.database_url
    if not database_url:
        raise RuntimeError("LESSONSYNC_DATABASE_URL must be configured for the database local store.")
    if database_url.startswith("sqlite"):
        # The store is touched from the event loop and from worker threads.
        return create_engine(
            database_url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
        )
    return create_engine(
        database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
    )


@contextmanager
def session_scope(factory: sessionmaker[Session], *, commit: bool = True) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        if commit:
            session.commit()
    except Exception:  # noqa: BLE001
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    from . import models  # noqa: F401  registers local_entries on Base.metadata

    Base.metadata.create_all(engine)


__all__ = ["build_store_engine", "create_tables", "session_scope"]
