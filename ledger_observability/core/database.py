"""SQLAlchemy engine, session factory, and shared column types."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from ledger_observability.core.config import DatabaseSettings


class Base(DeclarativeBase):
    """Declarative base for every table owned by this service."""


class UTCDateTime(TypeDecorator):
    """Store naive UTC, return timezone-aware UTC.

    SQLite drops tzinfo on the way out, so values are normalized to UTC
    before binding and re-tagged on load.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetimes are not accepted; pass an aware UTC value")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


SessionFactory = sessionmaker[Session]


def create_db_engine(db_settings: DatabaseSettings) -> Engine:
    """Build an engine suited to the configured URL.

    In-memory SQLite is connection-scoped, so a single shared connection is
    used for it. File-based SQLite gets a busy timeout so concurrent writers
    queue on the database lock.
    """

    url = db_settings.url
    kwargs: dict[str, Any] = {"echo": db_settings.echo}

    if url.startswith("sqlite"):
        connect_args: dict[str, Any] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        else:
            connect_args["timeout"] = db_settings.busy_timeout_seconds
        kwargs["connect_args"] = connect_args

    return create_engine(url, **kwargs)


def create_session_factory(engine: Engine) -> SessionFactory:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables that do not exist yet."""

    # Import models so they register on Base.metadata
    from ledger_observability import models  # noqa: F401

    Base.metadata.create_all(engine)
