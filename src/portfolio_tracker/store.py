"""Persistence for the portfolio state document and the refresh schedule."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    create_engine,
    select,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine

from .models import PortfolioState

metadata = MetaData()

LOGGER = logging.getLogger(__name__)

STATE_ROW_ID = 1
SCHEDULE_ROW_ID = 1


def _timestamps() -> tuple[Column, Column]:
    return (
        Column("created_at", DateTime, nullable=False, default=datetime.utcnow),
        Column("updated_at", DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow),
    )


portfolio_state = Table(
    "portfolio_state",
    metadata,
    Column("id", Integer, primary_key=True, default=STATE_ROW_ID),
    Column("payload", JSON, nullable=False),
    *_timestamps(),
)

refresh_schedule = Table(
    "refresh_schedule",
    metadata,
    Column("id", Integer, primary_key=True, default=SCHEDULE_ROW_ID),
    Column("enabled", Boolean, nullable=False, default=False),
    Column("hour", Integer, nullable=False),
    Column("minute", Integer, nullable=False),
    Column("timezone", String(64), nullable=False, default="UTC"),
    *_timestamps(),
)


DEFAULT_SCHEDULE = {"enabled": False, "hour": 16, "minute": 0, "timezone": "UTC"}


class StateStore(Protocol):
    """Port through which the engine loads and saves its state."""

    def load(self) -> PortfolioState:
        ...

    def save(self, state: PortfolioState) -> None:
        ...


def create_db_engine(database_url: str) -> Engine:
    """Create a SQLAlchemy engine."""

    LOGGER.debug("Creating database engine")
    return create_engine(database_url, future=True, pool_pre_ping=True)


@contextmanager
def session(engine: Engine) -> Iterator[Connection]:
    """Provide a transactional scope around a series of operations."""

    with engine.begin() as conn:
        yield conn


def ensure_schema(engine: Engine) -> None:
    """Create tables if they do not exist."""

    LOGGER.debug("Ensuring database schema is present")
    metadata.create_all(engine)


def _insert(conn: Connection, table: Table):
    """Return the dialect specific INSERT construct supporting ON CONFLICT."""

    if conn.dialect.name == "postgresql":
        return pg_insert(table)
    if conn.dialect.name == "sqlite":
        return sqlite_insert(table)
    raise NotImplementedError(f"Unsupported database dialect: {conn.dialect.name}")


class SqlStateStore:
    """Keeps the whole state document in a single JSON row."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        ensure_schema(engine)

    def load(self) -> PortfolioState:
        LOGGER.debug("Loading portfolio state from database")
        with self.engine.connect() as conn:
            row = conn.execute(
                select(portfolio_state.c.payload).where(portfolio_state.c.id == STATE_ROW_ID)
            ).first()
        if row is None:
            return PortfolioState()
        return PortfolioState.from_dict(row.payload)

    def save(self, state: PortfolioState) -> None:
        payload = state.to_dict()
        with session(self.engine) as conn:
            stmt = _insert(conn, portfolio_state).values(id=STATE_ROW_ID, payload=payload)
            stmt = stmt.on_conflict_do_update(
                index_elements=[portfolio_state.c.id],
                set_={"payload": stmt.excluded.payload, "updated_at": datetime.utcnow()},
            )
            conn.execute(stmt)
        LOGGER.debug(
            "Saved portfolio state (%d holdings, %d goals)",
            len(state.holdings),
            len(state.goals),
        )


class JsonFileStore:
    """Stores the state document as a JSON file, replaced atomically on save."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path)

    def load(self) -> PortfolioState:
        if not self.path.exists():
            LOGGER.debug("State file %s missing; starting empty", self.path)
            return PortfolioState()
        return PortfolioState.from_dict(json.loads(self.path.read_text(encoding="utf-8")))

    def save(self, state: PortfolioState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(state.to_dict(), handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        LOGGER.debug("Wrote portfolio state to %s", self.path)


def _schedule_from_row(data: Any) -> dict[str, Any]:
    return {
        "enabled": bool(data["enabled"]),
        "hour": data["hour"],
        "minute": data["minute"],
        "timezone": data["timezone"],
    }


def get_or_create_schedule(engine: Engine) -> dict[str, Any]:
    """Fetch the price refresh schedule, seeding a disabled default when missing."""

    LOGGER.debug("Fetching refresh schedule")
    with session(engine) as conn:
        row = conn.execute(select(refresh_schedule)).first()
        if row is not None:
            return _schedule_from_row(row._mapping)

        stmt = _insert(conn, refresh_schedule).values(id=SCHEDULE_ROW_ID, **DEFAULT_SCHEDULE)
        stmt = stmt.on_conflict_do_nothing()
        conn.execute(stmt)
        LOGGER.info(
            "Seeded default refresh schedule %02d:%02d %s (disabled)",
            DEFAULT_SCHEDULE["hour"],
            DEFAULT_SCHEDULE["minute"],
            DEFAULT_SCHEDULE["timezone"],
        )
        return dict(DEFAULT_SCHEDULE)


def update_schedule(
    engine: Engine, hour: int, minute: int, *, enabled: bool, timezone: str = "UTC"
) -> dict[str, Any]:
    """Persist a new price refresh schedule."""

    LOGGER.debug(
        "Persisting schedule change to %02d:%02d %s (enabled=%s)",
        hour,
        minute,
        timezone,
        enabled,
    )
    with session(engine) as conn:
        stmt = _insert(conn, refresh_schedule).values(
            id=SCHEDULE_ROW_ID,
            enabled=enabled,
            hour=hour,
            minute=minute,
            timezone=timezone,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[refresh_schedule.c.id],
            set_={
                "enabled": stmt.excluded.enabled,
                "hour": stmt.excluded.hour,
                "minute": stmt.excluded.minute,
                "timezone": stmt.excluded.timezone,
                "updated_at": datetime.utcnow(),
            },
        )
        conn.execute(stmt)

    return {"enabled": enabled, "hour": hour, "minute": minute, "timezone": timezone}


__all__ = [
    "StateStore",
    "SqlStateStore",
    "JsonFileStore",
    "create_db_engine",
    "ensure_schema",
    "metadata",
    "portfolio_state",
    "refresh_schedule",
    "DEFAULT_SCHEDULE",
    "get_or_create_schedule",
    "update_schedule",
]
