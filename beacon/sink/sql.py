"""SQLAlchemy adapter for the events table.

Rows are keyed by ``(event_id, event_time)`` so a redelivered event is
rejected by the primary key and treated as already written. On PostgreSQL
the table is range-partitioned by month on ``event_time`` and each month's
partition is created the first time a row for it arrives; other dialects
(SQLite in tests) get a plain table.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import typing as typ

from sqlalchemy import DateTime, Index, Integer, String, Text, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from beacon.logging import get_logger, log_event, log_info
from beacon.sink.errors import SinkWriteError

if typ.TYPE_CHECKING:
    from sqlalchemy.engine import Dialect
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

    from beacon.sink.schema import SinkRow

logger = get_logger(__name__)

_POSTGRES = "postgresql"


class Base(DeclarativeBase):
    """Base declarative class for sink models."""


class UTCDateTime(TypeDecorator[dt.datetime]):
    """DateTime wrapper that round-trips UTC tzinfo even on SQLite."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Store values in UTC; naive values are taken to be UTC already."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)

    def process_result_value(
        self, value: dt.datetime | None, dialect: Dialect
    ) -> dt.datetime | None:
        """Ensure result datetimes are UTC and timezone aware."""
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=dt.UTC)
        return value.astimezone(dt.UTC)


class EventRow(Base):
    """One delivered analytics event."""

    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_project_time", "project_id", "event_time"),
        {"postgresql_partition_by": "RANGE (event_time)"},
    )

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    event_time: Mapped[dt.datetime] = mapped_column(UTCDateTime(), primary_key=True)
    server_time: Mapped[dt.datetime] = mapped_column(UTCDateTime())
    project_id: Mapped[str] = mapped_column(Text())
    event: Mapped[str] = mapped_column(Text())
    user_id: Mapped[str] = mapped_column(Text(), default="")
    session_id: Mapped[str] = mapped_column(Text(), default="")
    path: Mapped[str] = mapped_column(Text(), default="")
    url: Mapped[str] = mapped_column(Text(), default="")
    referrer: Mapped[str] = mapped_column(Text(), default="")
    ua: Mapped[str] = mapped_column(Text(), default="")
    browser: Mapped[str] = mapped_column(Text(), default="")
    browser_version: Mapped[str] = mapped_column(Text(), default="")
    os: Mapped[str] = mapped_column(Text(), default="")
    os_version: Mapped[str] = mapped_column(Text(), default="")
    device_type: Mapped[str] = mapped_column(Text(), default="")
    ip: Mapped[str] = mapped_column(Text(), default="")
    country: Mapped[str] = mapped_column(Text(), default="")
    region: Mapped[str] = mapped_column(Text(), default="")
    city: Mapped[str] = mapped_column(Text(), default="")
    viewport_w: Mapped[int] = mapped_column(Integer, default=0)
    viewport_h: Mapped[int] = mapped_column(Integer, default=0)
    utm_source: Mapped[str] = mapped_column(Text(), default="")
    utm_medium: Mapped[str] = mapped_column(Text(), default="")
    utm_campaign: Mapped[str] = mapped_column(Text(), default="")
    props: Mapped[str] = mapped_column(Text(), default="{}")


async def init_sink_storage(engine: AsyncEngine) -> None:
    """Create all tables registered with Base if they are absent."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def month_bounds(moment: dt.datetime) -> tuple[dt.datetime, dt.datetime]:
    """Return the UTC ``[start, end)`` of the calendar month holding *moment*."""
    moment = moment.astimezone(dt.UTC)
    start = dt.datetime(moment.year, moment.month, 1, tzinfo=dt.UTC)
    if moment.month == 12:  # noqa: PLR2004 - December rolls into the next year
        end = dt.datetime(moment.year + 1, 1, 1, tzinfo=dt.UTC)
    else:
        end = dt.datetime(moment.year, moment.month + 1, 1, tzinfo=dt.UTC)
    return start, end


def partition_ddl(table: str, moment: dt.datetime) -> tuple[str, str]:
    """Return the partition name and DDL for the month holding *moment*."""
    start, end = month_bounds(moment)
    name = f"{table}_y{start.year:04d}m{start.month:02d}"
    ddl = (
        f'CREATE TABLE IF NOT EXISTS "{name}" PARTITION OF "{table}" '
        f"FOR VALUES FROM ('{start.isoformat()}') TO ('{end.isoformat()}')"
    )
    return name, ddl


# PostgreSQL unique_violation; SQLite reports its extended result code name.
_UNIQUE_VIOLATION_SQLSTATE = "23505"
_SQLITE_KEY_ERRORS = frozenset(
    {"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"}
)
_SQLITE_KEY_PREFIX = "UNIQUE constraint failed"


def is_duplicate_key(exc: IntegrityError) -> bool:
    """Return whether *exc* is a primary-key or unique violation.

    Other integrity failures (``NOT NULL``, foreign keys, checks) are not
    duplicates and must surface as write errors.
    """
    orig = exc.orig
    for source in (orig, getattr(orig, "__cause__", None)):
        if getattr(source, "sqlstate", None) == _UNIQUE_VIOLATION_SQLSTATE:
            return True
        if getattr(source, "pgcode", None) == _UNIQUE_VIOLATION_SQLSTATE:
            return True
        if getattr(source, "sqlite_errorname", None) in _SQLITE_KEY_ERRORS:
            return True
    return str(orig).startswith(_SQLITE_KEY_PREFIX)


class SqlEventSink:
    """:class:`~beacon.sink.protocol.EventSink` on any SQLAlchemy async engine."""

    def __init__(self, engine: AsyncEngine) -> None:
        """Bind the sink to an async engine it owns."""
        self._engine = engine
        self._session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            engine, expire_on_commit=False
        )
        self._partitions: set[str] = set()
        self._partition_lock = asyncio.Lock()

    @classmethod
    def from_url(cls, url: str) -> SqlEventSink:
        """Build a sink from a SQLAlchemy async URL."""
        return cls(create_async_engine(url))

    @property
    def engine(self) -> AsyncEngine:
        """Engine the sink writes through."""
        return self._engine

    @property
    def partitioned(self) -> bool:
        """Return True when the backend uses monthly range partitions."""
        return self._engine.dialect.name == _POSTGRES

    async def ensure_schema(self) -> None:
        """Create the events table (and its index) if absent."""
        await init_sink_storage(self._engine)
        log_info(
            logger,
            "SQL events table ready (dialect=%s, partitioned=%s)",
            self._engine.dialect.name,
            self.partitioned,
        )

    async def _ensure_partition(self, event_time: dt.datetime) -> None:
        name, ddl = partition_ddl(EventRow.__tablename__, event_time)
        if name in self._partitions:
            return
        async with self._partition_lock:
            if name in self._partitions:
                return
            async with self._engine.begin() as conn:
                await conn.execute(text(ddl))
            self._partitions.add(name)
        log_event(logger, "INFO", "sink.partition.created", partition=name)

    async def write(self, row: SinkRow) -> None:
        """Insert one row, ignoring an ``event_id`` that is already stored.

        Raises
        ------
        SinkWriteError
            If the database rejects the insert for any other reason.

        """
        try:
            if self.partitioned:
                await self._ensure_partition(row["event_time"])
            async with self._session_factory() as session:
                session.add(EventRow(**row))
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    if not is_duplicate_key(exc):
                        raise
                    log_event(
                        logger,
                        "INFO",
                        "sink.row.duplicate",
                        event_id=row["event_id"],
                    )
        except SQLAlchemyError as exc:
            raise SinkWriteError.from_backend("SQL", str(exc)) from exc

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        await self._engine.dispose()


__all__ = [
    "Base",
    "EventRow",
    "SqlEventSink",
    "UTCDateTime",
    "init_sink_storage",
    "is_duplicate_key",
    "month_bounds",
    "partition_ddl",
]
