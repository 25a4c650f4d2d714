"""ClickHouse adapter for the events table.

The table uses ``ReplacingMergeTree`` ordered by
``(project_id, event_time, event_id)``, so a redelivered event collapses
into its earlier copy once parts merge. Readers that must never see a
duplicate query with ``FINAL``.
"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import inspect
import typing as typ
import urllib.parse

import clickhouse_connect
from clickhouse_connect.driver.exceptions import ClickHouseError

from beacon.logging import get_logger, log_info
from beacon.sink.errors import SinkConfigError, SinkWriteError
from beacon.sink.schema import COLUMN_NAMES, SCHEMA_VERSION, SINK_COLUMNS, ColumnKind

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from clickhouse_connect.driver.asyncclient import AsyncClient

    from beacon.sink.schema import SinkRow

logger = get_logger(__name__)

SECURE_SCHEME = "clickhouses"
PLAIN_SCHEME = "clickhouse"
_DEFAULT_PORTS = {PLAIN_SCHEME: 8123, SECURE_SCHEME: 8443}

_COLUMN_TYPES = {
    ColumnKind.TEXT: "String",
    ColumnKind.TIMESTAMP: "DateTime64(3, 'UTC')",
    ColumnKind.DIMENSION: "UInt32",
    ColumnKind.JSON: "String",
}


@dc.dataclass(frozen=True, slots=True)
class ClickHouseSettings:
    """Connection settings parsed from a ``clickhouse[s]://`` URL."""

    host: str
    port: int
    username: str = "default"
    password: str = ""
    database: str = "default"
    secure: bool = False
    table: str = "events"

    @classmethod
    def from_url(cls, url: str) -> ClickHouseSettings:
        """Parse ``clickhouse[s]://user:pass@host:port/database``.

        Raises
        ------
        SinkConfigError
            If the scheme is not a ClickHouse scheme or the host is missing.

        """
        parts = urllib.parse.urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in _DEFAULT_PORTS:
            msg = "expected clickhouse:// or clickhouses://"
            raise SinkConfigError.invalid_url(url, msg)
        if not parts.hostname:
            raise SinkConfigError.invalid_url(url, "missing host")
        try:
            port = parts.port or _DEFAULT_PORTS[scheme]
        except ValueError as exc:
            raise SinkConfigError.invalid_url(url, str(exc)) from exc
        return cls(
            host=parts.hostname,
            port=port,
            username=urllib.parse.unquote(parts.username or "default"),
            password=urllib.parse.unquote(parts.password or ""),
            database=parts.path.strip("/") or "default",
            secure=scheme == SECURE_SCHEME,
        )


def create_table_sql(database: str, table: str) -> str:
    """Return the idempotent DDL for the events table."""
    columns = ",\n    ".join(
        f"`{column.name}` {_COLUMN_TYPES[column.kind]}" for column in SINK_COLUMNS
    )
    return (
        f"CREATE TABLE IF NOT EXISTS `{database}`.`{table}` (\n    {columns}\n)\n"
        "ENGINE = ReplacingMergeTree\n"
        "PARTITION BY toYYYYMM(event_time)\n"
        "ORDER BY (project_id, event_time, event_id)\n"
        "SETTINGS index_granularity = 8192"
    )


type ClientFactory = cabc.Callable[[ClickHouseSettings], cabc.Awaitable[AsyncClient]]


async def _default_client(settings: ClickHouseSettings) -> AsyncClient:
    return await clickhouse_connect.get_async_client(
        host=settings.host,
        port=settings.port,
        username=settings.username,
        password=settings.password,
        database=settings.database,
        secure=settings.secure,
    )


class ClickHouseEventSink:
    """:class:`~beacon.sink.protocol.EventSink` backed by clickhouse-connect."""

    def __init__(
        self,
        settings: ClickHouseSettings,
        *,
        client_factory: ClientFactory = _default_client,
    ) -> None:
        """Bind the sink to connection settings; connects lazily."""
        self._settings = settings
        self._client_factory = client_factory
        self._client: AsyncClient | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_url(cls, url: str) -> ClickHouseEventSink:
        """Build a sink from a ``clickhouse[s]://`` URL."""
        return cls(ClickHouseSettings.from_url(url))

    async def _get_client(self) -> AsyncClient:
        async with self._lock:
            if self._client is None:
                self._client = await self._client_factory(self._settings)
            return self._client

    async def ensure_schema(self) -> None:
        """Create the events table if it does not exist."""
        client = await self._get_client()
        await client.command(
            create_table_sql(self._settings.database, self._settings.table)
        )
        log_info(
            logger,
            "ClickHouse table %s.%s ready (schema v%d)",
            self._settings.database,
            self._settings.table,
            SCHEMA_VERSION,
        )

    async def write(self, row: SinkRow) -> None:
        """Insert one row.

        Raises
        ------
        SinkWriteError
            If ClickHouse rejects the insert.

        """
        client = await self._get_client()
        try:
            await client.insert(
                self._settings.table,
                [[row[name] for name in COLUMN_NAMES]],
                column_names=list(COLUMN_NAMES),
                database=self._settings.database,
            )
        except ClickHouseError as exc:
            raise SinkWriteError.from_backend("ClickHouse", str(exc)) from exc

    async def close(self) -> None:
        """Close the client if one was opened."""
        async with self._lock:
            client, self._client = self._client, None
        if client is None:
            return
        # AsyncClient.close is a coroutine in newer clickhouse-connect releases.
        result = client.close()
        if inspect.isawaitable(result):
            await result


__all__ = ["ClickHouseEventSink", "ClickHouseSettings", "create_table_sql"]
