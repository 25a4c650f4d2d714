"""Shared fixtures for unit and feature tests."""

from __future__ import annotations

import typing as typ

import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from beacon.sink.sql import SqlEventSink

if typ.TYPE_CHECKING:
    from pathlib import Path


@pytest_asyncio.fixture
async def sql_sink(tmp_path: Path) -> typ.AsyncIterator[SqlEventSink]:
    """Yield a SQL event sink backed by a fresh SQLite database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'beacon_test.db'}")
    sink = SqlEventSink(engine)
    await sink.ensure_schema()
    try:
        yield sink
    finally:
        await sink.close()
