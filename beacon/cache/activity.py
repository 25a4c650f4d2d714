"""Valkey-backed store of per-project activity flags.

The dashboard (or any project lifecycle collaborator) writes
``is_active:{project_id}`` when a project is created, toggled, or deleted;
the gateway only reads it.

Usage
-----
>>> cache = ValkeyActivityCache.from_url("redis://localhost:6379/0")
>>> await cache.set_flag("proj-1", active=False)
>>> await cache.get_flag("proj-1")
False

"""

from __future__ import annotations

import typing as typ

import redis.asyncio as redis_asyncio
from redis.exceptions import RedisError

from beacon.cache.errors import ActivityLookupError

KEY_PREFIX = "is_active:"

_TRUE_VALUES = frozenset({"true", "1"})
_FALSE_VALUES = frozenset({"false", "0"})


def activity_key(project_id: str) -> str:
    """Return the cache key holding *project_id*'s flag."""
    return f"{KEY_PREFIX}{project_id}"


def parse_flag(raw: str | bytes | None) -> bool | None:
    """Interpret a stored flag value.

    ``true``/``false`` (case-insensitive, optionally JSON-quoted) and
    ``1``/``0`` are understood. Anything else, including a missing key,
    yields ``None`` so the caller's fail-safe policy decides.
    """
    if raw is None:
        return None
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    normalized = text.strip().strip('"').strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return None


@typ.runtime_checkable
class ActivityFlagSource(typ.Protocol):
    """Read side of the activity cache, as used by the gateway."""

    async def get_flag(self, project_id: str) -> bool | None:
        """Return the stored flag, or ``None`` when absent or unparseable."""
        ...


class ValkeyActivityCache:
    """Activity flag store on a Valkey (Redis protocol) server."""

    def __init__(self, client: redis_asyncio.Redis) -> None:
        """Wrap an existing ``redis.asyncio`` client."""
        self._client = client

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        socket_timeout_s: float = 2.0,
    ) -> ValkeyActivityCache:
        """Build a cache with its own connection pool.

        Parameters
        ----------
        url
            ``redis://`` or ``rediss://`` connection URL.
        socket_timeout_s
            Per-operation socket timeout; a slow cache must not stall
            ingestion for the whole request deadline.

        """
        client = redis_asyncio.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout_s,
            socket_connect_timeout=socket_timeout_s,
        )
        return cls(client)

    async def get_flag(self, project_id: str) -> bool | None:
        """Read the flag for *project_id*.

        Raises
        ------
        ActivityLookupError
            If the server cannot be reached or the command fails.

        """
        try:
            raw = await self._client.get(activity_key(project_id))
        except RedisError as exc:
            raise ActivityLookupError(project_id, str(exc)) from exc
        return parse_flag(raw)

    async def set_flag(self, project_id: str, *, active: bool) -> None:
        """Store the flag for *project_id* (project created or toggled)."""
        await self._client.set(activity_key(project_id), "true" if active else "false")

    async def clear_flag(self, project_id: str) -> None:
        """Remove the flag for *project_id* (project deleted)."""
        await self._client.delete(activity_key(project_id))

    async def close(self) -> None:
        """Release the connection pool."""
        await self._client.aclose()


__all__ = [
    "KEY_PREFIX",
    "ActivityFlagSource",
    "ValkeyActivityCache",
    "activity_key",
    "parse_flag",
]
