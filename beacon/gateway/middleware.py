"""Falcon ASGI middleware for rate limiting and service lifecycles.

``RateLimitMiddleware`` keeps a fixed-window request counter per client IP.
``LifecycleMiddleware`` connects the broker producer at ASGI lifespan
startup and releases producer and cache connections at shutdown; a failed
producer connection fails startup so the server never accepts events it
cannot publish.
"""

from __future__ import annotations

import asyncio
import time
import typing as typ

from beacon.events.enrichment import RequestContext, client_ip
from beacon.gateway.errors import RateLimitExceededError
from beacon.gateway.observability import IngestEventLogger
from beacon.logging import get_logger, log_info

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from falcon.asgi import Request, Response

    from beacon.broker.publisher import EventPublisher

__all__ = ["Closeable", "LifecycleMiddleware", "RateLimitMiddleware"]

logger = get_logger(__name__)

_UNKNOWN_CLIENT = "unknown"
# Expired windows are swept once the table grows past this many clients.
_SWEEP_THRESHOLD = 10_000


class RateLimitMiddleware:
    """Fixed-window, per-client-IP request limiter.

    Parameters
    ----------
    max_requests
        Requests allowed per client per window.
    window_s
        Window length in seconds.
    exempt_paths
        Paths never counted (health probes).
    clock
        Monotonic time source in seconds.

    """

    def __init__(
        self,
        max_requests: int,
        window_s: float,
        *,
        exempt_paths: cabc.Iterable[str] = ("/healthz",),
        clock: cabc.Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the limiter with an empty counter table."""
        self._max_requests = max_requests
        self._window_s = window_s
        self._exempt_paths = frozenset(exempt_paths)
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()
        self._events = IngestEventLogger()

    async def allow(self, client: str) -> bool:
        """Count one request from *client* and report whether it is allowed."""
        now = self._clock()
        async with self._lock:
            if len(self._windows) > _SWEEP_THRESHOLD:
                self._sweep(now)
            started, count = self._windows.get(client, (now, 0))
            if now - started >= self._window_s:
                started, count = now, 0
            count += 1
            self._windows[client] = (started, count)
        return count <= self._max_requests

    def _sweep(self, now: float) -> None:
        expired = [
            client
            for client, (started, _count) in self._windows.items()
            if now - started >= self._window_s
        ]
        for client in expired:
            del self._windows[client]

    async def process_request(self, req: Request, _resp: Response) -> None:
        """Refuse the request when its client is over budget.

        Raises
        ------
        RateLimitExceededError
            If the client has used up its window.

        """
        if req.path in self._exempt_paths:
            return
        context = RequestContext.from_headers(req.headers, req.remote_addr)
        client = client_ip(context) or _UNKNOWN_CLIENT
        if not await self.allow(client):
            self._events.log_rate_limited(client=client, limit=self._max_requests)
            raise RateLimitExceededError


class Closeable(typ.Protocol):
    """Resource with an async ``close``."""

    async def close(self) -> None:
        """Release the resource."""
        ...


class LifecycleMiddleware:
    """Start and stop process-wide service handles with the ASGI lifespan."""

    def __init__(
        self,
        publisher: EventPublisher,
        closeables: cabc.Sequence[Closeable] = (),
    ) -> None:
        """Bind the middleware to the handles it manages."""
        self._publisher = publisher
        self._closeables = tuple(closeables)

    async def process_startup(
        self, _scope: dict[str, typ.Any], _event: dict[str, typ.Any]
    ) -> None:
        """Connect the producer; a failure aborts server startup."""
        await self._publisher.start()
        log_info(logger, "Gateway services started")

    async def process_shutdown(
        self, _scope: dict[str, typ.Any], _event: dict[str, typ.Any]
    ) -> None:
        """Flush the producer and close cache connections."""
        await self._publisher.stop()
        for closeable in self._closeables:
            await closeable.close()
        log_info(logger, "Gateway services stopped")
