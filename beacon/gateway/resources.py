"""Falcon resources for the ingestion endpoint and the health probe.

Usage
-----
Register resources on the Falcon app::

    app.add_route("/e", IngestResource(service, config))
    app.add_route("/healthz", HealthResource())

"""

from __future__ import annotations

import asyncio
import typing as typ

import falcon

from beacon.broker.errors import BrokerUnavailableError
from beacon.events.enrichment import RequestContext
from beacon.events.errors import PayloadTooLargeError
from beacon.events.parsing import parse_body
from beacon.gateway.config import GatewayConfig

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from beacon.gateway.service import IngestionService

__all__ = ["HealthResource", "IngestResource", "read_body"]

SERVICE_NAME = "collector"


async def read_body(req: Request, limit: int) -> bytes:
    """Read the request body, refusing more than *limit* bytes.

    A declared ``Content-Length`` over the limit is refused before reading;
    chunked bodies are counted as they stream in.

    Raises
    ------
    PayloadTooLargeError
        If the body exceeds *limit* bytes.

    """
    declared = req.content_length
    if declared is not None and declared > limit:
        raise PayloadTooLargeError.exceeding(limit)

    chunks: list[bytes] = []
    total = 0
    async for chunk in req.stream:
        total += len(chunk)
        if total > limit:
            raise PayloadTooLargeError.exceeding(limit)
        chunks.append(chunk)
    return b"".join(chunks)


class IngestResource:
    """``POST /e``: accept a batch of analytics events."""

    def __init__(
        self,
        service: IngestionService,
        config: GatewayConfig | None = None,
    ) -> None:
        """Bind the resource to the ingestion service and its limits."""
        self._service = service
        self._config = config or GatewayConfig()

    async def on_post(self, req: Request, resp: Response) -> None:
        """Handle POST /e requests.

        Parameters
        ----------
        req
            Falcon request carrying a JSON, NDJSON, or text body.
        resp
            Falcon response populated with the batch counts.

        Raises
        ------
        ClientInputError
            For unreadable, oversized, or unsupported bodies.
        BrokerUnavailableError
            If publishing fails or exceeds the request deadline.

        """
        body = await read_body(req, self._config.max_body_bytes)
        parsed = parse_body(req.content_type, body)
        context = RequestContext.from_headers(req.headers, req.remote_addr)

        timeout_s = self._config.request_timeout_s
        try:
            async with asyncio.timeout(timeout_s):
                outcome = await self._service.ingest(parsed, context)
        except TimeoutError as exc:
            raise BrokerUnavailableError.deadline_exceeded(timeout_s) from exc

        resp.status = falcon.HTTP_202
        resp.media = outcome.to_media()


class HealthResource:
    """Liveness probe resource returning ``{"ok": true, ...}``.

    Always responds with HTTP 200 to indicate the process is alive.
    """

    async def on_get(self, _req: Request, resp: Response) -> None:
        """Handle GET /healthz requests."""
        resp.status = falcon.HTTP_200
        resp.media = {"ok": True, "service": SERVICE_NAME}
