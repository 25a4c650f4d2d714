"""Application factory for the Beacon ingestion gateway.

Usage
-----
Build the app from explicitly constructed service handles::

    from beacon.gateway.app import GatewayDependencies, create_app

    deps = GatewayDependencies(publisher=publisher, gate=ActivityGate(cache))
    app = create_app(deps)

"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import falcon.asgi

from beacon.broker.errors import BrokerUnavailableError
from beacon.common.time import ServerClock
from beacon.events.errors import ClientInputError
from beacon.gateway.config import GatewayConfig
from beacon.gateway.errors import (
    handle_broker_unavailable,
    handle_client_input,
    handle_unexpected,
)
from beacon.gateway.middleware import LifecycleMiddleware, RateLimitMiddleware
from beacon.gateway.resources import HealthResource, IngestResource
from beacon.gateway.service import IngestionService

if typ.TYPE_CHECKING:
    from beacon.broker.publisher import EventPublisher
    from beacon.cache.gate import ActivityGate
    from beacon.gateway.middleware import Closeable

__all__ = ["GatewayDependencies", "create_app"]


@dc.dataclass(frozen=True, slots=True)
class GatewayDependencies:
    """Dependencies for the gateway application.

    Attributes
    ----------
    publisher
        Producer for the main topic; started at lifespan startup.
    gate
        Project activity gate.
    config
        Body, rate-limit and deadline limits.
    clock
        Server clock stamping ``server_time``.
    closeables
        Extra handles closed at lifespan shutdown (the activity cache).

    """

    publisher: EventPublisher
    gate: ActivityGate
    config: GatewayConfig = dc.field(default_factory=GatewayConfig)
    clock: ServerClock = dc.field(default_factory=ServerClock)
    closeables: tuple[Closeable, ...] = ()


def create_app(dependencies: GatewayDependencies) -> falcon.asgi.App:
    """Create and configure the Falcon ASGI application.

    Registers ``POST /e`` and ``GET /healthz`` with CORS enabled for all
    origins, the per-IP rate limiter, and the lifespan handler that owns
    the producer and cache connections.

    Parameters
    ----------
    dependencies
        Service handles and limits.

    Returns
    -------
    falcon.asgi.App
        Configured Falcon ASGI application.

    """
    config = dependencies.config
    middleware: list[object] = [
        LifecycleMiddleware(dependencies.publisher, dependencies.closeables),
        RateLimitMiddleware(config.rate_limit_max, config.rate_limit_window_s),
    ]

    app = falcon.asgi.App(middleware=middleware, cors_enable=True)  # type: ignore[no-matching-overload]  # Falcon stubs

    service = IngestionService(
        dependencies.publisher,
        dependencies.gate,
        clock=dependencies.clock,
    )
    app.add_route("/e", IngestResource(service, config))
    app.add_route("/healthz", HealthResource())

    # Falcon picks the most specific handler, so HTTPError keeps its own.
    app.add_error_handler(Exception, handle_unexpected)
    app.add_error_handler(ClientInputError, handle_client_input)
    app.add_error_handler(BrokerUnavailableError, handle_broker_unavailable)

    return app
