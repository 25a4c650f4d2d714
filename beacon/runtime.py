"""Process entrypoint for the Beacon ingestion gateway.

Granian loads ``beacon.runtime:create_app`` as a factory. The factory reads
the Kafka, Valkey and gateway-limit settings from the environment and hands
the wired dependencies to :func:`beacon.gateway.app.create_app`.

Environment variables read here:

- ``BEACON_HOST``: listen address, ``0.0.0.0`` when unset
- ``BEACON_PORT``: listen port, ``3001`` when unset
- ``BEACON_LOG_LEVEL``: femtologging level, ``INFO`` when unset

The ``BEACON_KAFKA_*``, ``BEACON_VALKEY_URL`` and gateway limit variables are
read by the respective ``from_env`` constructors. Start the server with
``beacon-gateway``.
"""

from __future__ import annotations

import os
import typing as typ

from beacon.logging import (
    configure_logging,
    get_logger,
    log_error,
    log_info,
    log_warning,
)

if typ.TYPE_CHECKING:
    import falcon.asgi

__all__ = ["create_app", "main"]

logger = get_logger(__name__)

_PORT_RANGE = range(1, 65536)
_DEFAULT_PORT = "3001"


def _parse_port(raw: str) -> int:
    """Return *raw* as a TCP port, exiting with status 1 when it is not one."""
    try:
        port = int(raw)
    except ValueError:
        port = None
    if port is None or port not in _PORT_RANGE:
        log_error(
            logger,
            "BEACON_PORT must be an integer between %d and %d, got %r",
            _PORT_RANGE.start,
            _PORT_RANGE.stop - 1,
            raw,
        )
        raise SystemExit(1)
    return port


def create_app() -> falcon.asgi.App:
    """Build the gateway from environment configuration.

    Nothing connects here; the Kafka producer starts during lifespan
    startup and the Valkey pool connects lazily.

    Raises
    ------
    CacheConfigError
        If ``BEACON_VALKEY_URL`` is missing.
    BrokerConfigError
        If the Kafka settings are missing or invalid.
    GatewayConfigError
        If a gateway limit is not a positive number.

    """
    from beacon.broker.config import KafkaConfig
    from beacon.broker.publisher import KafkaEventPublisher
    from beacon.cache.activity import ValkeyActivityCache
    from beacon.cache.config import CacheConfig
    from beacon.cache.gate import ActivityGate
    from beacon.gateway.app import GatewayDependencies
    from beacon.gateway.app import create_app as build_gateway
    from beacon.gateway.config import GatewayConfig

    cache_settings = CacheConfig.from_env()
    cache = ValkeyActivityCache.from_url(cache_settings.url)
    gate = ActivityGate(cache, fail_safe=cache_settings.fail_safe)
    publisher = KafkaEventPublisher(KafkaConfig.from_env())
    return build_gateway(
        GatewayDependencies(
            publisher=publisher,
            gate=gate,
            config=GatewayConfig.from_env(),
            closeables=(cache,),
        )
    )


def main() -> None:
    """Configure logging and serve the gateway with Granian."""
    from granian import Granian
    from granian.constants import Interfaces

    host = os.environ.get("BEACON_HOST", "0.0.0.0")  # noqa: S104 - containers listen on all interfaces
    port = _parse_port(os.environ.get("BEACON_PORT", _DEFAULT_PORT))
    requested_level = os.environ.get("BEACON_LOG_LEVEL", "INFO")

    level, rejected = configure_logging(requested_level)
    if rejected:
        log_warning(
            logger,
            "Unknown BEACON_LOG_LEVEL %r; using %s",
            requested_level,
            level,
        )
    log_info(
        logger,
        "Beacon gateway listening on %s:%d (log_level=%s)",
        host,
        port,
        level,
    )

    Granian(
        "beacon.runtime:create_app",
        address=host,
        port=port,
        interface=Interfaces.ASGI,
        factory=True,
    ).serve()


if __name__ == "__main__":
    main()
