"""HTTP ingestion gateway built on Falcon ASGI."""

from __future__ import annotations

from .app import GatewayDependencies, create_app
from .config import GatewayConfig, GatewayConfigError
from .service import IngestionService, IngestOutcome

__all__ = [
    "GatewayConfig",
    "GatewayConfigError",
    "GatewayDependencies",
    "IngestOutcome",
    "IngestionService",
    "create_app",
]
