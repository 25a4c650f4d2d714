"""Falcon error handlers mapping gateway failures to JSON responses.

Every error response has the shape ``{"ok": false, "error": <code>}``.

Usage
-----
Register error handlers on the Falcon app::

    app.add_error_handler(ClientInputError, handle_client_input)
    app.add_error_handler(BrokerUnavailableError, handle_broker_unavailable)
    app.add_error_handler(Exception, handle_unexpected)

"""

from __future__ import annotations

import typing as typ

import falcon

from beacon.events.errors import ClientInputError
from beacon.gateway.observability import IngestEventLogger

if typ.TYPE_CHECKING:
    from falcon.asgi import Request, Response

    from beacon.broker.errors import BrokerUnavailableError

__all__ = [
    "RateLimitExceededError",
    "handle_broker_unavailable",
    "handle_client_input",
    "handle_unexpected",
]

DOWNSTREAM_UNAVAILABLE = "downstream_unavailable"
SERVER_ERROR = "server_error"

_events = IngestEventLogger()


class RateLimitExceededError(ClientInputError):
    """Raised when a client IP exceeds its request budget for the window."""

    code = "rate_limited"


_STATUS_BY_CODE: dict[str, str] = {
    "payload_too_large": falcon.HTTP_413,
    "unsupported_content_type": falcon.HTTP_415,
    RateLimitExceededError.code: falcon.HTTP_429,
}


def _error_media(code: str) -> dict[str, typ.Any]:
    return {"ok": False, "error": code}


async def handle_client_input(
    _req: Request,
    resp: Response,
    ex: ClientInputError,
    _params: dict[str, typ.Any],
) -> None:
    """Map a ``ClientInputError`` to its 4xx response.

    Parameters
    ----------
    _req
        Falcon request (unused).
    resp
        Falcon response whose status and media are set.
    ex
        The client error carrying a stable ``code``.
    _params
        URI template parameters (unused).

    """
    resp.status = _STATUS_BY_CODE.get(ex.code, falcon.HTTP_400)
    resp.media = _error_media(ex.code)


async def handle_broker_unavailable(
    _req: Request,
    resp: Response,
    _ex: BrokerUnavailableError,
    _params: dict[str, typ.Any],
) -> None:
    """Map ``BrokerUnavailableError`` to HTTP 503."""
    resp.status = falcon.HTTP_503
    resp.media = _error_media(DOWNSTREAM_UNAVAILABLE)


async def handle_unexpected(
    req: Request,
    resp: Response,
    ex: Exception,
    _params: dict[str, typ.Any],
) -> None:
    """Map any unhandled exception to HTTP 500, logging the traceback.

    Falcon's own ``HTTPError`` and ``HTTPStatus`` handlers are more specific
    and still apply, so routing errors keep their status codes.
    """
    _events.log_request_failed(path=req.path, error=ex)
    resp.status = falcon.HTTP_500
    resp.media = _error_media(SERVER_ERROR)
