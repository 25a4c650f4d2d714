"""Client input errors raised while reading an ingestion request body."""

from __future__ import annotations


class ClientInputError(Exception):
    """Base class for request-level client errors.

    Attributes
    ----------
    code
        Stable machine-readable error code returned to the caller.

    """

    code = "invalid_request"

    def __init__(self, detail: str | None = None) -> None:
        """Initialise with an optional human-readable detail."""
        self.detail = detail
        super().__init__(detail or self.code)


class EmptyBodyError(ClientInputError):
    """Raised when the request body is empty or whitespace only."""

    code = "empty_body"


class InvalidBodyError(ClientInputError):
    """Raised when a JSON body is undecodable or not an object or array."""

    code = "invalid_json"


class UnsupportedContentTypeError(ClientInputError):
    """Raised for content types the gateway does not read."""

    code = "unsupported_content_type"

    @classmethod
    def for_content_type(cls, content_type: str | None) -> UnsupportedContentTypeError:
        """Return an error naming the offending content type."""
        return cls(f"content type {content_type!r} is not supported")


class PayloadTooLargeError(ClientInputError):
    """Raised when the request body exceeds the configured limit."""

    code = "payload_too_large"

    @classmethod
    def exceeding(cls, limit: int) -> PayloadTooLargeError:
        """Return an error naming the byte limit."""
        return cls(f"request body exceeds {limit} bytes")
