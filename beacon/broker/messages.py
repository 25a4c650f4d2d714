"""Wire encoding for main, retry, and dead-letter messages.

Values are compact JSON. Retry messages carry their bookkeeping twice: as
an embedded ``__retry_meta`` object, which survives any consumer that drops
headers, and as ``retry_count``/``last_error`` transport headers, which the
worker prefers when present.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

import msgspec

from beacon.events.models import RETRY_META_KEY, UNKNOWN_KEY, RetryMeta

# Kafka header values are bytes; keep error text from bloating each record.
MAX_ERROR_HEADER_BYTES = 1024

RETRY_COUNT_HEADER = "retry_count"
LAST_ERROR_HEADER = "last_error"

type Headers = list[tuple[str, bytes]]


@dc.dataclass(frozen=True, slots=True)
class RetryMessage:
    """Encoded retry envelope ready for the retry topic."""

    value: bytes
    headers: Headers


def encode_key(key: str | None) -> bytes:
    """Encode a partition key, substituting ``unknown`` when absent."""
    return (key or UNKNOWN_KEY).encode("utf-8")


def truncate_utf8(text: str, limit: int = MAX_ERROR_HEADER_BYTES) -> bytes:
    """Encode *text* as UTF-8 bytes of at most *limit* bytes.

    A multi-byte character split by the limit is dropped rather than
    emitted partially.
    """
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return encoded
    return encoded[:limit].decode("utf-8", errors="ignore").encode("utf-8")


def retry_headers(retry_count: int, last_error: str) -> Headers:
    """Return the transport headers of a retry message."""
    return [
        (RETRY_COUNT_HEADER, str(retry_count).encode("ascii")),
        (LAST_ERROR_HEADER, truncate_utf8(last_error)),
    ]


def build_retry_message(
    payload: dict[str, typ.Any],
    retry_count: int,
    last_error: str,
    failed_at_ms: int,
) -> RetryMessage:
    """Wrap *payload* in a retry envelope.

    Parameters
    ----------
    payload
        Decoded message payload. Any existing ``__retry_meta`` is replaced.
    retry_count
        Retry count the envelope will carry (already incremented).
    last_error
        Description of the failure that caused the retry.
    failed_at_ms
        Failure time in epoch milliseconds.

    Returns
    -------
    RetryMessage
        JSON value and transport headers.

    """
    meta = RetryMeta(
        retry_count=retry_count,
        last_error=last_error,
        last_failed_at=failed_at_ms,
    )
    envelope = {key: value for key, value in payload.items() if key != RETRY_META_KEY}
    envelope[RETRY_META_KEY] = msgspec.to_builtins(meta)
    return RetryMessage(
        value=msgspec.json.encode(envelope),
        headers=retry_headers(retry_count, last_error),
    )


def header_value(headers: typ.Iterable[tuple[str, bytes]], name: str) -> str | None:
    """Return the last value of header *name* decoded as UTF-8, if present."""
    found: str | None = None
    for header_name, raw in headers:
        if header_name == name and raw is not None:
            found = raw.decode("utf-8", errors="replace")
    return found


__all__ = [
    "LAST_ERROR_HEADER",
    "MAX_ERROR_HEADER_BYTES",
    "RETRY_COUNT_HEADER",
    "Headers",
    "RetryMessage",
    "build_retry_message",
    "encode_key",
    "header_value",
    "retry_headers",
    "truncate_utf8",
]
