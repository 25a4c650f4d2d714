"""Request body parsing for JSON, NDJSON, and plain-text batches.

NDJSON (and any ``text/*`` body) is read line by line: a malformed line is
counted as a parse error and never invalidates its neighbours. JSON bodies
must hold a single object or an array of candidate events.

Usage
-----
>>> parsed = parse_body("application/x-ndjson", b'{"event": "a"}\\nnot json\\n')
>>> len(parsed.events), parsed.parse_errors
(1, 1)

"""

from __future__ import annotations

import dataclasses as dc

import msgspec

from beacon.events.errors import (
    EmptyBodyError,
    InvalidBodyError,
    UnsupportedContentTypeError,
)

_NDJSON_TYPE = "application/x-ndjson"
_JSON_TYPE = "application/json"


@dc.dataclass(frozen=True, slots=True)
class ParsedBody:
    """Candidate events decoded from one request body.

    Attributes
    ----------
    events
        Decoded values in body order. Items are not yet validated and may be
        of any JSON type.
    parse_errors
        Number of NDJSON lines that failed to decode.

    """

    events: list[object]
    parse_errors: int = 0


def _decode_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


def parse_ndjson(text: str) -> ParsedBody:
    """Decode newline-delimited JSON, skipping blank lines.

    Parameters
    ----------
    text
        Body text; lines may end in ``\\n`` or ``\\r\\n``.

    Returns
    -------
    ParsedBody
        Successfully decoded lines plus the count of malformed ones.

    """
    events: list[object] = []
    bad = 0
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        try:
            events.append(msgspec.json.decode(stripped))
        except msgspec.DecodeError:
            bad += 1
    return ParsedBody(events=events, parse_errors=bad)


def _parse_json(body: bytes) -> ParsedBody:
    try:
        decoded = msgspec.json.decode(body)
    except msgspec.DecodeError as exc:
        raise InvalidBodyError(str(exc)) from exc

    match decoded:
        case list():
            return ParsedBody(events=decoded)
        case dict():
            return ParsedBody(events=[decoded])
        case _:
            msg = f"expected a JSON object or array, got {type(decoded).__name__}"
            raise InvalidBodyError(msg)


def _is_ndjson(content_type: str) -> bool:
    return _NDJSON_TYPE in content_type or content_type.startswith("text/")


def parse_body(content_type: str | None, body: bytes) -> ParsedBody:
    """Decode an ingestion request body according to its content type.

    Parameters
    ----------
    content_type
        Raw ``Content-Type`` header value, parameters included.
    body
        Request body bytes.

    Returns
    -------
    ParsedBody
        Candidate events and the NDJSON parse error count.

    Raises
    ------
    EmptyBodyError
        If the body is empty or whitespace only.
    InvalidBodyError
        If a JSON body cannot be decoded or is not an object or array.
    UnsupportedContentTypeError
        If the content type is neither JSON, NDJSON, nor ``text/*``.

    """
    normalized = (content_type or "").strip().lower()

    if _is_ndjson(normalized):
        text = _decode_text(body)
        if not text.strip():
            raise EmptyBodyError
        return parse_ndjson(text)

    if _JSON_TYPE in normalized:
        if not body.strip():
            raise EmptyBodyError
        return _parse_json(body)

    raise UnsupportedContentTypeError.for_content_type(content_type)


__all__ = ["ParsedBody", "parse_body", "parse_ndjson"]
