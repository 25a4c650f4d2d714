"""Server-side enrichment of validated events.

Adds the receive time, the normalized client IP, coarse geography from
trusted edge-proxy headers, and a parsed user agent.
"""

from __future__ import annotations

import dataclasses as dc
import functools
import ipaddress
import typing as typ
import urllib.parse

from user_agents import parse as parse_user_agent

if typ.TYPE_CHECKING:
    import collections.abc as cabc

DEFAULT_DEVICE_TYPE = "desktop"

# Priority order matters: the first header present wins.
COUNTRY_HEADERS: tuple[str, ...] = (
    "cf-ipcountry",
    "fly-client-ip-country",
    "x-vercel-ip-country",
)
REGION_HEADERS: tuple[str, ...] = ("x-vercel-ip-country-region", "cf-region-code")
CITY_HEADERS: tuple[str, ...] = ("x-vercel-ip-city", "cf-ipcity")

_UNKNOWN_FAMILY = "Other"


@dc.dataclass(frozen=True, slots=True)
class RequestContext:
    """Transport details of the request that carried an event batch.

    Attributes
    ----------
    headers
        Request headers keyed by lower-case name.
    remote_addr
        Socket peer address, if known.

    """

    headers: cabc.Mapping[str, str]
    remote_addr: str | None = None

    @classmethod
    def from_headers(
        cls,
        headers: cabc.Mapping[str, str],
        remote_addr: str | None = None,
    ) -> RequestContext:
        """Build a context, lower-casing header names."""
        return cls(
            headers={name.lower(): value for name, value in headers.items()},
            remote_addr=remote_addr,
        )


@dc.dataclass(frozen=True, slots=True)
class UserAgentInfo:
    """Browser, OS, and device classification for one user-agent string."""

    browser: str | None = None
    browser_version: str | None = None
    os: str | None = None
    os_version: str | None = None
    device_type: str = DEFAULT_DEVICE_TYPE


def _or_none(value: str | None) -> str | None:
    if not value or value == _UNKNOWN_FAMILY:
        return None
    return value


@functools.lru_cache(maxsize=2048)
def parse_ua(ua_string: str) -> UserAgentInfo:
    """Classify a user-agent string.

    Device type is ``tablet`` or ``mobile`` when the parser recognises one,
    otherwise ``desktop``.
    """
    if not ua_string:
        return UserAgentInfo()

    parsed = parse_user_agent(ua_string)
    if parsed.is_tablet:
        device_type = "tablet"
    elif parsed.is_mobile:
        device_type = "mobile"
    else:
        device_type = DEFAULT_DEVICE_TYPE

    return UserAgentInfo(
        browser=_or_none(parsed.browser.family),
        browser_version=_or_none(parsed.browser.version_string),
        os=_or_none(parsed.os.family),
        os_version=_or_none(parsed.os.version_string),
        device_type=device_type,
    )


def normalize_ip(raw: str | None) -> str | None:
    """Strip whitespace and unwrap IPv4-mapped IPv6 addresses.

    ``::ffff:203.0.113.7`` becomes ``203.0.113.7``. Values that are not IP
    addresses are returned trimmed rather than discarded.
    """
    if raw is None:
        return None
    candidate = raw.strip()
    if not candidate:
        return None
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return candidate
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return str(address.ipv4_mapped)
    return str(address)


def client_ip(context: RequestContext) -> str | None:
    """Return the first ``X-Forwarded-For`` hop, else the socket address."""
    forwarded = context.headers.get("x-forwarded-for", "")
    first_hop = forwarded.split(",", 1)[0].strip()
    return normalize_ip(first_hop or context.remote_addr)


def _first_header(
    context: RequestContext,
    names: tuple[str, ...],
) -> str | None:
    for name in names:
        value = context.headers.get(name)
        if value:
            return urllib.parse.unquote(value)
    return None


def geo_hints(context: RequestContext) -> dict[str, str | None]:
    """Return country, region, and city from trusted proxy headers."""
    return {
        "country": _first_header(context, COUNTRY_HEADERS),
        "region": _first_header(context, REGION_HEADERS),
        "city": _first_header(context, CITY_HEADERS),
    }


def enrich_event(
    event: dict[str, typ.Any],
    context: RequestContext,
    server_time_ms: int,
) -> dict[str, typ.Any]:
    """Return a copy of *event* with server-derived fields attached.

    The user agent comes from the event's own ``ua`` string when the tracker
    sent one, otherwise from the request's ``User-Agent`` header. Server
    fields overwrite client-supplied keys of the same name.
    """
    ua_field = event.get("ua")
    ua_string = ua_field if isinstance(ua_field, str) and ua_field else ""
    if not ua_string:
        ua_string = context.headers.get("user-agent", "")
    ua_info = parse_ua(ua_string)

    return {
        **event,
        "server_time": server_time_ms,
        "ip": client_ip(context),
        **geo_hints(context),
        "browser": ua_info.browser,
        "browser_version": ua_info.browser_version,
        "os": ua_info.os,
        "os_version": ua_info.os_version,
        "device_type": ua_info.device_type,
    }


__all__ = [
    "CITY_HEADERS",
    "COUNTRY_HEADERS",
    "DEFAULT_DEVICE_TYPE",
    "REGION_HEADERS",
    "RequestContext",
    "UserAgentInfo",
    "client_ip",
    "enrich_event",
    "geo_hints",
    "normalize_ip",
    "parse_ua",
]
