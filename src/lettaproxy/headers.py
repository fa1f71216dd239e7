"""Header classification and filtering for forwarded traffic."""

from collections.abc import Iterable

import httpx

# Connection-scoped headers. content-length is recomputed once the body is buffered.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
})

CORS_HEADER_PREFIX = "access-control-"


def is_hop_by_hop(name: str) -> bool:
    """Return True if the header only describes the current connection."""
    return name.lower() in HOP_BY_HOP_HEADERS


def filter_request_headers(headers: Iterable[tuple[str, str]]) -> httpx.Headers:
    """Build outbound request headers from the inbound ones.

    Hop-by-hop headers are dropped and so is Host, which httpx derives from
    the target URL. Repeated headers collapse to their last value.
    """
    filtered = httpx.Headers()
    for name, value in headers:
        if is_hop_by_hop(name) or name.lower() == "host":
            continue
        filtered[name] = value
    return filtered


def filter_response_headers(headers: Iterable[tuple[str, str]]) -> list[tuple[str, str]]:
    """Drop hop-by-hop and upstream CORS headers from an upstream response."""
    return [
        (name, value) for name, value in headers
        if not is_hop_by_hop(name) and not name.lower().startswith(CORS_HEADER_PREFIX)
    ]
