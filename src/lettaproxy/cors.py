"""Permissive cross-origin headers stamped onto every response."""

from starlette.datastructures import MutableHeaders

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, PATCH, OPTIONS",
    "Access-Control-Allow-Headers": (
        "Authorization, Content-Type, Accept, Origin, User-Agent, Cache-Control, X-Requested-With"
    ),
    # Browsers may cache preflight results for a day
    "Access-Control-Max-Age": "86400",
    "Access-Control-Expose-Headers": "*",
}

VARY_VALUES = ("Origin", "Access-Control-Request-Method", "Access-Control-Request-Headers")


def apply_cors_headers(headers: MutableHeaders) -> None:
    """Set the CORS headers on a response that has not been sent yet.

    The Access-Control-* values replace whatever is there. The Vary values
    are appended next to any existing Vary header, once each, so calling
    this again after copying upstream headers changes nothing twice.
    """
    for name, value in CORS_HEADERS.items():
        headers[name] = value

    present = {
        token.strip().lower()
        for value in headers.getlist("vary")
        for token in value.split(",")
    }
    for value in VARY_VALUES:
        if value.lower() not in present:
            headers.append("Vary", value)
