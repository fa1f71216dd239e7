"""Logfire setup for the proxy process."""

import logging

import logfire
from fastapi import FastAPI

SERVICE_NAME = "letta-proxy"


def configure_telemetry(app: FastAPI, level: int = logging.INFO) -> None:
    """Send logs and spans to Logfire, or just the console when no token is set.

    Called once by the CLI before serving. Tests and embedders build the app
    without it.
    """
    # Scrubbing disabled - it redacts "authorization", "session", etc. in header dumps
    logfire.configure(
        service_name=SERVICE_NAME,
        send_to_logfire="if-token-present",
        scrubbing=False,
    )
    logging.basicConfig(level=level, handlers=[logfire.LogfireLoggingHandler()])

    # Suppress harmless OTel context warnings from streamed responses
    logging.getLogger("opentelemetry.context").setLevel(logging.CRITICAL)

    logfire.instrument_httpx()
    logfire.instrument_fastapi(app)
