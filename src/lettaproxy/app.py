"""The Letta proxy - FastAPI application.

Every path is forwarded to the configured Letta API server, with CORS
headers added so browser clients can talk to it from any origin.
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from .config import ProxyConfig
from .cors import apply_cors_headers
from .errors import ProxyError
from .proxy import StandardForwarder
from .router import Router
from .upload import UploadForwarder

logger = logging.getLogger(__name__)


def create_app(config: ProxyConfig, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the proxy application.

    Args:
        config: Resolved proxy settings, shared read-only by every request
        transport: Optional httpx transport for the upstream clients (tests inject a mock)
    """
    router = Router(
        standard=StandardForwarder(config, transport=transport),
        upload=UploadForwarder(config, transport=transport),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info(f"Letta proxy is starting up, forwarding to {config.target_base}")
        yield
        logger.info("Letta proxy is shutting down...")
        await router.close()

    # No docs routes: /docs and /openapi.json belong to the upstream too
    app = FastAPI(
        title="Letta API proxy",
        description="Forwards requests to a Letta API server with CORS headers added.",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        logger.error(f"{request.method} {request.url.path} failed with {exc.status_code}: {exc.message}")
        response = PlainTextResponse(exc.message, status_code=exc.status_code)
        apply_cors_headers(response.headers)
        return response

    # Any method on any path; the router is a plain ASGI endpoint
    app.add_route("/{path:path}", router, methods=None, include_in_schema=False)

    return app
