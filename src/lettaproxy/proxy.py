"""HTTP forwarding to the target Letta API server.

Holds the machinery both forwarders share (a lazily created httpx client,
request building, response relay) and the standard forwarder used for every
request that isn't a multipart file upload.
"""

import logging
from collections.abc import AsyncIterator, Iterable

import httpx
from starlette.background import BackgroundTask
from starlette.datastructures import MutableHeaders
from starlette.responses import StreamingResponse

from .config import ProxyConfig
from .cors import apply_cors_headers
from .errors import RequestBuildError, UpstreamConnectError
from .headers import filter_request_headers, filter_response_headers
from .protocol import InboundRequest

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"


def normalize_path(path: str) -> str:
    """Strip one leading slash, keeping a trailing slash if there was one."""
    normalized = path[1:] if path.startswith("/") else path
    if path.endswith("/") and not normalized.endswith("/"):
        normalized += "/"
    return normalized


def build_target_url(target_base: str, path: str, query: str = "") -> str:
    """Compose the upstream URL for a standard request."""
    url = f"{target_base}/{normalize_path(path)}"
    if query:
        url += f"?{query}"
    return url


def copy_response_headers(target: MutableHeaders, headers: Iterable[tuple[str, str]]) -> None:
    """Copy relayable upstream headers onto the outgoing response.

    The first value of a header replaces anything already set under that
    name; further values of the same header are appended, so multi-valued
    headers like Set-Cookie survive.
    """
    seen: set[str] = set()
    for name, value in filter_response_headers(headers):
        key = name.lower()
        if key in seen:
            target.append(name, value)
        else:
            target[name] = value
            seen.add(key)


async def relay_body(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the upstream body exactly as it came off the wire.

    The status line is already out by the time this runs, so a failure here
    can only be logged; the response to the caller just ends short.
    """
    relayed = 0
    try:
        async for chunk in upstream.aiter_raw():
            relayed += len(chunk)
            yield chunk
    except (httpx.HTTPError, httpx.StreamError) as e:
        logger.error(f"Error copying response body after {relayed} bytes: {e}")
        return

    logger.info(f"Successfully proxied response: status={upstream.status_code}, bytes={relayed}")


class HTTPForwarder:
    """Base for forwarders: owns one pooled client with a fixed redirect policy."""

    follow_redirects = False

    def __init__(self, config: ProxyConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                follow_redirects=self.follow_redirects,
                timeout=httpx.Timeout(self.config.upstream_timeout),
            )
            # Only the caller's headers go upstream. No Accept-Encoding of our own,
            # since bodies are relayed undecoded.
            self._client.headers.clear()
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def build_request(self, method: str, url: str, **kwargs) -> httpx.Request:
        client = await self.get_client()
        try:
            return client.build_request(method, url, **kwargs)
        except (httpx.InvalidURL, ValueError) as e:
            logger.error(f"Error creating request: {e}")
            raise RequestBuildError(str(e)) from e

    async def send(self, request: httpx.Request) -> httpx.Response:
        """Send upstream without reading the body; the caller relays it."""
        client = await self.get_client()
        try:
            return await client.send(request, stream=True)
        except httpx.RequestError as e:
            message = str(e) or type(e).__name__
            logger.error(f"Error forwarding request: {message}")
            raise UpstreamConnectError(message) from e

    async def relay(self, upstream: httpx.Response) -> StreamingResponse:
        """Turn the upstream response into the response for the original caller.

        The upstream response is closed once its body has been relayed, or
        straight away if the response can't be built.
        """
        try:
            response = StreamingResponse(
                relay_body(upstream),
                status_code=upstream.status_code,
                background=BackgroundTask(upstream.aclose),
            )
            # Upstream headers must not clobber ours, so stamp before and after copying
            apply_cors_headers(response.headers)
            copy_response_headers(response.headers, upstream.headers.multi_items())
            apply_cors_headers(response.headers)
        except Exception:
            await upstream.aclose()
            raise

        logger.info(f"Response status: {upstream.status_code}")
        return response


class StandardForwarder(HTTPForwarder):
    """Forwards ordinary traffic. Redirects are handed back to the caller, not chased."""

    async def forward(self, request: InboundRequest) -> StreamingResponse:
        url = build_target_url(self.config.target_base, request.path, request.query)
        logger.info(f"Normalized URL: {url}")
        logger.debug(f"Original request Content-Type: {request.content_type}")

        headers = filter_request_headers(request.headers.items())
        if request.body:
            headers["Content-Length"] = str(len(request.body))
            if "content-type" not in headers:
                headers["Content-Type"] = DEFAULT_CONTENT_TYPE
            logger.debug(f"Forwarding request body ({len(request.body)} bytes)")

        outbound = await self.build_request(
            request.method,
            url,
            headers=headers,
            content=request.body,
        )
        upstream = await self.send(outbound)
        return await self.relay(upstream)
