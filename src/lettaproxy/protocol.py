"""The Forwarder protocol and the request it consumes."""

from dataclasses import dataclass
from typing import Protocol

from starlette.datastructures import Headers
from starlette.responses import Response


@dataclass(frozen=True)
class InboundRequest:
    """One inbound request, with its body already read.

    The body stream can only be consumed once, so it is captured at the
    entry of request handling and handed to whichever forwarder is chosen.
    """

    method: str
    path: str
    query: str
    headers: Headers
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


class Forwarder(Protocol):
    """Something that sends an inbound request upstream and relays the answer."""

    async def forward(self, request: InboundRequest) -> Response:
        """Forward the request and return the response for the original caller.

        Raises:
            ProxyError: for failures reported by the proxy itself
        """
        ...

    async def close(self) -> None:
        """Release the HTTP client, if one was created."""
        ...
