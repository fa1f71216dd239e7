import httpx
import pytest
from fastapi.testclient import TestClient

from lettaproxy.app import create_app
from lettaproxy.config import ProxyConfig

TARGET_BASE = "http://letta.test/v1"


class UpstreamBody(httpx.AsyncByteStream):
    """An unread response body, handed out a few bytes at a time like a socket would."""

    def __init__(self, content: bytes, chunk_size: int = 4):
        self.content = content
        self.chunk_size = chunk_size
        self.closed = False

    async def __aiter__(self):
        for start in range(0, len(self.content), self.chunk_size):
            yield self.content[start : start + self.chunk_size]

    async def aclose(self):
        self.closed = True


def streamed(response: httpx.Response) -> httpx.Response:
    """Rebuild a canned response so its body is still waiting to be streamed."""
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=UpstreamBody(response.content),
    )


class FakeUpstream:
    """Stands in for the Letta API server behind an httpx.MockTransport.

    Records every request it receives. Set ``respond`` to change the answer.
    Answers go back unread, so the proxy has to stream them.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.bodies: list[UpstreamBody] = []
        self.respond = lambda request: httpx.Response(200, json={"ok": True})

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        response = self.respond(request)
        if isinstance(response.stream, UpstreamBody):
            body = response.stream
        else:
            response = streamed(response)
            body = response.stream
        self.bodies.append(body)
        return response

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "upstream was never called"
        return self.requests[-1]


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def config():
    return ProxyConfig(target_base=TARGET_BASE)


@pytest.fixture
def app(config, upstream):
    return create_app(config, transport=httpx.MockTransport(upstream))


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
