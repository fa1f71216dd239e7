import httpx
import pytest

from conftest import TARGET_BASE, UpstreamBody
from lettaproxy.cors import CORS_HEADERS
from lettaproxy.proxy import build_target_url, normalize_path


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/foo", "foo"),
        ("/foo/", "foo/"),
        ("/agents/abc/messages", "agents/abc/messages"),
        ("foo/", "foo/"),
        ("/", "/"),
        ("", ""),
    ],
)
def test_normalize_path(path, expected):
    assert normalize_path(path) == expected


def test_build_target_url_appends_raw_query():
    url = build_target_url(TARGET_BASE, "/agents/", "limit=5&after=a%20b")

    assert url == "http://letta.test/v1/agents/?limit=5&after=a%20b"


def test_build_target_url_without_query():
    assert build_target_url(TARGET_BASE, "/agents") == "http://letta.test/v1/agents"


def assert_cors_headers(response):
    for name, value in CORS_HEADERS.items():
        assert response.headers.get_list(name) == [value]
    assert response.headers.get_list("vary") == [
        "Origin",
        "Access-Control-Request-Method",
        "Access-Control-Request-Headers",
    ]


def test_get_is_forwarded_to_target(client, upstream):
    response = client.get("/agents?limit=5")

    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert upstream.last.method == "GET"
    assert str(upstream.last.url) == "http://letta.test/v1/agents?limit=5"
    assert_cors_headers(response)


def test_trailing_slash_is_preserved(client, upstream):
    client.get("/foo/")
    assert upstream.last.url.path == "/v1/foo/"

    client.get("/foo")
    assert upstream.last.url.path == "/v1/foo"


def test_hop_by_hop_headers_are_not_forwarded(client, upstream):
    client.get(
        "/agents",
        headers={
            "Connection": "close",
            "KEEP-ALIVE": "timeout=5",
            "Proxy-Authorization": "Basic abc",
            "proxy-authenticate": "Basic",
            "Te": "trailers",
            "Trailers": "Expires",
            "Upgrade": "h2c",
            "X-Letta-Client": "ade",
        },
    )

    forwarded = upstream.last.headers
    for name in ("connection", "keep-alive", "proxy-authorization", "proxy-authenticate", "te", "trailers", "upgrade"):
        assert name not in forwarded
    assert forwarded["x-letta-client"] == "ade"
    assert forwarded["host"] == "letta.test"


def test_framing_headers_are_rewritten_not_copied(client, upstream):
    client.post(
        "/agents",
        content=b'{"a":1}',
        headers={"Transfer-Encoding": "chunked", "CONTENT-LENGTH": "7"},
    )

    forwarded = upstream.last.headers
    assert "transfer-encoding" not in forwarded
    assert forwarded.get_list("content-length") == ["7"]
    assert upstream.last.content == b'{"a":1}'


def test_upstream_hop_by_hop_headers_are_not_relayed(client, upstream):
    upstream.respond = lambda request: httpx.Response(
        200,
        headers={
            "Connection": "keep-alive",
            "Keep-Alive": "timeout=5",
            "Trailers": "Expires",
            "Proxy-Authenticate": "Basic",
            "Upgrade": "h2c",
            "X-Request-Id": "req-1",
        },
        content=b"ok",
    )

    response = client.get("/health")

    for name in ("connection", "keep-alive", "trailers", "proxy-authenticate", "upgrade", "transfer-encoding"):
        assert name not in response.headers
    assert response.headers["x-request-id"] == "req-1"
    assert response.content == b"ok"


def test_json_body_defaults_content_type(client, upstream):
    client.post("/agents", content=b'{"a":1}')

    assert upstream.last.headers["content-type"] == "application/json"
    assert upstream.last.headers["content-length"] == "7"
    assert upstream.last.content == b'{"a":1}'


def test_explicit_content_type_is_kept(client, upstream):
    client.put("/blocks/1", content=b"label=human", headers={"Content-Type": "text/plain"})

    assert upstream.last.method == "PUT"
    assert upstream.last.headers["content-type"] == "text/plain"
    assert upstream.last.content == b"label=human"


def test_empty_body_gets_no_default_content_type(client, upstream):
    client.delete("/agents/abc")

    assert upstream.last.method == "DELETE"
    assert "content-type" not in upstream.last.headers
    assert upstream.last.content == b""


def test_redirect_is_relayed_not_followed(client, upstream):
    upstream.respond = lambda request: httpx.Response(302, headers={"Location": "/x"})

    response = client.get("/agents", follow_redirects=False)

    assert response.status_code == 302
    assert response.headers["location"] == "/x"
    assert len(upstream.requests) == 1


def test_upstream_error_status_is_relayed(client, upstream):
    upstream.respond = lambda request: httpx.Response(404, json={"detail": "Agent not found"})

    response = client.get("/agents/missing")

    assert response.status_code == 404
    assert response.json() == {"detail": "Agent not found"}
    assert_cors_headers(response)


def test_upstream_cors_headers_are_replaced(client, upstream):
    upstream.respond = lambda request: httpx.Response(
        200,
        headers={
            "Access-Control-Allow-Origin": "https://letta.example",
            "Access-Control-Allow-Credentials": "true",
            "X-Request-Id": "req-1",
        },
        content=b"ok",
    )

    response = client.get("/health")

    assert "access-control-allow-credentials" not in response.headers
    assert response.headers["x-request-id"] == "req-1"
    assert response.content == b"ok"
    assert_cors_headers(response)


def test_repeated_upstream_headers_survive(client, upstream):
    upstream.respond = lambda request: httpx.Response(
        200, headers=[("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")]
    )

    response = client.get("/agents")

    assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]


def test_transport_failure_returns_bad_gateway(client, upstream):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.respond = refuse

    response = client.get("/agents")

    assert response.status_code == 502
    assert response.text == "connection refused"
    assert_cors_headers(response)


def test_invalid_target_url_returns_server_error(upstream):
    from fastapi.testclient import TestClient

    from lettaproxy.app import create_app
    from lettaproxy.config import ProxyConfig

    app = create_app(ProxyConfig(target_base="http://letta.test:abc/v1"), transport=httpx.MockTransport(upstream))
    with TestClient(app) as client:
        response = client.get("/agents")

    assert response.status_code == 500
    assert not upstream.requests
    assert_cors_headers(response)


def test_body_is_streamed_byte_for_byte(client, upstream):
    payload = bytes(range(256)) * 8
    upstream.respond = lambda request: httpx.Response(
        200,
        headers={"Content-Type": "application/octet-stream"},
        stream=UpstreamBody(payload, chunk_size=100),
    )

    response = client.get("/sources/source-1/files/blob")

    assert response.content == payload
    assert response.headers["content-type"] == "application/octet-stream"
    assert upstream.bodies[-1].closed


class BrokenBody(UpstreamBody):
    async def __aiter__(self):
        yield self.content
        raise httpx.ReadError("connection reset by peer")


def test_body_failure_ends_the_response_short(client, upstream):
    upstream.respond = lambda request: httpx.Response(200, stream=BrokenBody(b"partial"))

    response = client.get("/agents")

    assert response.status_code == 200
    assert response.content == b"partial"
    assert upstream.bodies[-1].closed


def test_upstream_is_closed_when_relay_setup_fails(client, upstream, monkeypatch):
    def explode(target, headers):
        raise RuntimeError("header copy failed")

    monkeypatch.setattr("lettaproxy.proxy.copy_response_headers", explode)

    with pytest.raises(RuntimeError, match="header copy failed"):
        client.get("/agents")

    assert upstream.bodies[-1].closed
