import pytest
from aiohttp import web
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from tubeconv.headers import SECURITY_HEADERS, apply_security_headers, security_headers_middleware


def test_apply_sets_every_header():
    headers = {}
    result = apply_security_headers(headers)
    assert result is headers
    assert headers == SECURITY_HEADERS


def test_apply_overwrites_existing_values():
    headers = {"X-Frame-Options": "SAMEORIGIN", "Content-Type": "text/plain"}
    apply_security_headers(headers)
    assert headers["X-Frame-Options"] == "DENY"
    assert headers["Content-Type"] == "text/plain"


def test_pinned_values():
    headers = apply_security_headers({})
    assert headers["Strict-Transport-Security"] == "max-age=31536000; includeSubDomains"
    assert headers["X-Content-Type-Options"] == "nosniff"
    assert headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


def _app():
    async def hello(request):
        return web.Response(text="hello")

    app = web.Application(middlewares=[security_headers_middleware])
    app.router.add_get("/hello", hello)
    return app


@pytest.mark.asyncio
async def test_middleware_adds_headers_to_response():
    async with TestClient(TestServer(_app())) as client:
        response = await client.get("/hello")
        assert response.status == 200
        assert await response.text() == "hello"
        for name, value in SECURITY_HEADERS.items():
            assert response.headers[name] == value


@pytest.mark.asyncio
async def test_middleware_adds_headers_to_errors():
    async def not_found(request):
        return web.Response(status=404, text="gone")

    request = make_mocked_request("GET", "/missing")
    response = await security_headers_middleware(request, not_found)
    assert response.status == 404
    assert response.text == "gone"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-XSS-Protection"] == "1; mode=block"

    async with TestClient(TestServer(_app())) as client:
        served = await client.get("/missing")
        assert served.status == 404
        assert served.headers["X-Frame-Options"] == "DENY"
        assert served.headers["X-XSS-Protection"] == "1; mode=block"