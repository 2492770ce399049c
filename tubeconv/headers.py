"""Security headers added to every HTTP response."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, MutableMapping

from aiohttp import web

SECURITY_HEADERS: dict[str, str] = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; img-src 'self' data: https:; "
        "media-src 'self' data: blob:; connect-src 'self' ws: wss:"
    ),
}


def apply_security_headers(headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
    """Set every security header on *headers*, replacing existing values, and return it."""
    for name, value in SECURITY_HEADERS.items():
        headers[name] = value
    return headers


@web.middleware
async def security_headers_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Add the security headers to the handler's response, errors included."""
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        apply_security_headers(exc.headers)
        raise
    if not response.prepared:
        apply_security_headers(response.headers)
    return response