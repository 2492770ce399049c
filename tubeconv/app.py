"""Web application assembly, CORS handling and the server entry point."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

from aiohttp import web

from . import handlers
from .handlers import BACKGROUND_KEY, STATE_KEY
from .headers import security_headers_middleware
from .state import AppState
from .websocket import websocket_handler

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3001
DEFAULT_HOST = "127.0.0.1"

CORS_ALLOW_METHODS = "GET,POST,DELETE,OPTIONS"
CORS_ALLOW_HEADERS = "content-type,authorization,x-csrf-token"
CORS_MAX_AGE = "300"

_PORT_TEXT = re.compile(r"\+?[0-9]+")


@web.middleware
async def cors_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Answer CORS preflight requests and allow any origin on other responses."""
    if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
        return web.Response(
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": CORS_ALLOW_METHODS,
                "Access-Control-Allow-Headers": CORS_ALLOW_HEADERS,
                "Access-Control-Max-Age": CORS_MAX_AGE,
                "Vary": "origin, access-control-request-method, access-control-request-headers",
            }
        )
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        exc.headers["Access-Control-Allow-Origin"] = "*"
        raise
    if not response.prepared:
        response.headers["Access-Control-Allow-Origin"] = "*"
    return response


def _frontend_handler(static_dir: str | Path) -> Callable[[web.Request], Awaitable[web.StreamResponse]]:
    root = Path(static_dir)

    async def serve(request: web.Request) -> web.StreamResponse:
        base = root.resolve()
        candidate = (base / request.match_info["tail"]).resolve()
        if candidate.is_relative_to(base):
            if candidate.is_file():
                return web.FileResponse(candidate)
            if candidate.is_dir() and (candidate / "index.html").is_file():
                return web.FileResponse(candidate / "index.html")
        index = base / "index.html"
        if index.is_file():
            return web.FileResponse(index)
        raise web.HTTPNotFound()

    return serve


async def _cancel_background(app: web.Application) -> None:
    running = list(app[BACKGROUND_KEY])
    for task in running:
        task.cancel()
    await asyncio.gather(*running, return_exceptions=True)


def create_app(state: AppState, static_dir: str | Path = "./dist") -> web.Application:
    """Build the application with its API routes, WebSocket and frontend fallback."""
    app = web.Application(middlewares=[security_headers_middleware, cors_middleware])
    app[STATE_KEY] = state
    app[BACKGROUND_KEY] = set()
    app.on_cleanup.append(_cancel_background)

    router = app.router
    router.add_post("/api/info", handlers.get_video_info)
    router.add_post("/api/quality", handlers.get_quality_options)
    router.add_post("/api/convert", handlers.start_conversion)
    router.add_post("/api/playlist", handlers.convert_playlist)
    router.add_get("/api/tasks", handlers.get_all_tasks)
    router.add_get("/api/tasks/{id}", handlers.get_task)
    router.add_delete("/api/tasks/{id}", handlers.cancel_task)
    router.add_get("/api/download/{id}", handlers.download_file)
    router.add_get("/api/download/{task_id}/{file_index}", handlers.download_playlist_file)
    router.add_get("/api/health", handlers.health_check)
    router.add_get("/api/dependencies", handlers.dependency_check)
    router.add_get("/health", handlers.health_check)
    router.add_get("/ws", websocket_handler)
    router.add_get("/{tail:.*}", _frontend_handler(static_dir))
    return app


def resolve_address(environ: Mapping[str, str]) -> tuple[str, int]:
    """Return the (host, port) to bind from PORT and HOST, with local defaults."""
    port = DEFAULT_PORT
    raw_port = environ.get("PORT")
    if raw_port is not None and _PORT_TEXT.fullmatch(raw_port):
        value = int(raw_port)
        if value <= 0xFFFF:
            port = value
    host = "0.0.0.0" if environ.get("HOST", DEFAULT_HOST) == "0.0.0.0" else DEFAULT_HOST
    return host, port


def main(argv: list[str] | None = None) -> int:
    """Start the web server."""
    parser = argparse.ArgumentParser(
        prog="tubeconv", description="Serve the video conversion web API."
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    host, port = resolve_address(os.environ)
    shown_host = os.environ.get("HOST", DEFAULT_HOST)

    async def build() -> web.Application:
        return create_app(await AppState.create())

    logger.info("Web server starting on http://%s:%d", shown_host, port)
    web.run_app(build(), host=host, port=port, print=None)
    return 0