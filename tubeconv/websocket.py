"""WebSocket endpoint that streams task updates to clients."""

from __future__ import annotations

import asyncio
import json
import logging

from aiohttp import WSMsgType, web

from .handlers import STATE_KEY
from .state import Lagged, TaskUpdate

logger = logging.getLogger(__name__)

_CLOSING = (WSMsgType.CLOSE, WSMsgType.CLOSING, WSMsgType.CLOSED)


async def _handle_message(ws: web.WebSocketResponse, message: web.WSMessage) -> bool:
    """Handle one client message; return False when the connection should end."""
    if message.type is WSMsgType.TEXT:
        if message.data == "ping":
            try:
                await ws.send_str("pong")
            except (ConnectionError, RuntimeError):
                return False
        return True
    if message.type in _CLOSING:
        logger.info("WebSocket connection closed by client")
        return False
    if message.type is WSMsgType.ERROR:
        error = ws.exception()
        text = str(error)
        if "Connection reset" in text or "close handshake" in text:
            logger.info("WebSocket client disconnected (browser closed): %s", error)
        else:
            logger.error("WebSocket error: %s", error)
        return False
    return True


async def _send_update(ws: web.WebSocketResponse, update: TaskUpdate) -> bool:
    try:
        await ws.send_str(json.dumps(update.to_json()))
    except (ConnectionError, RuntimeError):
        logger.warning("Failed to send task update, client disconnected")
        return False
    return True


async def websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """Answer pings and forward every task update to the connected client."""
    state = request.app[STATE_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    subscription = state.subscribe()
    logger.info("New WebSocket connection established")

    incoming = asyncio.ensure_future(ws.receive())
    updates = asyncio.ensure_future(subscription.recv())
    try:
        while True:
            done, _ = await asyncio.wait(
                {incoming, updates}, return_when=asyncio.FIRST_COMPLETED
            )
            if incoming in done:
                if not await _handle_message(ws, incoming.result()):
                    break
                incoming = asyncio.ensure_future(ws.receive())
            if updates in done:
                try:
                    update = updates.result()
                except Lagged as exc:
                    logger.warning("WebSocket client lagged behind by %d messages", exc.count)
                else:
                    if not await _send_update(ws, update):
                        break
                updates = asyncio.ensure_future(subscription.recv())
    finally:
        pending = [task for task in (incoming, updates) if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if not ws.closed:
            await ws.close()
    logger.info("WebSocket connection closed")
    return ws