import asyncio
import contextlib
import json

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from tubeconv.app import create_app
from tubeconv.state import AppState, TaskStatus, TaskUpdate


class IdleDownloader:
    async def check_dependencies(self):
        return None


@contextlib.asynccontextmanager
async def _socket(tmp_path):
    state = AppState(downloader=IdleDownloader(), downloads_dir=str(tmp_path))
    app = create_app(state, static_dir=str(tmp_path / "dist"))
    async with TestClient(TestServer(app)) as client:
        ws = await client.ws_connect("/ws")
        try:
            yield ws, state
        finally:
            await ws.close()


async def _next(ws):
    return await asyncio.wait_for(ws.receive(), timeout=5)


@pytest.mark.asyncio
async def test_ping_is_answered(tmp_path):
    async with _socket(tmp_path) as (ws, _):
        await ws.send_str("ping")
        message = await _next(ws)
    assert message.type is WSMsgType.TEXT
    assert message.data == "pong"


@pytest.mark.asyncio
async def test_other_text_gets_no_reply(tmp_path):
    async with _socket(tmp_path) as (ws, _):
        await ws.send_str("hello")
        await ws.send_str("ping")
        message = await _next(ws)
    assert message.data == "pong"


@pytest.mark.asyncio
async def test_updates_are_forwarded(tmp_path):
    update = TaskUpdate("task-1", TaskStatus.CONVERTING, 30.0, "Downloading... 30%", "16s remaining")
    async with _socket(tmp_path) as (ws, state):
        await ws.send_str("ping")
        assert (await _next(ws)).data == "pong"
        receivers = state.broadcast(update)
        message = await _next(ws)
    assert receivers == 1
    assert json.loads(message.data) == update.to_json()


@pytest.mark.asyncio
async def test_failed_update_carries_message(tmp_path):
    update = TaskUpdate("task-2", TaskStatus.FAILED, 0.0, "Failed", "Error", error="boom")
    async with _socket(tmp_path) as (ws, state):
        await ws.send_str("ping")
        assert (await _next(ws)).data == "pong"
        state.broadcast(update)
        payload = json.loads((await _next(ws)).data)
    assert payload["task_id"] == "task-2"
    assert payload["status"] == {"Failed": "boom"}


@pytest.mark.asyncio
async def test_updates_arrive_in_order(tmp_path):
    first = TaskUpdate("t", TaskStatus.CONVERTING, 10.0, "Starting download...", "Calculating...")
    second = TaskUpdate("t", TaskStatus.COMPLETED, 100.0, "Complete", "Done")
    async with _socket(tmp_path) as (ws, state):
        await ws.send_str("ping")
        assert (await _next(ws)).data == "pong"
        state.broadcast(first)
        state.broadcast(second)
        received = [json.loads((await _next(ws)).data) for _ in range(2)]
    assert received == [first.to_json(), second.to_json()]