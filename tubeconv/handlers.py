"""HTTP request handlers for the conversion API."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from aiohttp import web

from .jobs import ConversionRequest, new_task, run_conversion, run_playlist_conversion
from .state import AppState
from .validation import ValidationError

logger = logging.getLogger(__name__)

STATE_KEY = web.AppKey("state", AppState)
BACKGROUND_KEY = web.AppKey("background_tasks", set)

SERVICE_NAME = "tubeconv-web-backend"
SERVICE_VERSION = "0.1.0"

FALLBACK_FORMATS = (
    {"format_id": "mp4_720p", "format": "mp4", "quality": "720p", "filesize": 100_000_000},
    {"format_id": "mp4_1080p", "format": "mp4", "quality": "1080p", "filesize": 200_000_000},
)

_CONTENT_TYPES = (
    (".mp3", "audio/mpeg"),
    (".wav", "audio/wav"),
    (".mp4", "video/mp4"),
    (".webm", "video/webm"),
)


def content_type_for(filename: str, include_m4a: bool = False) -> str:
    """Return the media type served for *filename*, judged by its extension."""
    for suffix, media_type in _CONTENT_TYPES:
        if filename.endswith(suffix):
            return media_type
    if include_m4a and filename.endswith(".m4a"):
        return "audio/mp4"
    return "application/octet-stream"


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _state(request: web.Request) -> AppState:
    return request.app[STATE_KEY]


def _spawn(request: web.Request, job: Coroutine[Any, Any, None]) -> None:
    running = request.app[BACKGROUND_KEY]
    task = asyncio.ensure_future(job)
    running.add(task)
    task.add_done_callback(running.discard)


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


async def _read_url(request: web.Request) -> str | None:
    data = await _read_json(request)
    url = data.get("url") if isinstance(data, dict) else None
    return url if isinstance(url, str) else None


async def _read_conversion(request: web.Request) -> ConversionRequest:
    return ConversionRequest.from_json(await _read_json(request))


async def health_check(request: web.Request) -> web.Response:
    """Report that the service is up."""
    return web.json_response(
        {"status": "healthy", "service": SERVICE_NAME, "version": SERVICE_VERSION}
    )


async def dependency_check(request: web.Request) -> web.Response:
    """Report whether the downloader command is available."""
    try:
        await _state(request).downloader.check_dependencies()
    except Exception as exc:  # noqa: BLE001 - reported to the caller
        message = str(exc)
        return web.json_response(
            {
                "status": "partial",
                "yt_dlp": "missing" if "yt-dlp not found" in message else "available",
                "ffmpeg": "optional",
                "message": f"Some dependencies missing: {message}",
            }
        )
    return web.json_response(
        {
            "status": "ok",
            "yt_dlp": "available",
            "ffmpeg": "available",
            "message": "All dependencies are available",
        }
    )


async def get_video_info(request: web.Request) -> web.Response:
    """Describe a video, or a playlist when the URL names one."""
    url = await _read_url(request)
    if url is None:
        return _error(400, "Missing or invalid field: url")
    logger.info("Getting video info for URL: %s", url)
    downloader = _state(request).downloader

    if "playlist?list=" in url:
        try:
            playlist = await downloader.get_playlist_info(url)
        except Exception as exc:  # noqa: BLE001
            return _error(400, f"Failed to get playlist info: {exc}")
        count = playlist.video_count
        return web.json_response(
            {
                "title": f"{playlist.title} (Playlist - {count} videos)",
                "duration": f"{count} videos",
                "thumbnail": None,
                "channel": playlist.uploader,
            }
        )

    try:
        video = await downloader.get_video_info(url)
    except Exception as exc:  # noqa: BLE001
        return _error(400, f"Failed to get video info: {exc}")
    return web.json_response(
        {
            "title": video.title,
            "duration": video.duration,
            "thumbnail": video.thumbnail,
            "channel": video.channel,
        }
    )


async def get_quality_options(request: web.Request) -> web.Response:
    """List the formats of a video, or a default pair when they cannot be read."""
    url = await _read_url(request)
    if url is None:
        return _error(400, "Missing or invalid field: url")
    try:
        formats = await _state(request).downloader.get_available_formats(url)
    except Exception:  # noqa: BLE001 - fall back to the defaults
        return web.json_response({"formats": [dict(option) for option in FALLBACK_FORMATS]})
    return web.json_response(
        {
            "formats": [
                {
                    "format_id": item.format_id,
                    "format": item.ext,
                    "quality": item.resolution or "unknown",
                    "filesize": item.filesize,
                }
                for item in formats
            ]
        }
    )


async def _start(request: web.Request, runner: Any) -> web.Response:
    try:
        conversion = await _read_conversion(request)
    except ValidationError as exc:
        return _error(400, str(exc))
    state = _state(request)
    task = new_task(conversion)
    state.tasks[task.id] = task
    body = task.to_json()
    _spawn(request, runner(state, task.id, conversion))
    return web.json_response(body)


async def start_conversion(request: web.Request) -> web.Response:
    """Create a task and download a single video in the background."""
    return await _start(request, run_conversion)


async def convert_playlist(request: web.Request) -> web.Response:
    """Create a task and download a playlist in the background."""
    return await _start(request, run_playlist_conversion)


async def get_all_tasks(request: web.Request) -> web.Response:
    """List every task."""
    return web.json_response([task.to_json() for task in _state(request).all_tasks()])


async def get_task(request: web.Request) -> web.Response:
    """Return one task by its identifier."""
    task = _state(request).tasks.get(request.match_info["id"])
    if task is None:
        return _error(404, "Task not found")
    return web.json_response(task.to_json())


async def cancel_task(request: web.Request) -> web.Response:
    """Mark a task as cancelled."""
    task = _state(request).tasks.get(request.match_info["id"])
    if task is None:
        return _error(404, "Task not found")
    task.status = "cancelled"
    return web.json_response({"message": "Task cancelled"})


def _file_response(file_path: str, include_m4a: bool) -> web.Response:
    path = Path(file_path)
    if not path.exists():
        return _error(404, "File not found on disk")
    filename = path.name or "download"
    try:
        handle = path.open("rb")
    except OSError:
        return _error(500, "Failed to open file")
    return web.Response(
        body=handle,
        headers={
            "Content-Type": content_type_for(filename, include_m4a),
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-cache",
        },
    )


async def download_file(request: web.Request) -> web.Response:
    """Send the finished file of a task."""
    task = _state(request).tasks.get(request.match_info["id"])
    if task is None:
        return _error(404, "Task not found")
    if task.file_path is None:
        return _error(404, "File not ready for download")
    return _file_response(task.file_path, include_m4a=False)


async def download_playlist_file(request: web.Request) -> web.Response:
    """Send one file of a playlist task, or its single file when it has no list."""
    raw_index = request.match_info["file_index"]
    if not raw_index.isascii() or not raw_index.isdigit():
        return _error(400, "Invalid file index")
    index = int(raw_index)
    task = _state(request).tasks.get(request.match_info["task_id"])
    if task is None:
        return _error(404, "Task not found")
    if task.playlist_files is not None:
        if index >= len(task.playlist_files):
            return _error(404, "File index out of range")
        file_path = task.playlist_files[index]
    elif task.file_path is not None:
        file_path = task.file_path
    else:
        return _error(404, "File not ready for download")
    return _file_response(file_path, include_m4a=True)