"""Background conversion jobs and the simulated progress they report."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .media import ConversionOptions
from .state import AppState, Task, TaskStatus, TaskUpdate
from .validation import ValidationError

logger = logging.getLogger(__name__)

SINGLE_STEPS = 8


@dataclass(frozen=True)
class ConversionRequest:
    """Body of a conversion or playlist request."""

    url: str
    format: str
    quality: str
    output_path: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> ConversionRequest:
        """Build from a decoded JSON body, raising ValidationError when it is malformed."""
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        values = {}
        for key in ("url", "format", "quality"):
            value = data.get(key)
            if not isinstance(value, str):
                raise ValidationError(f"Missing or invalid field: {key}")
            values[key] = value
        output_path = data.get("output_path")
        if output_path is not None and not isinstance(output_path, str):
            raise ValidationError("Missing or invalid field: output_path")
        return cls(output_path=output_path, **values)


def new_task(request: ConversionRequest) -> Task:
    """Create a pending task with a fresh identifier for *request*."""
    return Task(
        id=str(uuid.uuid4()),
        url=request.url,
        format=request.format,
        quality=request.quality,
    )


def single_progress_step(iteration: int) -> tuple[float, str, str]:
    """Return (progress, speed text, eta text) for a step of a single download."""
    if not 1 <= iteration <= SINGLE_STEPS:
        raise ValueError(f"iteration must be between 1 and {SINGLE_STEPS}")
    progress = 10.0 + iteration * 10.0
    return progress, f"Downloading... {int(progress)}%", f"{20 - iteration * 2}s remaining"


def playlist_progress_step(iteration: int) -> tuple[float, str, str]:
    """Return (progress, message, eta text) for a step of a playlist download."""
    if iteration < 1:
        raise ValueError("iteration must be at least 1")
    if iteration <= 3:
        progress = 10.0 + iteration * 5.0
    elif iteration <= 10:
        progress = 25.0 + iteration * 3.0
    elif iteration <= 20:
        progress = 55.0 + iteration * 2.0
    else:
        progress = min(75.0 + iteration, 95.0)

    if iteration <= 3:
        message = "Fetching playlist information..."
    elif iteration <= 8:
        message = "Downloading videos from playlist..."
    elif iteration <= 15:
        message = "Processing downloaded files..."
    elif iteration <= 20:
        message = "Organizing playlist contents..."
    else:
        message = "Finalizing download..."

    if iteration <= 5:
        eta = f"{45 - iteration * 2}s remaining"
    elif iteration <= 15:
        eta = f"{35 - iteration}s remaining"
    else:
        eta = "Almost done"
    return progress, message, eta


async def _simulate_single(state: AppState, task_id: str, interval: float) -> None:
    for iteration in range(1, SINGLE_STEPS + 1):
        await asyncio.sleep(interval)
        progress, speed, eta = single_progress_step(iteration)
        task = state.tasks.get(task_id)
        if task is not None:
            if task.status != "processing":
                break
            task.progress = progress
        state.broadcast(TaskUpdate(task_id, TaskStatus.CONVERTING, progress, speed, eta))


async def _simulate_playlist(state: AppState, task_id: str, interval: float) -> None:
    iteration = 0
    while True:
        await asyncio.sleep(interval)
        iteration += 1
        progress, message, eta = playlist_progress_step(iteration)
        task = state.tasks.get(task_id)
        if task is None or task.status != "processing":
            break
        task.progress = progress
        state.broadcast(TaskUpdate(task_id, TaskStatus.CONVERTING, progress, message, eta))
        if progress >= 95.0:
            break


async def _with_progress(
    simulation: Awaitable[None], work: Callable[[], Awaitable[Any]]
) -> Any:
    ticker = asyncio.ensure_future(simulation)
    try:
        return await work()
    finally:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker


async def run_conversion(
    state: AppState, task_id: str, request: ConversionRequest, interval: float = 2.0
) -> None:
    """Download a single video for a stored task, reporting progress as it goes."""
    options = ConversionOptions(
        url=request.url,
        format=request.format,
        quality=request.quality,
        output_dir=f"{state.downloads_dir}/{task_id}",
    )
    task = state.tasks.get(task_id)
    if task is not None:
        task.status = "processing"
        task.progress = 10.0
    state.broadcast(
        TaskUpdate(task_id, TaskStatus.CONVERTING, 10.0, "Starting download...", "Calculating...")
    )

    try:
        file_path = await _with_progress(
            _simulate_single(state, task_id, interval),
            lambda: state.downloader.download_video(options),
        )
    except Exception as exc:  # noqa: BLE001 - every failure is reported on the task
        message = str(exc)
        logger.warning("Conversion %s failed: %s", task_id, message)
        task = state.tasks.get(task_id)
        if task is not None:
            task.status = f"failed: {message}"
            task.progress = 0.0
        state.broadcast(
            TaskUpdate(task_id, TaskStatus.FAILED, 0.0, "Failed", "Error", error=message)
        )
        return

    task = state.tasks.get(task_id)
    if task is not None:
        task.status = "completed"
        task.progress = 100.0
        task.file_path = file_path
    state.broadcast(TaskUpdate(task_id, TaskStatus.COMPLETED, 100.0, "Complete", "Done"))


async def run_playlist_conversion(
    state: AppState, task_id: str, request: ConversionRequest, interval: float = 2.0
) -> None:
    """Download a whole playlist for a stored task, reporting progress as it goes."""
    playlist_dir = f"{state.downloads_dir}/playlist_{task_id}"
    options = ConversionOptions(
        url=request.url,
        format=request.format,
        quality=request.quality,
        output_dir=playlist_dir,
    )
    task = state.tasks.get(task_id)
    if task is not None:
        task.status = "processing"
        task.progress = 5.0
        task.output_path = playlist_dir
    state.broadcast(
        TaskUpdate(
            task_id, TaskStatus.CONVERTING, 5.0, "Analyzing playlist...", "Calculating..."
        )
    )

    try:
        files: list[str] = await _with_progress(
            _simulate_playlist(state, task_id, interval),
            lambda: state.downloader.download_playlist(options),
        )
    except Exception as exc:  # noqa: BLE001 - every failure is reported on the task
        message = str(exc)
        partial = "some errors" in message or "partial" in message
        progress = 75.0 if partial else 0.0
        task = state.tasks.get(task_id)
        if task is not None:
            task.status = (
                f"completed_with_errors: {message}" if partial else f"failed: {message}"
            )
            task.progress = progress
            if partial:
                task.output_path = playlist_dir
        if partial:
            update = TaskUpdate(
                task_id,
                TaskStatus.COMPLETED,
                progress,
                "Completed with some errors - check output folder",
                "Check results",
            )
        else:
            update = TaskUpdate(
                task_id,
                TaskStatus.FAILED,
                progress,
                f"Failed: {message}",
                "Failed",
                error=message,
            )
        state.broadcast(update)
        return

    summary = (
        f"Successfully downloaded {len(files)} files"
        if files
        else "Playlist processed, check output directory"
    )
    task = state.tasks.get(task_id)
    if task is not None:
        task.status = "completed"
        task.progress = 100.0
        task.file_path = files[0] if files else None
        task.playlist_files = list(files) if len(files) > 1 else None
        task.output_path = playlist_dir
    state.broadcast(TaskUpdate(task_id, TaskStatus.COMPLETED, 100.0, summary, "Completed"))