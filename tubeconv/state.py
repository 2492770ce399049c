"""Shared server state: the task table and the broadcast of task progress updates."""

from __future__ import annotations

import copy
import logging
import os
import weakref
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import asyncio

logger = logging.getLogger(__name__)

UPDATE_CAPACITY = 100


class TaskStatus(Enum):
    """Lifecycle stage reported in a task update."""

    PENDING = "Pending"
    CONVERTING = "Converting"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    FAILED = "Failed"


@dataclass(frozen=True)
class TaskUpdate:
    """One progress notification for a task."""

    task_id: str
    status: TaskStatus
    progress: float
    speed: str
    eta: str
    error: str | None = None

    def to_json(self) -> dict[str, Any]:
        """Return the wire form; a failure carries its message as ``{"Failed": msg}``."""
        status: Any = self.status.value
        if self.status is TaskStatus.FAILED:
            status = {"Failed": self.error or ""}
        return {
            "task_id": self.task_id,
            "status": status,
            "progress": self.progress,
            "speed": self.speed,
            "eta": self.eta,
        }


@dataclass
class Task:
    """A conversion job as stored by the server and returned by the API."""

    id: str
    url: str
    format: str
    quality: str
    status: str = "pending"
    progress: float = 0.0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    output_path: str | None = None
    file_path: str | None = None
    playlist_files: list[str] | None = None

    def to_json(self) -> dict[str, Any]:
        """Return the JSON-ready form, with the creation time in RFC 3339 UTC."""
        created = self.created_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return {
            "id": self.id,
            "url": self.url,
            "format": self.format,
            "quality": self.quality,
            "status": self.status,
            "progress": self.progress,
            "created_at": created,
            "output_path": self.output_path,
            "file_path": self.file_path,
            "playlist_files": (
                list(self.playlist_files) if self.playlist_files is not None else None
            ),
        }


class Lagged(Exception):
    """Raised by a subscription that fell behind and lost the oldest updates."""

    def __init__(self, count: int) -> None:
        super().__init__(f"receiver lagged by {count} messages")
        self.count = count


class Subscription:
    """A receiver of updates published on an UpdateBus after it subscribed."""

    def __init__(self, capacity: int) -> None:
        self._queue: deque[TaskUpdate] = deque()
        self._capacity = capacity
        self._missed = 0
        self._ready = asyncio.Event()

    def _push(self, update: TaskUpdate) -> None:
        if len(self._queue) >= self._capacity:
            self._queue.popleft()
            self._missed += 1
        self._queue.append(update)
        self._ready.set()

    async def recv(self) -> TaskUpdate:
        """Wait for the next update; raise Lagged once if updates were dropped."""
        while True:
            if self._missed:
                count, self._missed = self._missed, 0
                raise Lagged(count)
            if self._queue:
                return self._queue.popleft()
            self._ready.clear()
            await self._ready.wait()


class UpdateBus:
    """Bounded fan-out of task updates to every live subscription."""

    def __init__(self, capacity: int = UPDATE_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._subscribers: weakref.WeakSet[Subscription] = weakref.WeakSet()

    def subscribe(self) -> Subscription:
        """Return a new subscription that sees updates published from now on."""
        subscription = Subscription(self.capacity)
        self._subscribers.add(subscription)
        return subscription

    def publish(self, update: TaskUpdate) -> int:
        """Deliver *update* to every subscription and return how many received it."""
        receivers = list(self._subscribers)
        for subscription in receivers:
            subscription._push(update)
        return len(receivers)


@dataclass
class AppState:
    """Everything the request handlers share."""

    downloader: Any
    downloads_dir: str
    tasks: dict[str, Task] = field(default_factory=dict)
    updates: UpdateBus = field(default_factory=UpdateBus)

    @classmethod
    async def create(cls, downloader: Any = None, downloads_dir: str | None = None) -> AppState:
        """Build the state, checking the downloader and creating the downloads folder."""
        if downloader is None:
            from .downloader import YouTubeDownloader

            downloader = YouTubeDownloader()
        try:
            await downloader.check_dependencies()
        except Exception as exc:  # noqa: BLE001 - a missing tool is only worth a warning
            logger.warning("YouTube downloader dependencies check failed: %s", exc)
        if downloads_dir is None:
            downloads_dir = os.environ.get("DOWNLOADS_DIR", "./downloads")
        Path(downloads_dir).mkdir(parents=True, exist_ok=True)
        return cls(downloader=downloader, downloads_dir=downloads_dir)

    def subscribe(self) -> Subscription:
        """Subscribe to task updates."""
        return self.updates.subscribe()

    def all_tasks(self) -> list[Task]:
        """Return copies of every stored task."""
        return [copy.deepcopy(task) for task in self.tasks.values()]

    def broadcast(self, update: TaskUpdate) -> int:
        """Publish *update* to all subscribers."""
        return self.updates.publish(update)