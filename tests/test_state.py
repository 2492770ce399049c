import asyncio
from datetime import datetime, timezone

import pytest

from tubeconv.state import (
    AppState,
    Lagged,
    Task,
    TaskStatus,
    TaskUpdate,
    UpdateBus,
)


class FakeDownloader:
    def __init__(self, fail=False):
        self.fail = fail
        self.checked = 0

    async def check_dependencies(self):
        self.checked += 1
        if self.fail:
            raise RuntimeError("yt-dlp not found")


def _update(task_id="t1", progress=10.0, status=TaskStatus.CONVERTING, error=None):
    return TaskUpdate(task_id, status, progress, "speed", "eta", error)


def test_update_json_unit_status():
    data = _update().to_json()
    assert data == {
        "task_id": "t1",
        "status": "Converting",
        "progress": 10.0,
        "speed": "speed",
        "eta": "eta",
    }


def test_update_json_failed_status_carries_message():
    data = _update(status=TaskStatus.FAILED, error="boom").to_json()
    assert data["status"] == {"Failed": "boom"}


def test_task_json_fields_and_time():
    created = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
    task = Task(id="abc", url="u", format="mp4", quality="720p", created_at=created)
    data = task.to_json()
    assert data["created_at"] == "2024-05-06T07:08:09Z"
    assert data["status"] == "pending"
    assert data["progress"] == 0.0
    assert data["playlist_files"] is None
    assert list(data) == [
        "id", "url", "format", "quality", "status", "progress",
        "created_at", "output_path", "file_path", "playlist_files",
    ]


@pytest.mark.asyncio
async def test_bus_delivers_in_order():
    bus = UpdateBus(10)
    sub = bus.subscribe()
    assert bus.publish(_update(progress=1.0)) == 1
    bus.publish(_update(progress=2.0))
    assert (await sub.recv()).progress == 1.0
    assert (await sub.recv()).progress == 2.0


@pytest.mark.asyncio
async def test_bus_reports_lag_then_resumes():
    bus = UpdateBus(2)
    sub = bus.subscribe()
    for value in (1.0, 2.0, 3.0):
        bus.publish(_update(progress=value))
    with pytest.raises(Lagged) as info:
        await sub.recv()
    assert info.value.count == 1
    assert (await sub.recv()).progress == 2.0
    assert (await sub.recv()).progress == 3.0


@pytest.mark.asyncio
async def test_recv_waits_for_publish():
    bus = UpdateBus()
    sub = bus.subscribe()
    waiter = asyncio.ensure_future(sub.recv())
    await asyncio.sleep(0)
    assert not waiter.done()
    bus.publish(_update(task_id="late"))
    result = await asyncio.wait_for(waiter, 1)
    assert result.task_id == "late"


def test_publish_counts_only_live_subscribers():
    bus = UpdateBus()
    first = bus.subscribe()
    second = bus.subscribe()
    assert bus.publish(_update()) == 2
    del second
    assert bus.publish(_update()) == 1
    assert first is not None


def test_bus_rejects_zero_capacity():
    with pytest.raises(ValueError):
        UpdateBus(0)


@pytest.mark.asyncio
async def test_create_makes_directory(tmp_path):
    target = tmp_path / "a" / "b"
    fake = FakeDownloader()
    state = await AppState.create(fake, str(target))
    assert target.is_dir()
    assert state.downloads_dir == str(target)
    assert fake.checked == 1
    assert state.tasks == {}


@pytest.mark.asyncio
async def test_create_tolerates_missing_tool(tmp_path):
    state = await AppState.create(FakeDownloader(fail=True), str(tmp_path / "d"))
    assert (tmp_path / "d").is_dir()
    assert state.all_tasks() == []


@pytest.mark.asyncio
async def test_create_reads_environment(tmp_path, monkeypatch):
    target = tmp_path / "env_downloads"
    monkeypatch.setenv("DOWNLOADS_DIR", str(target))
    state = await AppState.create(FakeDownloader())
    assert state.downloads_dir == str(target)
    assert target.is_dir()


@pytest.mark.asyncio
async def test_state_broadcast_and_tasks(tmp_path):
    state = AppState(downloader=FakeDownloader(), downloads_dir=str(tmp_path))
    sub = state.subscribe()
    assert state.broadcast(_update(task_id="x")) == 1
    assert (await sub.recv()).task_id == "x"

    task = Task(id="x", url="u", format="mp3", quality="best")
    state.tasks["x"] = task
    listed = state.all_tasks()
    assert [t.id for t in listed] == ["x"]
    listed[0].status = "changed"
    assert state.tasks["x"].status == "pending"