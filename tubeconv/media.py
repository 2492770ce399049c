"""Media metadata records and helpers for parsing downloader output and output folders."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

MEDIA_EXTENSIONS = (".mp3", ".mp4", ".wav", ".webm", ".m4a")


class DownloadError(Exception):
    """Raised when metadata cannot be read or a download fails."""


def _as_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _as_u64(data: dict[str, Any], key: str) -> int | None:
    value = data.get(key)
    if isinstance(value, int) and not isinstance(value, bool) and 0 <= value < 2**64:
        return value
    return None


def _as_f64(data: dict[str, Any], key: str) -> float | None:
    value = data.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


@dataclass
class VideoInfo:
    id: str
    title: str
    duration: str | None = None
    thumbnail: str | None = None
    channel: str | None = None
    upload_date: str | None = None
    view_count: int | None = None
    description: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> VideoInfo:
        """Build from one decoded JSON record, falling back to defaults for missing keys."""
        if not isinstance(data, dict):
            data = {}
        return cls(
            id=_as_str(data, "id") or "unknown",
            title=_as_str(data, "title") or "Unknown",
            duration=_as_str(data, "duration_string"),
            thumbnail=_as_str(data, "thumbnail"),
            channel=_as_str(data, "uploader"),
            upload_date=_as_str(data, "upload_date"),
            view_count=_as_u64(data, "view_count"),
            description=_as_str(data, "description"),
        )


@dataclass
class PlaylistInfo:
    id: str
    title: str
    uploader: str | None = None
    videos: list[VideoInfo] = field(default_factory=list)

    @property
    def video_count(self) -> int:
        return len(self.videos)


@dataclass
class FormatInfo:
    format_id: str
    ext: str
    resolution: str | None = None
    fps: float | None = None
    filesize: int | None = None
    audio_codec: str | None = None
    video_codec: str | None = None


@dataclass
class ConversionOptions:
    url: str
    format: str
    quality: str
    output_dir: str


def _decode(output: bytes | str) -> str:
    if isinstance(output, str):
        return output
    try:
        return output.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DownloadError(f"Output is not valid UTF-8: {exc}") from exc


def _load_json(output: bytes | str) -> Any:
    try:
        return json.loads(_decode(output))
    except json.JSONDecodeError as exc:
        raise DownloadError(f"Invalid JSON output: {exc}") from exc


def parse_video_info(output: bytes | str) -> VideoInfo:
    """Parse the JSON dump of a single video."""
    return VideoInfo.from_json(_load_json(output))


def parse_playlist_info(output: bytes | str) -> PlaylistInfo:
    """Parse a flat playlist dump: one JSON record per line, unreadable lines skipped."""
    playlist = PlaylistInfo(id="unknown", title="Unknown Playlist")
    for line in _decode(output).split("\n"):
        try:
            record = json.loads(line.rstrip("\r"))
        except json.JSONDecodeError:
            continue
        if not isinstance(record, dict):
            continue
        kind = record.get("_type")
        if kind == "playlist":
            playlist.title = _as_str(record, "title") or "Unknown Playlist"
            playlist.id = _as_str(record, "id") or "unknown"
            playlist.uploader = _as_str(record, "uploader")
        elif kind == "url":
            playlist.videos.append(VideoInfo.from_json(record))
    return playlist


def _format_from_json(data: Any) -> FormatInfo:
    if not isinstance(data, dict):
        data = {}
    return FormatInfo(
        format_id=_as_str(data, "format_id") or "unknown",
        ext=_as_str(data, "ext") or "unknown",
        resolution=_as_str(data, "resolution"),
        fps=_as_f64(data, "fps"),
        filesize=_as_u64(data, "filesize"),
        audio_codec=_as_str(data, "acodec"),
        video_codec=_as_str(data, "vcodec"),
    )


def parse_formats(output: bytes | str) -> list[FormatInfo]:
    """Parse the list of available formats from a video's JSON dump."""
    data = _load_json(output)
    formats = data.get("formats") if isinstance(data, dict) else None
    if not isinstance(formats, list):
        return []
    return [_format_from_json(item) for item in formats]


def quality_height(quality: str) -> str:
    """Map a quality label to a maximum frame height, defaulting to 720."""
    return {
        "1080p60": "1080",
        "1080p": "1080",
        "720p60": "720",
        "720p": "720",
        "480p": "480",
        "360p": "360",
    }.get(quality, "720")


def format_selector(fmt: str, quality: str) -> str:
    """Return the downloader format selector for an output format and quality."""
    if fmt == "mp3":
        return "bestaudio[ext=m4a]/bestaudio[ext=webm]/bestaudio[ext=mp3]/bestaudio"
    if fmt == "wav":
        return "bestaudio[ext=wav]/bestaudio[ext=m4a]/bestaudio"
    if fmt in ("mp4", "webm"):
        height = quality_height(quality)
        return f"best[ext={fmt}][height<={height}]/best[ext={fmt}]/best"
    raise DownloadError(f"Unsupported format: {fmt}")


def find_newest_file(directory: str | Path) -> str:
    """Return the path of the most recently modified regular file in *directory*."""
    newest: Path | None = None
    newest_time = 0
    for path in Path(directory).iterdir():
        if not path.is_file():
            continue
        try:
            modified = path.stat().st_mtime_ns
        except OSError:
            continue
        if modified > newest_time:
            newest_time = modified
            newest = path
    if newest is None:
        raise DownloadError(f"Downloaded file not found in directory: {directory}")
    return str(newest)


def find_media_files(directory: str | Path, fmt: str) -> list[str]:
    """Return the sorted paths of media files in *directory*."""
    suffixes = (f".{fmt}", *MEDIA_EXTENSIONS)
    files = sorted(
        str(path)
        for path in Path(directory).iterdir()
        if path.is_file() and path.name.endswith(suffixes)
    )
    if not files:
        raise DownloadError(f"No files downloaded for playlist in directory: {directory}")
    return files