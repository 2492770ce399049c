"""Validation and sanitisation of user-supplied request values."""

from __future__ import annotations

import re

_YOUTUBE_URL = re.compile(
    r"^https?://(www\.)?"
    r"(youtube\.com/watch\?v=|youtu\.be/|youtube\.com/playlist\?list=)"
    r"[a-zA-Z0-9_-]+"
)

SUPPORTED_FORMATS = frozenset({"mp3", "mp4", "wav", "webm"})

SUPPORTED_QUALITIES = frozenset(
    {"144p", "240p", "360p", "480p", "720p", "1080p", "1440p", "2160p", "best", "worst"}
)

_FILENAME_TABLE = str.maketrans({char: "_" for char in '/\\:*?"<>|'})


class ValidationError(ValueError):
    """Raised when a request value is not acceptable."""


def validate_youtube_url(url: str) -> None:
    """Raise ValidationError unless *url* looks like a video, short or playlist link."""
    if not _YOUTUBE_URL.match(url):
        raise ValidationError("Invalid YouTube URL")


def validate_format(fmt: str) -> None:
    """Raise ValidationError unless *fmt* is one of the supported output formats."""
    if fmt not in SUPPORTED_FORMATS:
        raise ValidationError("Unsupported format")


def validate_quality(quality: str) -> None:
    """Raise ValidationError unless *quality* is a known quality setting."""
    if quality not in SUPPORTED_QUALITIES:
        raise ValidationError("Invalid quality setting")


def sanitize_filename(filename: str) -> str:
    """Replace characters that are unsafe in file names with underscores."""
    return filename.translate(_FILENAME_TABLE)


def sanitize_html(text: str) -> str:
    """Escape markup characters; the ampersand is escaped last."""
    return (
        text.replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#x27;")
        .replace("&", "&amp;")
    )