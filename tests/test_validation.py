import pytest

from tubeconv.validation import (
    ValidationError,
    sanitize_filename,
    sanitize_html,
    validate_format,
    validate_quality,
    validate_youtube_url,
)


@pytest.mark.parametrize(
    "url",
    [
        "https://www.youtube.com/watch?v=abcDEF_123-x",
        "http://youtube.com/watch?v=abc",
        "https://youtu.be/abc123",
        "https://www.youtube.com/playlist?list=PL_abc-123",
    ],
)
def test_valid_urls_accepted(url):
    assert validate_youtube_url(url) is None


@pytest.mark.parametrize(
    "url",
    [
        "https://vimeo.com/123",
        "ftp://youtube.com/watch?v=abc",
        "https://www.youtube.com/watch?v=",
        "see https://youtu.be/abc123",
        "",
    ],
)
def test_invalid_urls_rejected(url):
    with pytest.raises(ValidationError, match="Invalid YouTube URL"):
        validate_youtube_url(url)


def test_validation_error_is_value_error():
    with pytest.raises(ValueError):
        validate_format("flac")


@pytest.mark.parametrize("fmt", ["mp3", "mp4", "wav", "webm"])
def test_supported_formats(fmt):
    assert validate_format(fmt) is None


@pytest.mark.parametrize("fmt", ["flac", "MP3", "", "m4a"])
def test_unsupported_formats(fmt):
    with pytest.raises(ValidationError, match="Unsupported format"):
        validate_format(fmt)


@pytest.mark.parametrize(
    "quality",
    ["144p", "240p", "360p", "480p", "720p", "1080p", "1440p", "2160p", "best", "worst"],
)
def test_supported_qualities(quality):
    assert validate_quality(quality) is None


@pytest.mark.parametrize("quality", ["1080p60", "4k", "", "720"])
def test_unsupported_qualities(quality):
    with pytest.raises(ValidationError, match="Invalid quality setting"):
        validate_quality(quality)


@pytest.mark.parametrize("name", ['a/b\\c:d*e?f"g<h>i|j', "plain name.mp4", "///"])
def test_sanitize_filename_removes_unsafe_characters(name):
    result = sanitize_filename(name)
    assert len(result) == len(name)
    assert not any(char in result for char in '/\\:*?"<>|')


def test_sanitize_filename_keeps_safe_names():
    name = "My Song - Live (2020).mp3"
    assert sanitize_filename(name) == name


def test_sanitize_filename_uses_underscores():
    result = sanitize_filename("a|b")
    assert result[1] == "_"
    assert result[0] == "a" and result[2] == "b"


def test_sanitize_html_ampersand():
    assert sanitize_html("&") == "&amp;"


def test_sanitize_html_removes_markup():
    result = sanitize_html("<script>alert('x')</script>\"")
    assert "<" not in result
    assert ">" not in result
    assert '"' not in result
    assert "'" not in result


def test_sanitize_html_leaves_plain_text():
    assert sanitize_html("hello world") == "hello world"