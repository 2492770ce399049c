"""Asynchronous wrapper around the yt-dlp command line downloader."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

from .media import (
    ConversionOptions,
    DownloadError,
    FormatInfo,
    PlaylistInfo,
    VideoInfo,
    find_media_files,
    find_newest_file,
    format_selector,
    parse_formats,
    parse_playlist_info,
    parse_video_info,
)

logger = logging.getLogger(__name__)

CANDIDATE_COMMANDS = (
    "yt-dlp",
    "yt-dlp.exe",
    "python -m yt_dlp",
    "python3 -m yt_dlp",
    "py -m yt_dlp",
)

DESKTOP_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/119.0.0.0 Safari/537.36"
)
MOBILE_AGENT = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
ANDROID_AGENT = "com.google.android.youtube/19.09.37 (Linux; U; Android 11) gzip"
ACCEPT_LANGUAGE = "Accept-Language:en-US,en;q=0.9"

_INFO_STRATEGIES: tuple[tuple[str, ...], ...] = (
    (
        "--dump-json",
        "--no-download",
        "--extractor-args", "youtube:player_client=mweb",
        "--user-agent", MOBILE_AGENT,
        "--add-header", ACCEPT_LANGUAGE,
        "--extractor-retries", "5",
        "--geo-bypass",
        "--no-check-certificate",
    ),
    (
        "--dump-json",
        "--no-download",
        "--extractor-args", "youtubetab:skip=webpage",
        "--extractor-args", "youtube:player_skip=webpage,configs;player_client=android",
        "--user-agent", ANDROID_AGENT,
        "--extractor-retries", "5",
        "--geo-bypass",
        "--no-check-certificate",
    ),
    (
        "--dump-json",
        "--no-download",
        "--extractor-args", "youtube:player_client=web",
        "--user-agent", DESKTOP_AGENT,
        "--add-header", ACCEPT_LANGUAGE,
        "--add-header",
        "Accept:text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "--add-header", "Accept-Encoding:gzip, deflate, br",
        "--add-header", "DNT:1",
        "--add-header", "Connection:keep-alive",
        "--add-header", "Upgrade-Insecure-Requests:1",
        "--extractor-retries", "10",
        "--retry-sleep", "exp=1:120",
        "--geo-bypass",
        "--no-check-certificate",
    ),
)

_METADATA_ARGS = (
    "--user-agent", DESKTOP_AGENT,
    "--add-header", ACCEPT_LANGUAGE,
    "--extractor-retries", "3",
    "--geo-bypass",
    "--no-check-certificate",
)

_BOT_BYPASS_ARGS = (
    "--user-agent", DESKTOP_AGENT,
    "--add-header", ACCEPT_LANGUAGE,
    "--extractor-retries", "3",
    "--fragment-retries", "3",
    "--retry-sleep", "linear=2:10:20",
    "--geo-bypass",
    "--no-check-certificate",
    "--ignore-errors",
)

_PARTIAL_MARKERS = ("has already been downloaded", "[download] Downloading")


def _command_succeeds(parts: list[str]) -> bool:
    try:
        result = subprocess.run(
            [*parts, "--version"],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            check=False,
        )
    except OSError:
        return False
    return result.returncode == 0


def find_executable() -> str:
    """Return the first downloader command that answers ``--version``, else ``yt-dlp``."""
    for candidate in CANDIDATE_COMMANDS:
        if _command_succeeds(candidate.split()):
            logger.info("Found yt-dlp executable: %s", candidate)
            return candidate
    logger.warning("No yt-dlp executable found, using default: yt-dlp")
    return "yt-dlp"


def _text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


async def _collect(stream: asyncio.StreamReader, on_line: Callable[[str], None]) -> bytes:
    chunks: list[bytes] = []
    async for line in stream:
        chunks.append(line)
        on_line(_text(line).strip())
    return b"".join(chunks)


def _log_progress(line: str) -> None:
    if "[download]" in line or "Downloading" in line:
        logger.info("Download progress: %s", line)


def _log_stderr(line: str) -> None:
    if line:
        logger.warning("yt-dlp stderr: %s", line)


class YouTubeDownloader:
    """Runs the downloader command to fetch metadata and media."""

    strategy_delay: float = 2.0

    def __init__(
        self,
        command: str | Sequence[str] | None = None,
        hosted: bool | None = None,
    ) -> None:
        self.hosted = "RENDER" in os.environ if hosted is None else hosted
        if command is None:
            command = "yt-dlp" if self.hosted else find_executable()
        self.command: list[str] = command.split() if isinstance(command, str) else list(command)

    def _argv(self, args: Sequence[str]) -> list[str]:
        if not self.command:
            raise DownloadError("Invalid yt-dlp command")
        return [*self.command, *args]

    async def check_dependencies(self) -> None:
        """Raise DownloadError when the downloader command cannot be started."""
        try:
            await self.run(["--version"])
        except DownloadError as exc:
            raise DownloadError(
                "yt-dlp not found. Please install yt-dlp using one of these methods:\n"
                "1. pip install yt-dlp\n"
                "2. pip3 install yt-dlp\n"
                "3. py -m pip install yt-dlp"
            ) from exc

    async def run(self, args: Sequence[str]) -> subprocess.CompletedProcess[bytes]:
        """Run the downloader with *args* and capture its output."""
        argv = self._argv(args)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise DownloadError(f"Failed to execute yt-dlp: {exc}") from exc
        stdout, stderr = await process.communicate()
        return subprocess.CompletedProcess(argv, process.returncode or 0, stdout, stderr)

    async def get_video_info(self, url: str) -> VideoInfo:
        """Fetch metadata for one video, trying several client strategies in turn."""
        total = len(_INFO_STRATEGIES)
        for number, strategy in enumerate(_INFO_STRATEGIES, start=1):
            logger.info("Trying video info strategy %d of %d", number, total)
            try:
                result = await self.run([*strategy, url])
            except DownloadError as exc:
                logger.warning("Strategy %d error: %s", number, exc)
                continue
            if result.returncode == 0:
                logger.info("Successfully got video info with strategy %d", number)
                return parse_video_info(result.stdout)
            logger.warning("Strategy %d failed: %s", number, _text(result.stderr))
            if number < total:
                await asyncio.sleep(self.strategy_delay)
        raise DownloadError("All video info strategies failed. YouTube may be blocking requests.")

    async def get_playlist_info(self, url: str) -> PlaylistInfo:
        """Fetch the flat listing of a playlist."""
        result = await self.run(
            ["--dump-json", "--flat-playlist", "--no-download", *_METADATA_ARGS, url]
        )
        if result.returncode != 0:
            raise DownloadError(f"Failed to get playlist info: {_text(result.stderr)}")
        return parse_playlist_info(result.stdout)

    async def get_available_formats(self, url: str) -> list[FormatInfo]:
        """Fetch the formats offered for a video."""
        result = await self.run(
            ["--list-formats", "--dump-json", "--no-download", *_METADATA_ARGS, url]
        )
        if result.returncode != 0:
            raise DownloadError(f"Failed to get formats: {_text(result.stderr)}")
        return parse_formats(result.stdout)

    @staticmethod
    def _prepare_dir(output_dir: str) -> Path:
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        try:
            return Path(output_dir).resolve(strict=True)
        except OSError as exc:
            raise DownloadError(f"Failed to resolve output directory: {exc}") from exc

    async def download_video(self, options: ConversionOptions) -> str:
        """Download a single video into ``options.output_dir`` and return the file's path."""
        output_dir = self._prepare_dir(options.output_dir)
        selector = format_selector(options.format, options.quality)
        pattern = f"{str(output_dir).replace(chr(92), '/')}/%(title).50s.%(ext)s"
        logger.info("Executing yt-dlp download")
        result = await self.run(
            [
                "--format", selector,
                "--output", pattern,
                "--no-playlist",
                "--user-agent", DESKTOP_AGENT,
                "--extractor-retries", "5",
                "--geo-bypass",
                "--ignore-errors",
                options.url,
            ]
        )
        if result.returncode != 0:
            raise DownloadError(
                f"Download failed.\nStderr: {_text(result.stderr)}\nStdout: {_text(result.stdout)}"
            )
        return find_newest_file(output_dir)

    async def download_playlist(self, options: ConversionOptions) -> list[str]:
        """Download every item of a playlist and return the sorted media file paths."""
        output_dir = self._prepare_dir(options.output_dir)
        pattern = (
            f"{str(output_dir).replace(chr(92), '/')}/%(playlist_index)02d - %(title).50s.%(ext)s"
        )
        if self.hosted:
            return await self._download_playlist_simple(options, output_dir, pattern)

        info_args = [
            "--dump-json", "--flat-playlist", "--playlist-end", "1",
            *_BOT_BYPASS_ARGS, options.url,
        ]
        logger.info("Getting playlist info with args: %s", info_args)
        info = await self.run(info_args)
        if info.returncode != 0:
            raise DownloadError(f"Failed to get playlist info: {_text(info.stderr)}")
        approx = sum(
            1
            for line in _text(info.stdout).splitlines()
            if '"_type": "url"' in line or '"id":' in line
        )
        logger.info("Playlist contains approximately %d videos", approx)

        selector = format_selector(options.format, options.quality)
        extra = ["--no-post-overwrites"] if options.format == "mp3" else []
        args = [
            "--format", selector,
            "--output", pattern,
            "--yes-playlist",
            *extra,
            "--ignore-errors",
            "--no-abort-on-error",
            *_BOT_BYPASS_ARGS,
            options.url,
        ]
        logger.info("Executing yt-dlp playlist download with args: %s", args)
        returncode, stdout, stderr = await self._stream(args)
        if returncode != 0:
            out_text, err_text = _text(stdout), _text(stderr)
            if any(marker in out_text for marker in _PARTIAL_MARKERS):
                logger.warning("Playlist download completed with some errors: %s", err_text)
            else:
                raise DownloadError(
                    f"Playlist download failed.\nStderr: {err_text}\nStdout: {out_text}"
                )
        files = find_media_files(output_dir, options.format)
        logger.info("Successfully downloaded %d files from playlist", len(files))
        return files

    async def _stream(self, args: Sequence[str]) -> tuple[int, bytes, bytes]:
        argv = self._argv(args)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=2**20,
            )
        except OSError as exc:
            raise DownloadError(f"Failed to spawn yt-dlp process: {exc}") from exc
        assert process.stdout is not None and process.stderr is not None
        stdout, stderr = await asyncio.gather(
            _collect(process.stdout, _log_progress),
            _collect(process.stderr, _log_stderr),
        )
        returncode = await process.wait()
        return returncode, stdout, stderr

    async def _download_playlist_simple(
        self, options: ConversionOptions, output_dir: Path, pattern: str
    ) -> list[str]:
        selector = format_selector(options.format, options.quality)
        logger.info("Executing simplified yt-dlp playlist command for hosting")
        result = await self.run(
            [
                "--format", selector,
                "--output", pattern,
                "--yes-playlist",
                "--user-agent", DESKTOP_AGENT,
                "--extractor-retries", "3",
                "--geo-bypass",
                "--ignore-errors",
                "--no-abort-on-error",
                options.url,
            ]
        )
        if result.returncode != 0:
            raise DownloadError(
                "Playlist download failed.\n"
                f"Stderr: {_text(result.stderr)}\nStdout: {_text(result.stdout)}"
            )
        files = find_media_files(output_dir, options.format)
        logger.info("Successfully downloaded %d files from playlist", len(files))
        return files