# tubeconv

A small aiohttp web service that downloads videos and playlists by running
the yt-dlp command line tool, keeps track of each download as a task, and
hands the finished files back over HTTP. Task progress is pushed to
connected clients over a WebSocket.

yt-dlp must be installed separately. At start-up the first of `yt-dlp`,
`yt-dlp.exe`, `python -m yt_dlp`, `python3 -m yt_dlp` and `py -m yt_dlp`
that answers `--version` is used; if none does, `yt-dlp` is assumed.

## Installing

    pip install .

For the tests:

    pip install ".[test]"
    pytest

## Running

    tubeconv

The command takes no options besides `--help`. By default the server listens
on `127.0.0.1:3001`. These environment variables change its behaviour:

| Variable        | Meaning                                                        | Default       |
|-----------------|----------------------------------------------------------------|---------------|
| `PORT`          | Port to listen on; an invalid value falls back to the default  | `3001`        |
| `HOST`          | `0.0.0.0` listens on all interfaces; any other value is local  | `127.0.0.1`   |
| `DOWNLOADS_DIR` | Folder for downloads, created if missing                       | `./downloads` |
| `RENDER`        | When set, yt-dlp is called as `yt-dlp` and playlists are fetched in a single simplified run | unset |

Files under `./dist` are served as the frontend. A path that is not a file
there falls back to `./dist/index.html`, or a 404 if that is missing too.

Every response carries a fixed set of security headers
(`Strict-Transport-Security`, `X-Content-Type-Options`, `X-Frame-Options`,
`X-XSS-Protection`, `Referrer-Policy`, `Content-Security-Policy`) and
`Access-Control-Allow-Origin: *`. CORS preflight requests are answered
directly.

## API

| Method | Path                                    | Purpose                                              |
|--------|-----------------------------------------|------------------------------------------------------|
| GET    | `/health`, `/api/health`                | Liveness check                                       |
| GET    | `/api/dependencies`                     | Whether yt-dlp can be started                        |
| POST   | `/api/info`                             | Title, duration, thumbnail and channel of a link     |
| POST   | `/api/quality`                          | Available formats of a video                         |
| POST   | `/api/convert`                          | Start a single video download                        |
| POST   | `/api/playlist`                         | Start a playlist download                            |
| GET    | `/api/tasks`                            | All tasks                                            |
| GET    | `/api/tasks/{id}`                       | One task                                             |
| DELETE | `/api/tasks/{id}`                       | Mark a task as cancelled                             |
| GET    | `/api/download/{id}`                    | The finished file of a task                          |
| GET    | `/api/download/{task_id}/{file_index}`  | One file of a playlist task, counted from 0          |
| GET    | `/ws`                                   | WebSocket stream of task updates                     |

`/api/info` and `/api/quality` take `{"url": "..."}`. A link containing
`playlist?list=` is described as a playlist, its duration given as the
number of videos. When the formats cannot be read, `/api/quality` answers
with two default MP4 options (720p and 1080p).

`/api/convert` and `/api/playlist` take:

```json
{"url": "<video or playlist link>", "format": "mp4", "quality": "720p"}
```

`output_path` may be given but is not used. They answer at once with the new
task; the download runs in the background. Supported formats are `mp3`,
`wav`, `mp4` and `webm`. For `mp4` and `webm` the quality (`1080p`, `720p`,
`480p`, `360p`, with `1080p60` and `720p60` accepted) caps the frame height,
anything else meaning 720. Audio formats are fetched in the best audio
container offered, without re-encoding, so the file may end in `.m4a` or
`.webm`.

A task's `status` is one of `pending`, `processing`, `completed`,
`cancelled`, `failed: <message>` or, for a playlist that finished with some
errors, `completed_with_errors: <message>`. A single download is stored
under `DOWNLOADS_DIR/<task id>/`, a playlist under
`DOWNLOADS_DIR/playlist_<task id>/`.

On the WebSocket, the text `ping` is answered with `pong`. Every task
change arrives as a JSON object with `task_id`, `status`, `progress`,
`speed` and `eta`; `status` is `"Converting"`, `"Completed"` and so on,
or `{"Failed": "<message>"}`.

## Using it from Python

```python
from aiohttp import web

from tubeconv.app import create_app
from tubeconv.state import AppState


async def build():
    state = await AppState.create(downloads_dir="./downloads")
    return create_app(state, static_dir="./dist")


web.run_app(build())
```

Other parts that can be used on their own:

- `tubeconv.downloader.YouTubeDownloader` runs yt-dlp asynchronously:
  `get_video_info`, `get_playlist_info`, `get_available_formats`,
  `download_video` and `download_playlist`. Failures raise
  `tubeconv.media.DownloadError`.
- `tubeconv.media` parses yt-dlp's JSON output (`parse_video_info`,
  `parse_playlist_info`, `parse_formats`) and builds format selectors
  (`format_selector`, `quality_height`).
- `tubeconv.validation` has `validate_youtube_url`, `validate_format`,
  `validate_quality`, `sanitize_filename` and `sanitize_html`. The
  validators raise `ValidationError`.
- `tubeconv.state.UpdateBus` is a bounded fan-out of task updates; a
  subscriber that falls behind gets a `Lagged` error once and then resumes.

## What it does not do

- Tasks live in memory only and are lost when the server stops.
- Cancelling a task only changes its status; a download already running
  is not stopped.
- The progress figures sent while a download runs are estimated on a timer,
  not read from yt-dlp.
- The API handlers do not apply the checks in `tubeconv.validation`, and
  there is no authentication.