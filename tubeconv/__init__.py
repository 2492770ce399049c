"""Web service that downloads videos and playlists with yt-dlp and serves the files."""

__version__ = "0.1.0"