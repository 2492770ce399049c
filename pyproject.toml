[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tubeconv"
version = "0.1.0"
description = "HTTP and WebSocket service that downloads videos and playlists with yt-dlp and serves the resulting files"
requires-python = ">=3.10"
keywords = ["yt-dlp", "video", "audio", "playlist", "downloader", "aiohttp", "websocket"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Multimedia :: Video",
]
dependencies = [
    "aiohttp>=3.9",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
]

[project.scripts]
tubeconv = "tubeconv.app:main"

[tool.hatch.build.targets.wheel]
packages = ["tubeconv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
