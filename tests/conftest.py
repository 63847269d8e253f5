"""
Shared pytest fixtures for the video downloader test suite.

The resolver and transcoder fakes stand in for yt-dlp and ffmpeg: they honor
the same call signatures and the cancellation contract, but only touch the
local file system.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from video_downloader.downloads import DownloadManager
from video_downloader.exceptions import URLExtractionError
from video_downloader.job_list import JobListFile
from video_downloader.store import JobStore

SAMPLE_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


class FakeResolver:
    """Pretends to be yt-dlp."""

    def __init__(self, metadata: Optional[Dict[str, Any]] = None, error: Optional[URLExtractionError] = None,
                 file_name: str = "Test Video.webm", content: bytes = b"video-bytes",
                 download_error: Optional[Exception] = None, block: bool = False):
        self.metadata = metadata if metadata is not None else {'id': 'dQw4w9WgXcQ', 'title': 'Test Video'}
        self.error = error
        self.file_name = file_name
        self.content = content
        self.download_error = download_error
        self.block = block
        self.download_started = asyncio.Event()
        self.verified: List[str] = []
        self.downloads: List[Dict[str, Any]] = []

    async def fetch_metadata(self, url: str) -> Dict[str, Any]:
        self.verified.append(url)
        if self.error is not None:
            raise self.error
        return dict(self.metadata)

    async def download(self, url, format_selector, output_dir: Path, progress_callback=None, cancellation=None,
                       log_path=None):
        self.downloads.append({'url': url, 'format_selector': format_selector, 'output_dir': output_dir,
                               'log_path': log_path})
        self.download_started.set()
        if self.block:
            forever = asyncio.Event().wait()
            if cancellation is not None:
                await cancellation.run(forever)
            else:
                await forever
        if self.download_error is not None:
            raise self.download_error
        for fraction in (0.25, 0.5, 1.0):
            if progress_callback:
                progress_callback(fraction)
        (output_dir / self.file_name).write_bytes(self.content)


class FakeTranscoder:
    """Pretends to be ffmpeg: copies the bytes into the new container name."""

    def __init__(self):
        self.calls: List[Dict[str, Path]] = []

    async def remux(self, input_path: Path, output_path: Path, progress_callback=None, cancellation=None):
        self.calls.append({'input': input_path, 'output': output_path})
        output_path.write_bytes(input_path.read_bytes())
        if progress_callback:
            progress_callback(50.0)
            progress_callback(100.0)


@pytest.fixture
def sample_url() -> str:
    return SAMPLE_URL


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def save_dir(tmp_path: Path) -> Path:
    path = tmp_path / "save"
    path.mkdir()
    return path


@pytest.fixture
def job_list_path(tmp_path: Path) -> Path:
    return tmp_path / "job_list.json"


@pytest.fixture
def store(job_list_path: Path) -> JobStore:
    return JobStore(JobListFile(job_list_path))


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def manager(store, resolver, transcoder, work_dir, save_dir) -> DownloadManager:
    return DownloadManager(store, resolver, transcoder, work_dir=work_dir, save_dir=save_dir)
