"""
Remuxes media files into another container with ffmpeg, without re-encoding.
"""

import re
import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional

from .cancellation import CancellationToken
from .exceptions import TranscodeError
from .process_utils import process_group_kwargs, terminate_process

ProgressCallback = Callable[[float], None]

_DURATION_RE = re.compile(r'Duration:\s*(\d+):(\d{2}):(\d{2}(?:\.\d+)?)')
_OUT_TIME_RE = re.compile(r'^out_time_(?:us|ms)=(\d+)$')


def parse_duration(line: str) -> Optional[float]:
    """Returns the input duration in seconds from an ffmpeg banner line, if present."""
    match = _DURATION_RE.search(line)
    if not match:
        return None
    hours, minutes, seconds = match.groups()
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


def parse_out_time(line: str) -> Optional[float]:
    """Returns the processed position in seconds from an ffmpeg `-progress` line."""
    # ffmpeg reports both keys in microseconds.
    match = _OUT_TIME_RE.match(line)
    return int(match.group(1)) / 1_000_000 if match else None


class FFmpegRemuxer:
    """Stream-copies a media file into a new container."""

    def __init__(self, ffmpeg_path: Optional[Path]):
        """
        Initializes the FFmpegRemuxer.

        Args:
            ffmpeg_path: The path to the ffmpeg executable.
        """
        self.ffmpeg_path = ffmpeg_path
        self.logger = logging.getLogger(__name__)

    def _build_command(self, input_path: Path, output_path: Path) -> List[str]:
        assert self.ffmpeg_path is not None
        return [
            str(self.ffmpeg_path), '-hide_banner', '-nostdin', '-y',
            '-i', str(input_path),
            '-map', '0', '-codec', 'copy',
            '-progress', 'pipe:2', '-nostats',
            str(output_path),
        ]

    async def remux(self, input_path: Path, output_path: Path,
                    progress_callback: Optional[ProgressCallback] = None,
                    cancellation: Optional[CancellationToken] = None):
        """
        Copies every stream of `input_path` into `output_path`'s container.

        Args:
            input_path: The source media file.
            output_path: The file to create; its extension picks the container.
            progress_callback: Receives the completed percentage in [0, 100].
            cancellation: Stops ffmpeg when cancelled.

        Raises:
            TranscodeError: If ffmpeg is missing or exits with an error.
            DownloadCancelledError: If the remux was cancelled.
        """
        if cancellation is not None:
            return await cancellation.run(self._remux(input_path, output_path, progress_callback))
        return await self._remux(input_path, output_path, progress_callback)

    async def _remux(self, input_path: Path, output_path: Path, progress_callback: Optional[ProgressCallback]):
        if not self.ffmpeg_path:
            raise TranscodeError("ffmpeg executable not found.")
        command = self._build_command(input_path, output_path)
        self.logger.info(f"Starting conversion of {input_path.name} to {output_path.name}.")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
                **process_group_kwargs()
            )
        except FileNotFoundError:
            raise TranscodeError(f"ffmpeg executable not found at: {self.ffmpeg_path}")
        except OSError as e:
            raise TranscodeError(f"OS error: {e}")

        assert process.stderr is not None
        duration: Optional[float] = None
        last_lines: List[str] = []
        try:
            while True:
                line_bytes = await process.stderr.readline()
                if not line_bytes: break
                clean_line = line_bytes.decode('utf-8', 'replace').strip()
                if not clean_line: continue

                if duration is None and (parsed := parse_duration(clean_line)):
                    duration = parsed
                elif (position := parse_out_time(clean_line)) is not None:
                    if duration and progress_callback:
                        progress_callback(min(100.0, position / duration * 100))
                elif '=' not in clean_line:
                    last_lines = (last_lines + [clean_line])[-5:]

            return_code = await process.wait()
        except asyncio.CancelledError:
            await terminate_process(process, f"ffmpeg remux of {input_path.name}")
            raise

        if return_code != 0:
            details = last_lines[-1] if last_lines else f"exit code {return_code}"
            self.logger.error(f"ffmpeg failed to remux {input_path.name}: {details}")
            raise TranscodeError(f"ffmpeg failed: {details}")
        if progress_callback:
            progress_callback(100.0)
        self.logger.info(f"Finished conversion of {input_path.name} to {output_path.name}.")
