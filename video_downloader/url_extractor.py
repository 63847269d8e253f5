"""
Provides methods to extract information from URLs and download media using yt-dlp.
"""

import re
import sys
import json
import asyncio
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiofiles

from .cancellation import CancellationToken
from .constants import SUBPROCESS_CREATION_FLAGS, OUTPUT_FILE_TEMPLATE, VERIFY_TIMEOUT
from .exceptions import URLExtractionError, DownloadCancelledError
from .process_utils import process_group_kwargs, terminate_process

ProgressCallback = Callable[[float], None]

_PROGRESS_PREFIX = 'PROGRESS::'
_PERCENT_RE = re.compile(r'(\d+\.?\d*)%')


def parse_progress_line(line: str) -> Optional[float]:
    """
    Extracts a download percentage from one line of yt-dlp output.

    Args:
        line: A stripped line of stdout.

    Returns:
        The percentage in [0, 100], or None if the line carries no progress.
    """
    if line.startswith(_PROGRESS_PREFIX):
        try: return float(line.split('::', 1)[1].strip().rstrip('%'))
        except (IndexError, ValueError): return None
    if '[download]' in line and (match := _PERCENT_RE.search(line)):
        try: return float(match.group(1))
        except ValueError: return None
    return None


class URLInfoExtractor:
    """
    Resolves URLs and fetches media by running yt-dlp as a subprocess.
    """
    def __init__(self, yt_dlp_path: Optional[Path], ffmpeg_path: Optional[Path] = None):
        """
        Initializes the URLInfoExtractor.

        Args:
            yt_dlp_path: The path to the yt-dlp executable.
            ffmpeg_path: The path to ffmpeg, handed to yt-dlp for merging formats.
        """
        self.yt_dlp_path = yt_dlp_path
        self.ffmpeg_path = ffmpeg_path
        self.logger = logging.getLogger(__name__)

    def _parse_yt_dlp_error(self, stderr: str) -> str:
        """
        Parses stderr from yt-dlp to find a concise error message.

        Args:
            stderr: The standard error string from the yt-dlp process.

        Returns:
            A concise error message, or the last line of stderr as a fallback.
        """
        if not stderr.strip():
            return "yt-dlp returned an error with no output."

        for line in stderr.strip().splitlines():
            if line.lower().startswith('error:'):
                error_msg = line[6:].strip()
                return error_msg[:200] + "..." if len(error_msg) > 200 else error_msg

        return stderr.strip().splitlines()[-1]

    async def _run_command(self, command: List[str], timeout: int) -> Tuple[str, str]:
        """
        A robust wrapper for running a yt-dlp command.

        Args:
            command: The command and its arguments as a list of strings.
            timeout: The timeout in seconds for the command.

        Returns:
            A tuple of (stdout, stderr) on success.

        Raises:
            URLExtractionError: On any failure (e.g., timeout, non-zero exit code).
            DownloadCancelledError: If the task is cancelled.
        """
        kwargs = {}
        if sys.platform == 'win32':
            kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

        process = None
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **kwargs
            )
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
            stdout = stdout_bytes.decode('utf-8', 'replace')
            stderr = stderr_bytes.decode('utf-8', 'replace')

        except FileNotFoundError:
            self.logger.error(f"yt-dlp executable not found at: {self.yt_dlp_path}")
            raise URLExtractionError("yt-dlp executable not found.")
        except asyncio.TimeoutError:
            if process: process.kill()
            self.logger.error(f"yt-dlp command timed out: {' '.join(command)}")
            raise URLExtractionError("URL processing command timed out.")
        except OSError as e:
            self.logger.error(f"OS error running yt-dlp: {e}")
            raise URLExtractionError(f"OS error: {e}")
        except ValueError as e:
            # e.g. a NUL byte in the URL, rejected before yt-dlp starts
            self.logger.error(f"Invalid yt-dlp arguments: {e}")
            raise URLExtractionError(f"Invalid arguments: {e}")
        except asyncio.CancelledError:
             if process: process.kill()
             raise DownloadCancelledError("URL processing cancelled.")

        if process.returncode != 0:
            error_msg = self._parse_yt_dlp_error(stderr)
            self.logger.error(f"yt-dlp command failed for '{command[-1]}'. Stderr: {stderr.strip()}")
            raise URLExtractionError(error_msg, stderr)

        return stdout, stderr

    async def fetch_metadata(self, url: str) -> Dict[str, Any]:
        """
        Retrieves the metadata of a URL without downloading anything.

        Playlists are only listed flat, so the result carries an `entries`
        key instead of every item's full metadata.

        Args:
            url: The URL to check.

        Returns:
            The yt-dlp info dictionary.

        Raises:
            DownloadCancelledError: If the task is cancelled.
            URLExtractionError: If the yt-dlp command fails; `error_output` holds its stderr.
        """
        if not self.yt_dlp_path:
            raise URLExtractionError("yt-dlp executable not found.")
        command = [str(self.yt_dlp_path), '--dump-single-json', '--flat-playlist', '--no-warnings', url]
        stdout, _ = await self._run_command(command, timeout=VERIFY_TIMEOUT)
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise URLExtractionError(f"Could not parse yt-dlp output: {e}")
        if not isinstance(data, dict):
            raise URLExtractionError("yt-dlp returned unexpected metadata.")
        return data

    def _build_download_command(self, url: str, format_selector: str, output_dir: Path) -> List[str]:
        """Builds the full yt-dlp download command."""
        assert self.yt_dlp_path is not None
        command = [
            str(self.yt_dlp_path), '--newline', '--no-playlist', '--no-mtime',
            '--progress-template', f'{_PROGRESS_PREFIX}%(progress._percent_str)s',
            '-f', format_selector,
            '-o', str(output_dir / OUTPUT_FILE_TEMPLATE),
        ]
        if self.ffmpeg_path: command.extend(['--ffmpeg-location', str(self.ffmpeg_path.parent)])
        command.append(url)
        return command

    async def download(self, url: str, format_selector: str, output_dir: Path,
                       progress_callback: Optional[ProgressCallback] = None,
                       cancellation: Optional[CancellationToken] = None,
                       log_path: Optional[Path] = None):
        """
        Downloads the media behind `url` into `output_dir`.

        Args:
            url: The URL to download.
            format_selector: A yt-dlp format selection expression.
            output_dir: Directory that receives exactly one media file.
            progress_callback: Receives the download fraction in [0, 1].
            cancellation: Stops the yt-dlp process when cancelled.
            log_path: If set, receives everything yt-dlp prints for this download.

        Raises:
            URLExtractionError: If yt-dlp cannot be started or exits with an error.
            DownloadCancelledError: If the download was cancelled.
        """
        coro = self._download(url, format_selector, output_dir, progress_callback, log_path)
        if cancellation is not None:
            return await cancellation.run(coro)
        return await coro

    async def _download(self, url: str, format_selector: str, output_dir: Path,
                        progress_callback: Optional[ProgressCallback], log_path: Optional[Path] = None):
        if not self.yt_dlp_path:
            raise URLExtractionError("yt-dlp executable not found.")
        command = self._build_download_command(url, format_selector, output_dir)
        name = f"yt-dlp download of {url}"

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                **process_group_kwargs()
            )
        except FileNotFoundError:
            raise URLExtractionError("yt-dlp executable not found.")
        except OSError as e:
            raise URLExtractionError(f"OS error: {e}")
        except ValueError as e:
            raise URLExtractionError(f"Invalid arguments: {e}")

        assert process.stdout is not None and process.stderr is not None
        stderr_task = asyncio.ensure_future(process.stderr.read())
        error_message = None
        log_file = None
        try:
            if log_path is not None:
                await asyncio.to_thread(log_path.parent.mkdir, parents=True, exist_ok=True)
                log_file = await aiofiles.open(log_path, 'a', encoding='utf-8')
                await log_file.write(f"{' '.join(command)}\n")

            while True:
                line_bytes = await process.stdout.readline()
                if not line_bytes: break
                clean_line = line_bytes.decode('utf-8', 'replace').strip()
                self.logger.debug(f"[{output_dir.name}] {clean_line}")
                if log_file is not None: await log_file.write(clean_line + '\n')

                if clean_line.startswith('ERROR:'): error_message = clean_line[6:].strip()
                percentage = parse_progress_line(clean_line)
                if percentage is not None and progress_callback:
                    progress_callback(percentage / 100)

            return_code = await process.wait()
            stderr = (await stderr_task).decode('utf-8', 'replace')
            if log_file is not None and stderr: await log_file.write(stderr)
        except BaseException:
            # Cancelled, or the log could not be written: yt-dlp must not outlive the job.
            stderr_task.cancel()
            await terminate_process(process, name)
            raise
        finally:
            if log_file is not None: await log_file.close()

        if return_code != 0:
            error_message = error_message or self._parse_yt_dlp_error(stderr)
            self.logger.error(f"yt-dlp download failed for '{url}' (exit code {return_code}): {error_message}")
            raise URLExtractionError(error_message, stderr)
        self.logger.info(f"Download of {url} completed.")
