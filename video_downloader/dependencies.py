"""Locates the yt-dlp and FFmpeg executables the pipeline depends on."""
import sys
import shutil
import asyncio
import logging
from pathlib import Path
from typing import Optional, List

from .constants import APP_PATH, SUBPROCESS_CREATION_FLAGS


class DependencyManager:
    """Manages the discovery and version reporting of yt-dlp and FFmpeg."""

    def __init__(self, yt_dlp_override: Optional[Path] = None, ffmpeg_override: Optional[Path] = None):
        """
        Initializes the DependencyManager.

        Args:
            yt_dlp_override: Explicit yt-dlp path that takes precedence over discovery.
            ffmpeg_override: Explicit ffmpeg path that takes precedence over discovery.
        """
        self.logger = logging.getLogger(__name__)
        self.yt_dlp_override = yt_dlp_override
        self.ffmpeg_override = ffmpeg_override
        self.yt_dlp_path: Optional[Path] = None
        self.ffmpeg_path: Optional[Path] = None

    async def initialize(self):
        """Asynchronously finds paths to dependencies to avoid blocking the event loop."""
        self.logger.info("Initializing dependency paths...")
        self.yt_dlp_path, self.ffmpeg_path = await asyncio.gather(
            asyncio.to_thread(self.find_yt_dlp),
            asyncio.to_thread(self.find_ffmpeg)
        )
        self.logger.info(f"yt-dlp path: {self.yt_dlp_path} ({await self.get_version(self.yt_dlp_path)})")
        self.logger.info(f"FFmpeg path: {self.ffmpeg_path} ({await self.get_version(self.ffmpeg_path)})")
        if not self.yt_dlp_path:
            self.logger.error("yt-dlp was not found. Every submitted URL will fail verification.")
        if not self.ffmpeg_path:
            self.logger.warning("FFmpeg was not found. Merging formats and remuxing will fail.")

    def find_yt_dlp(self) -> Optional[Path]:
        """Finds the yt-dlp executable."""
        self.yt_dlp_path = self._find_executable('yt-dlp', self.yt_dlp_override)
        return self.yt_dlp_path

    def find_ffmpeg(self) -> Optional[Path]:
        """Finds the ffmpeg executable."""
        self.ffmpeg_path = self._find_executable('ffmpeg', self.ffmpeg_override)
        return self.ffmpeg_path

    def _find_executable(self, name: str, override: Optional[Path] = None) -> Optional[Path]:
        """Finds an executable, preferring a configured path, then a locally managed one."""
        if override is not None:
            if override.exists():
                return override
            self.logger.warning(f"Configured {name} path {override} does not exist. Searching instead.")
        local_path = APP_PATH / (f'{name}.exe' if sys.platform == 'win32' else name)
        if local_path.exists():
            return local_path
        path_in_system = shutil.which(name)
        return Path(path_in_system) if path_in_system else None

    async def get_version(self, executable_path: Optional[Path]) -> str:
        """Asynchronously returns the version of an executable by running it with '--version'."""
        if not executable_path or not executable_path.exists():
            return "Not found"
        try:
            command: List[str] = [str(executable_path)]
            if 'ffmpeg' in executable_path.name.lower():
                command.append('-version')
            else:
                command.append('--version')

            kwargs = {'stdout': asyncio.subprocess.PIPE, 'stderr': asyncio.subprocess.PIPE}
            if sys.platform == 'win32':
                kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS

            process = await asyncio.create_subprocess_exec(*command, **kwargs)
            stdout_bytes, _ = await asyncio.wait_for(process.communicate(), timeout=15)

            if process.returncode != 0:
                return "Cannot execute"

            return stdout_bytes.decode('utf-8', 'replace').strip().split('\n')[0]
        except FileNotFoundError:
            return "Not found or no permission"
        except asyncio.TimeoutError:
            return "Version check timed out"
        except OSError:
            return "Cannot execute"
