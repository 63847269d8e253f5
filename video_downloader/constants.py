"""
Defines application-wide constants, paths, and utility functions.

This module centralizes configuration for paths, media defaults, and subprocess
behavior, adapting to whether the application is running from source or as a
frozen executable.
"""

import sys
import tempfile
import subprocess
from pathlib import Path

# --- Application Path and Configuration Setup ---
if getattr(sys, 'frozen', False):
    # If the application is run as a bundle, the PyInstaller bootloader
    # sets the app path to the executable's directory.
    APP_PATH = Path(sys.executable).parent
else:
    # In development, the app path is the project root (parent of the package).
    APP_PATH = Path(__file__).resolve().parent.parent

# Use a user-specific directory for configuration to avoid permission issues.
USER_DATA_DIR: Path = Path.home() / '.video-downloader'
CONFIG_FILE: Path = USER_DATA_DIR / 'config.json'
LOG_DIR: Path = USER_DATA_DIR / 'logs'
JOB_LOG_DIR: Path = LOG_DIR / 'jobs'
JOB_LIST_FILE: Path = USER_DATA_DIR / 'job_list.json'
DEFAULT_WORK_DIR: Path = Path(tempfile.gettempdir()) / 'VideoDownloader'
DEFAULT_SAVE_DIR: Path = Path.home() / 'Videos' / 'VideoDownloader'

# Centralize subprocess creation flags to avoid console windows on Windows.
SUBPROCESS_CREATION_FLAGS = subprocess.CREATE_NO_WINDOW if sys.platform == 'win32' else 0

# --- Media Defaults ---
# Prefer the TV_Ton audio track where a site offers one, then any best pair.
DEFAULT_FORMAT_SELECTOR = 'bestvideo+bestaudio[format_id*=TV_Ton]/bestvideo+bestaudio/best'
OUTPUT_FILE_TEMPLATE = '%(title)s.%(ext)s'
DEFAULT_TARGET_CONTAINER = 'mkv'
SUPPORTED_CONTAINERS = ('mkv', 'mp4', 'mov', 'webm')

# --- Timeouts (seconds) ---
VERIFY_TIMEOUT = 60
DELETE_WAIT_TIMEOUT = 60
PROCESS_SHUTDOWN_TIMEOUT = 10

COPY_CHUNK_SIZE = 1024 * 1024
