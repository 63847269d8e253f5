"""Helpers for starting and stopping the yt-dlp and ffmpeg child processes."""
import os
import sys
import signal
import asyncio
import logging
import subprocess
from typing import Any, Dict

from .constants import SUBPROCESS_CREATION_FLAGS, PROCESS_SHUTDOWN_TIMEOUT

logger = logging.getLogger(__name__)


def process_group_kwargs() -> Dict[str, Any]:
    """Keyword arguments that start a subprocess in its own process group."""
    kwargs: Dict[str, Any] = {}
    if sys.platform == 'win32':
        kwargs['creationflags'] = SUBPROCESS_CREATION_FLAGS | subprocess.CREATE_NEW_PROCESS_GROUP
    else:
        kwargs['start_new_session'] = True
    return kwargs


async def terminate_process(process: asyncio.subprocess.Process, name: str, timeout: float = PROCESS_SHUTDOWN_TIMEOUT):
    """
    Asks a process group to stop, then kills it if it does not exit in time.

    Args:
        process: A process started with `process_group_kwargs()`.
        name: Used in log messages.
        timeout: Seconds to wait for a graceful exit.
    """
    if process.returncode is not None:
        return
    logger.info(f"Terminating {name} (PID: {process.pid})...")
    try:
        if sys.platform == 'win32':
            process.send_signal(signal.CTRL_BREAK_EVENT)
        else:
            os.killpg(os.getpgid(process.pid), signal.SIGINT)
        await asyncio.wait_for(process.wait(), timeout=timeout)
    except (asyncio.TimeoutError, ProcessLookupError, OSError) as e:
        logger.warning(f"Graceful shutdown for {name} failed: {e}. Forcing termination...")
        try: process.kill()
        except (ProcessLookupError, OSError): pass # Already gone
