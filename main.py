"""
Main entry point for the Video Downloader service.

This script initializes the configuration, sets up logging, wires the job
pipeline together, and serves the HTTP API until interrupted.
"""

import sys
import logging
import asyncio
from types import TracebackType
from typing import Type

from aiohttp import web

from video_downloader._version import __version__
from video_downloader.config import ConfigManager, Settings
from video_downloader.constants import CONFIG_FILE, JOB_LOG_DIR
from video_downloader.controller import JobController
from video_downloader.dependencies import DependencyManager
from video_downloader.downloads import DownloadManager
from video_downloader.job_list import JobListFile
from video_downloader.logging_config import setup_logging
from video_downloader.store import JobStore
from video_downloader.transcoder import FFmpegRemuxer
from video_downloader.url_extractor import URLInfoExtractor

def handle_exception(exc_type: Type[BaseException], exc_value: BaseException, exc_traceback: TracebackType):
    """Logs unhandled exceptions from synchronous code."""
    logger = logging.getLogger()
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logger.critical("Unhandled exception:", exc_info=(exc_type, exc_value, exc_traceback))

def handle_async_exception(loop, context):
    """Logs unhandled exceptions from asyncio tasks."""
    logger = logging.getLogger()
    msg = context.get("exception", context["message"])
    logger.critical(f"Caught exception from asyncio task: {msg}")


async def serve(config: Settings):
    """Builds the pipeline from the configuration and serves it until cancelled."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(handle_async_exception)

    dep_manager = DependencyManager(config.yt_dlp_path, config.ffmpeg_path)
    await dep_manager.initialize()

    store = JobStore(JobListFile(config.job_list_path))
    manager = DownloadManager(
        store,
        URLInfoExtractor(dep_manager.yt_dlp_path, dep_manager.ffmpeg_path),
        FFmpegRemuxer(dep_manager.ffmpeg_path),
        work_dir=config.work_directory,
        save_dir=config.save_directory,
        format_selector=config.format_selector,
        target_container=config.target_container,
        delete_wait_timeout=config.delete_wait_timeout,
        job_log_dir=JOB_LOG_DIR,
    )
    await manager.initialize()

    runner = web.AppRunner(JobController(manager).create_app())
    await runner.setup()
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    logging.info(f"Video Downloader {__version__} listening on http://{config.host}:{config.port}")
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()


if __name__ == "__main__":
    """
    Main entry point for the application.
    """
    # 1. Load configuration before setting up logging
    config_manager = ConfigManager(CONFIG_FILE)
    config = config_manager.load()

    # 2. Use the configured log level for file logging
    setup_logging(config.log_level)

    # 3. Set up global exception handlers
    sys.excepthook = handle_exception

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logging.info("Application interrupted by user.")
