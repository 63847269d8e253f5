"""Chunked asynchronous file copy used to move finished files to the save directory."""
import os
import asyncio
import logging
from pathlib import Path

import aiofiles

from .constants import COPY_CHUNK_SIZE

logger = logging.getLogger(__name__)


async def copy_file(source: Path, destination: Path, chunk_size: int = COPY_CHUNK_SIZE) -> int:
    """
    Copies `source` to `destination` one chunk at a time.

    The data goes to a `.part` sibling first and only replaces `destination`
    once the copy is complete, so an existing destination is never truncated.
    Every chunk is an await point, so cancelling the calling task stops the
    copy mid-transfer; the partial sibling is then removed.

    Args:
        source: The file to copy.
        destination: The target path.
        chunk_size: Bytes read per iteration.

    Returns:
        The number of bytes copied.
    """
    temp_path = destination.with_name(destination.name + '.part')
    copied = 0
    async with aiofiles.open(source, 'rb') as f_in:
        try:
            async with aiofiles.open(temp_path, 'wb') as f_out:
                while chunk := await f_in.read(chunk_size):
                    await f_out.write(chunk)
                    copied += len(chunk)
            await asyncio.to_thread(os.replace, temp_path, destination)
        except BaseException:
            logger.warning(f"Copy of {source.name} to {destination} interrupted after {copied} bytes.")
            try:
                await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            except OSError as e:
                logger.error(f"Could not remove partial file {temp_path}: {e}")
            raise
    logger.debug(f"Copied {copied} bytes from {source} to {destination}")
    return copied
