"""
Reads and writes the durable list of finished jobs.

The file is a JSON array of `JobRecord` objects. It is always rewritten as a
whole: the new content goes to a temporary sibling first and then replaces the
old file, so readers never see a half-written list.
"""

import os
import json
import time
import asyncio
import logging
from pathlib import Path
from typing import List, Sequence

import aiofiles
from pydantic import TypeAdapter, ValidationError

from .jobs import JobRecord

_RECORDS_ADAPTER = TypeAdapter(List[JobRecord])


class JobListFile:
    """Handles loading and saving the finished-job snapshot."""

    def __init__(self, path: Path):
        """
        Initializes the JobListFile.

        Args:
            path: Location of the snapshot file.
        """
        self.path = path
        self.logger = logging.getLogger(__name__)

    def load(self) -> List[JobRecord]:
        """
        Loads the snapshot.

        A missing file yields an empty list. A corrupt file is backed up and
        also yields an empty list.

        Returns:
            The validated records.
        """
        if not self.path.exists():
            self.logger.info(f"No job list found at {self.path}. Starting with an empty list.")
            return []

        try:
            data = json.loads(self.path.read_text(encoding='utf-8'))
            records = _RECORDS_ADAPTER.validate_python(data)
        except (ValidationError, json.JSONDecodeError, IOError) as e:
            self.logger.error(f"Error loading {self.path}: {e}. Backing up and starting empty.")
            try:
                backup_path = self.path.with_suffix(f".{int(time.time())}.bak")
                self.path.rename(backup_path)
                self.logger.info(f"Backed up corrupted job list to {backup_path}")
            except IOError as backup_e:
                self.logger.error(f"Could not back up corrupted job list: {backup_e}")
            return []

        self.logger.info(f"Loaded {len(records)} finished job(s) from {self.path}")
        return records

    async def save(self, records: Sequence[JobRecord]):
        """Replaces the snapshot with `records`. Callers serialize concurrent saves."""
        payload = _RECORDS_ADAPTER.dump_json(list(records), indent=4)
        temp_path = self.path.with_name(self.path.name + '.tmp')
        await asyncio.to_thread(self.path.parent.mkdir, parents=True, exist_ok=True)
        async with aiofiles.open(temp_path, 'wb') as f:
            await f.write(payload)
        await asyncio.to_thread(os.replace, temp_path, self.path)
        self.logger.debug(f"Wrote {len(records)} finished job(s) to {self.path}")
