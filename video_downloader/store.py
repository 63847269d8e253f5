"""
Thread-safe registry of every job known to the application.
"""

import asyncio
import logging
import threading
from typing import Dict, List

from .exceptions import DuplicateJobError, JobNotFoundError
from .job_list import JobListFile
from .jobs import DownloadJob, JobState


class JobStore:
    """
    Holds all jobs and keeps the finished-job snapshot in sync.

    Jobs are added and removed from request handlers while pipeline tasks
    mutate them, so every access to the mapping happens under one lock.
    """

    def __init__(self, job_list: JobListFile):
        """
        Initializes the JobStore.

        Args:
            job_list: The durable snapshot of finished jobs.
        """
        self.job_list = job_list
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._jobs: Dict[str, DownloadJob] = {}
        self._persist_lock = asyncio.Lock()

    def load(self) -> int:
        """
        Restores the finished jobs from the snapshot.

        Returns:
            The number of jobs restored.
        """
        records = self.job_list.load()
        restored = 0
        with self._lock:
            for record in records:
                if record.id in self._jobs:
                    self.logger.warning(f"Skipping duplicate job {record.id} in job list.")
                    continue
                if record.state != JobState.DONE:
                    self.logger.warning(f"Skipping job {record.id} in job list: state is {record.state.value}, not Done.")
                    continue
                self._jobs[record.id] = DownloadJob.from_record(record)
                restored += 1
        return restored

    def add(self, job: DownloadJob):
        with self._lock:
            if job.job_id in self._jobs:
                raise DuplicateJobError(f"Job {job.job_id} is already registered.")
            self._jobs[job.job_id] = job

    def list(self) -> List[DownloadJob]:
        """Returns a copy of the job list, safe to iterate while jobs change."""
        with self._lock:
            return list(self._jobs.values())

    def find_by_id(self, job_id: str) -> DownloadJob:
        with self._lock:
            try:
                return self._jobs[job_id]
            except KeyError:
                raise JobNotFoundError(job_id) from None

    def remove(self, job_id: str) -> DownloadJob:
        with self._lock:
            try:
                return self._jobs.pop(job_id)
            except KeyError:
                raise JobNotFoundError(job_id) from None

    async def on_job_reached_done(self, job: DownloadJob):
        """Called by the owner of a job right after it entered the Done state."""
        self.logger.info(f"Job {job.job_id} ('{job.title}') is done. Saving job list.")
        await self.persist()

    async def persist(self):
        """
        Rewrites the snapshot with every job currently in the Done state.

        Taking the snapshot and writing it happen under one lock, so the file
        always ends up reflecting the latest call.
        """
        async with self._persist_lock:
            with self._lock:
                finished = [job for job in self._jobs.values() if job.state == JobState.DONE]
            await self.job_list.save([job.to_record() for job in finished])
