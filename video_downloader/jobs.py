"""
Defines the data classes for a download job and its persisted record.
"""

import uuid
import threading
from enum import Enum
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from pydantic import BaseModel

from .cancellation import CancellationToken
from .exceptions import InvalidStateTransition


class JobState(str, Enum):
    """Lifecycle stages of a job, in the order the pipeline moves through them."""
    PREPARING = "Preparing"
    DOWNLOADING = "Downloading"
    CONVERTING = "Converting"
    UPLOADING = "Uploading"
    DONE = "Done"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.DONE, JobState.FAILED, JobState.CANCELLED)


_STATE_RANK = {
    JobState.PREPARING: 0,
    JobState.DOWNLOADING: 1,
    JobState.CONVERTING: 2,
    JobState.UPLOADING: 3,
    JobState.DONE: 4,
    JobState.FAILED: 4,
    JobState.CANCELLED: 4,
}


class VerificationResult(str, Enum):
    """Outcome of checking a submitted URL before any download starts."""
    VALID = "Valid"
    IS_PLAYLIST = "IsPlaylist"
    NO_VIDEO_FOUND = "NoVideoFound"
    DRM_PROTECTED = "DrmProtected"
    GENERIC_ERROR = "GenericError"


# Progress only reaches 100 when the job is Done.
MAX_IN_FLIGHT_PROGRESS = 99.9


class JobRecord(BaseModel):
    """The persisted form of a finished job."""
    id: str
    url: str
    title: str = ""
    state: JobState = JobState.DONE
    progress: float = 100.0
    save_path: Optional[str] = None


@dataclass
class DownloadJob:
    """
    Represents a single submitted URL and its progress through the pipeline.

    State and progress are written by the job's pipeline task and read
    concurrently by the store and the HTTP layer; composite updates and
    snapshots go through a per-job lock.

    Attributes:
        job_id: A unique identifier for the job.
        url: The URL provided by the user.
        title: The video title, resolved during verification.
        state: The current lifecycle stage.
        progress: Percentage in [0, 100]; never decreases.
        verification_result: The classification of the URL, set once.
        save_path: Where the finished file was placed, set during upload.
        error_message: Why the job failed, if it did.
        cancellation: The token used to stop the pipeline; None once released.
    """
    job_id: str
    url: str
    title: str = ""
    state: JobState = JobState.PREPARING
    progress: float = 0.0
    verification_result: Optional[VerificationResult] = None
    save_path: Optional[Path] = None
    error_message: Optional[str] = None
    cancellation: Optional[CancellationToken] = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @classmethod
    def create(cls, url: str) -> 'DownloadJob':
        """Creates a new job in the Preparing state with a fresh id."""
        return cls(job_id=str(uuid.uuid4()), url=url)

    @classmethod
    def from_record(cls, record: JobRecord) -> 'DownloadJob':
        """Restores a finished job from its persisted record."""
        return cls(
            job_id=record.id,
            url=record.url,
            title=record.title,
            state=record.state,
            progress=record.progress,
            verification_result=VerificationResult.VALID,
            save_path=Path(record.save_path) if record.save_path else None,
        )

    def advance_to(self, new_state: JobState, error_message: Optional[str] = None) -> bool:
        """
        Moves the job forward to `new_state`.

        Entering Done also sets progress to exactly 100.

        Args:
            new_state: The state to move to.
            error_message: Stored alongside a Failed state.

        Returns:
            True if the state changed, False if the job was already in `new_state`.

        Raises:
            InvalidStateTransition: If the move would regress or leave a terminal state.
        """
        with self._lock:
            if new_state == self.state:
                return False
            if self.state.is_terminal:
                raise InvalidStateTransition(f"Job {self.job_id} is already {self.state.value}; cannot move to {new_state.value}.")
            if _STATE_RANK[new_state] < _STATE_RANK[self.state]:
                raise InvalidStateTransition(f"Job {self.job_id} cannot move from {self.state.value} back to {new_state.value}.")
            self.state = new_state
            if new_state == JobState.DONE:
                self.progress = 100.0
            elif new_state == JobState.FAILED:
                self.error_message = error_message
            return True

    def update_progress(self, percentage: float):
        """Raises progress to `percentage`, clamped below 100 while the job is running."""
        with self._lock:
            if self.state.is_terminal:
                return
            value = max(0.0, min(float(percentage), MAX_IN_FLIGHT_PROGRESS))
            if value > self.progress:
                self.progress = value

    def set_verification_result(self, result: VerificationResult):
        with self._lock:
            if self.verification_result is not None:
                raise InvalidStateTransition(f"Job {self.job_id} has already been verified as {self.verification_result.value}.")
            self.verification_result = result

    def to_record(self) -> JobRecord:
        with self._lock:
            return JobRecord(
                id=self.job_id,
                url=self.url,
                title=self.title,
                state=self.state,
                progress=self.progress,
                save_path=str(self.save_path) if self.save_path else None,
            )

    def to_dict(self) -> Dict[str, Any]:
        """Returns a consistent, JSON-friendly snapshot of the job."""
        with self._lock:
            return {
                'id': self.job_id,
                'url': self.url,
                'title': self.title,
                'state': self.state.value,
                'progress': round(self.progress, 1),
                'verification_result': self.verification_result.value if self.verification_result else None,
                'save_path': str(self.save_path) if self.save_path else None,
                'error_message': self.error_message,
            }
