"""
Defines custom exceptions used throughout the application.

These exceptions allow for more specific error handling than built-in exceptions.
"""

class DownloadCancelledError(Exception):
    """Custom exception for cancelled downloads."""
    pass

class URLExtractionError(Exception):
    """
    Custom exception for URL processing failures.

    Attributes:
        error_output: The raw stderr of the failed yt-dlp call, used to classify the failure.
    """
    def __init__(self, message: str, error_output: str = ""):
        super().__init__(message)
        self.error_output = error_output

class TranscodeError(Exception):
    """Raised when ffmpeg fails to remux a file."""
    pass

class JobNotFoundError(KeyError):
    """Raised when a job id is not present in the job store."""
    def __init__(self, job_id: str):
        super().__init__(job_id)
        self.job_id = job_id

    def __str__(self) -> str:
        return f"No job with id '{self.job_id}'"

class DuplicateJobError(ValueError):
    """Raised when a job with an existing id is added to the store."""
    pass

class InvalidStateTransition(ValueError):
    """Raised when a job is moved backwards or out of a terminal state."""
    pass
