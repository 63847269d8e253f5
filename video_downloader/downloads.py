"""Verifies submitted URLs and drives accepted jobs through download, convert and upload."""
import shutil
import asyncio
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .cancellation import CancellationToken
from .constants import DEFAULT_FORMAT_SELECTOR, DEFAULT_TARGET_CONTAINER, DELETE_WAIT_TIMEOUT
from .exceptions import DownloadCancelledError, URLExtractionError
from .jobs import DownloadJob, JobState, VerificationResult
from .store import JobStore
from .transcoder import FFmpegRemuxer
from .transfer import copy_file
from .url_extractor import URLInfoExtractor

# Leftovers of an interrupted yt-dlp run, never a finished file.
_INCOMPLETE_SUFFIXES = {'.part', '.ytdl', '.temp'}


class DownloadManager:
    """
    Owns the lifecycle of every job: verification, the background pipeline,
    cancellation and deletion.

    Each accepted job runs in its own asyncio task. Only that task changes the
    job's state, progress and save path; the deletion path may additionally
    request cancellation through the job's token.
    """
    def __init__(self, store: JobStore, resolver: URLInfoExtractor, transcoder: FFmpegRemuxer,
                 work_dir: Path, save_dir: Path,
                 format_selector: str = DEFAULT_FORMAT_SELECTOR,
                 target_container: str = DEFAULT_TARGET_CONTAINER,
                 delete_wait_timeout: float = DELETE_WAIT_TIMEOUT,
                 job_log_dir: Optional[Path] = None):
        """
        Initializes the DownloadManager.

        Args:
            store: Registry of all known jobs.
            resolver: Verifies URLs and downloads media.
            transcoder: Remuxes downloads into the target container.
            work_dir: Parent of the per-job working directories.
            save_dir: Where finished files are placed.
            format_selector: yt-dlp format selection used for every download.
            target_container: Container extension of finished files, without the dot.
            delete_wait_timeout: Seconds to wait for an in-flight upload when deleting.
            job_log_dir: If set, each download's yt-dlp output is written to its own file here.
        """
        self.store = store
        self.resolver = resolver
        self.transcoder = transcoder
        self.work_dir = work_dir
        self.save_dir = save_dir
        self.format_selector = format_selector
        self.target_suffix = f".{target_container.lower().lstrip('.')}"
        self.delete_wait_timeout = delete_wait_timeout
        self.job_log_dir = job_log_dir
        self.logger = logging.getLogger(__name__)
        self.pipeline_tasks: Dict[str, asyncio.Task] = {}
        # Save paths claimed by uploads that have not finished yet.
        self._reserved_destinations: Set[Path] = set()
        self._destination_lock = threading.Lock()

    async def initialize(self):
        """Prepares directories, removes stale working files and restores finished jobs."""
        await asyncio.to_thread(self.save_dir.mkdir, parents=True, exist_ok=True)
        await self.cleanup_temporary_files()
        restored = await asyncio.to_thread(self.store.load)
        self.logger.info(f"Restored {restored} finished job(s).")

    async def cleanup_temporary_files(self):
        """Deletes job working directories left behind by a previous run."""
        await asyncio.to_thread(self.work_dir.mkdir, parents=True, exist_ok=True)
        # Note: iterdir() itself is blocking and must be wrapped
        items_to_check = await asyncio.to_thread(list, self.work_dir.iterdir())

        count = 0
        for item in items_to_check:
            if item.name in self.pipeline_tasks:
                continue
            try:
                if await asyncio.to_thread(item.is_dir):
                    await asyncio.to_thread(shutil.rmtree, item)
                else:
                    await asyncio.to_thread(item.unlink)
                count += 1
            except OSError as e:
                self.logger.error(f"Error deleting temp item {item.name}: {e}")
        if count > 0: self.logger.info(f"Deleted {count} stale temporary item(s).")

    def list_jobs(self) -> List[DownloadJob]:
        return self.store.list()

    async def submit(self, url: str) -> DownloadJob:
        """
        Verifies `url` and, if it is a single downloadable video, starts its pipeline.

        Only the verification is awaited; the download itself runs in the
        background.

        Args:
            url: The URL submitted by the user.

        Returns:
            The new job. Its `verification_result` tells whether it was accepted;
            rejected jobs are not registered in the store.
        """
        job = DownloadJob.create(url)
        self.logger.info(f"Verifying {url} (job {job.job_id})...")
        result, metadata = await self._verify(url)
        job.set_verification_result(result)

        if result != VerificationResult.VALID:
            self.logger.info(f"Rejected {url}: {result.value}")
            return job

        job.title = metadata.get('title') or url
        job.cancellation = CancellationToken()
        self.store.add(job)

        task = asyncio.create_task(self._run_pipeline(job), name=f"pipeline-{job.job_id}")
        self.pipeline_tasks[job.job_id] = task
        task.add_done_callback(self._task_done_callback(job.job_id))
        self.logger.info(f"Accepted '{job.title}' as job {job.job_id}.")
        return job

    async def _verify(self, url: str) -> Tuple[VerificationResult, Dict[str, Any]]:
        """Classifies a URL by asking the resolver for its metadata."""
        try:
            data = await self.resolver.fetch_metadata(url)
        except URLExtractionError as e:
            signature = f"{e}\n{e.error_output}"
            if 'Forbidden' in signature:
                return VerificationResult.DRM_PROTECTED, {}
            if 'Unsupported' in signature:
                return VerificationResult.NO_VIDEO_FOUND, {}
            self.logger.warning(f"Verification of {url} failed: {e}")
            return VerificationResult.GENERIC_ERROR, {}

        if data.get('entries') is not None or data.get('_type') == 'playlist':
            return VerificationResult.IS_PLAYLIST, data
        return VerificationResult.VALID, data

    async def _set_state(self, job: DownloadJob, state: JobState, error_message: Optional[str] = None):
        if job.advance_to(state, error_message) and state == JobState.DONE:
            await self.store.on_job_reached_done(job)

    async def _run_pipeline(self, job: DownloadJob):
        """Runs the stages of one job in order, then cleans up whatever happened."""
        token = job.cancellation
        assert token is not None
        work_dir = self.work_dir / job.job_id
        completed = False
        failure: Optional[BaseException] = None
        try:
            for stage in (self._download, self._convert, self._upload):
                token.raise_if_cancelled()
                await stage(job, work_dir, token)
            completed = True
        except DownloadCancelledError:
            self.logger.info(f"Job {job.job_id} cancelled during {job.state.value}.")
        except Exception as e:
            self.logger.exception(f"Job {job.job_id} failed during {job.state.value}.")
            failure = e
        finally:
            await self._cleanup(job, work_dir, completed, failure)

    async def _download(self, job: DownloadJob, work_dir: Path, token: CancellationToken):
        await self._set_state(job, JobState.DOWNLOADING)
        await asyncio.to_thread(work_dir.mkdir, parents=True, exist_ok=True)
        self.logger.info(f"Downloading {job.url} for job {job.job_id}.")
        await self.resolver.download(
            job.url, self.format_selector, work_dir,
            progress_callback=lambda fraction: job.update_progress(fraction * 100),
            cancellation=token,
            log_path=self._job_log_path(job),
        )

    def _job_log_path(self, job: DownloadJob) -> Optional[Path]:
        if self.job_log_dir is None:
            return None
        return self.job_log_dir / f"{datetime.now():%Y-%m-%d_%H-%M-%S} - {job.job_id}.log"

    async def _convert(self, job: DownloadJob, work_dir: Path, token: CancellationToken):
        await self._set_state(job, JobState.CONVERTING)
        input_path = await self._find_output_file(work_dir)
        # If the file already has the target container, just stop.
        if input_path.suffix.lower() == self.target_suffix:
            self.logger.info(f"{input_path.name} is already {self.target_suffix}; skipping conversion.")
            return
        output_path = input_path.with_suffix(self.target_suffix)
        await self.transcoder.remux(input_path, output_path, progress_callback=job.update_progress, cancellation=token)
        await asyncio.to_thread(input_path.unlink)

    async def _upload(self, job: DownloadJob, work_dir: Path, token: CancellationToken):
        await self._set_state(job, JobState.UPLOADING)
        source = await self._find_output_file(work_dir)
        destination = await asyncio.to_thread(self._reserve_destination, source.name)
        job.save_path = destination
        self.logger.info(f"Moving {source.name} to {destination}.")
        try:
            await token.run(copy_file(source, destination))
        finally:
            with self._destination_lock:
                self._reserved_destinations.discard(destination)

    def _reserve_destination(self, file_name: str) -> Path:
        """
        Picks a save path that no existing file and no other running upload uses.

        Identical URLs produce identical file names, so later jobs get a
        numbered name ("Title (1).mkv") instead of overwriting an earlier one.
        """
        candidate = self.save_dir / file_name
        counter = 1
        with self._destination_lock:
            while candidate in self._reserved_destinations or candidate.exists():
                candidate = self.save_dir / f"{Path(file_name).stem} ({counter}){Path(file_name).suffix}"
                counter += 1
            self._reserved_destinations.add(candidate)
        return candidate

    async def _find_output_file(self, work_dir: Path) -> Path:
        """Returns the single finished file in a job's working directory."""
        def scan() -> List[Path]:
            return sorted(p for p in work_dir.iterdir() if p.is_file() and p.suffix.lower() not in _INCOMPLETE_SUFFIXES)

        files = await asyncio.to_thread(scan)
        if not files:
            raise FileNotFoundError(f"No output file found in {work_dir}")
        if len(files) > 1:
            self.logger.warning(f"Expected one file in {work_dir}, found {len(files)}. Using {files[0].name}.")
        return files[0]

    async def _cleanup(self, job: DownloadJob, work_dir: Path, completed: bool, failure: Optional[BaseException]):
        """Puts the job into its terminal state and releases its resources."""
        try:
            if failure is not None:
                await self._set_state(job, JobState.FAILED, str(failure) or type(failure).__name__)
            elif completed:
                await self._set_state(job, JobState.DONE)
            else:
                await self._set_state(job, JobState.CANCELLED)
        finally:
            job.cancellation = None
            try:
                await asyncio.to_thread(shutil.rmtree, work_dir)
            except FileNotFoundError:
                pass
            except OSError as e:
                self.logger.error(f"Could not remove working directory {work_dir}: {e}")

    async def delete_job(self, job_id: str) -> bool:
        """
        Stops a job if it is still running, deletes its file and forgets it.

        Args:
            job_id: The id of the job to delete.

        Returns:
            True if the saved file was removed, False if there was none or it
            could not be removed.

        Raises:
            JobNotFoundError: If no job has this id.
            OSError: For unexpected errors while deleting the file.
        """
        job = self.store.find_by_id(job_id)
        if not job.state.is_terminal:
            token = job.cancellation
            if token is not None:
                self.logger.info(f"Cancelling job {job_id} ({job.state.value}).")
                token.cancel()
            if job.state == JobState.UPLOADING:
                await self._wait_for_upload_release(job)

        try:
            return await self._delete_artifact(job)
        finally:
            self.store.remove(job_id)
            await self.store.persist()
            self.logger.info(f"Deleted job {job_id}.")

    async def _wait_for_upload_release(self, job: DownloadJob):
        """Waits until the job's pipeline no longer writes its save file, up to the timeout."""
        task = self.pipeline_tasks.get(job.job_id)
        if task is None:
            return
        done, _ = await asyncio.wait({task}, timeout=self.delete_wait_timeout)
        if not done:
            self.logger.warning(f"Upload of job {job.job_id} still running after {self.delete_wait_timeout}s. Deleting anyway.")

    async def _delete_artifact(self, job: DownloadJob) -> bool:
        if job.save_path is None:
            self.logger.info(f"Job {job.job_id} has no saved file to delete.")
            return False
        try:
            await asyncio.to_thread(job.save_path.unlink)
        except FileNotFoundError:
            self.logger.warning(f"Save file {job.save_path} of job {job.job_id} does not exist.")
            return False
        except PermissionError as e:
            self.logger.error(f"Save file {job.save_path} of job {job.job_id} could not be deleted: {e}")
            return False
        return True

    async def wait_for(self, job_id: str):
        """Waits for a job's pipeline to finish. Returns at once if it is not running."""
        task = self.pipeline_tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})

    async def stop_all(self):
        """Cancels every running job and waits for the pipelines to clean up."""
        tasks = list(self.pipeline_tasks.values())
        if not tasks:
            return
        self.logger.info(f"STOP signal received. Cancelling {len(tasks)} running job(s)...")
        for job in self.store.list():
            if job.cancellation is not None:
                job.cancellation.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _task_done_callback(self, job_id: str) -> Callable[[asyncio.Task], None]:
        """Creates a callback that forgets a finished pipeline task and logs its exceptions."""
        def callback(task: asyncio.Task):
            self.pipeline_tasks.pop(job_id, None)
            try:
                task.result()
            except asyncio.CancelledError:
                pass # Normal cancellation
            except Exception:
                self.logger.exception(f"Exception in background task {task.get_name()}:")
        return callback
