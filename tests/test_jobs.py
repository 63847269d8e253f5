"""
Unit tests for the DownloadJob state machine and its persisted record.
"""

import pytest

from video_downloader.exceptions import InvalidStateTransition
from video_downloader.jobs import (
    DownloadJob, JobRecord, JobState, VerificationResult, MAX_IN_FLIGHT_PROGRESS
)


class TestDownloadJob:

    def test_create_starts_preparing_with_unique_id(self, sample_url):
        first = DownloadJob.create(sample_url)
        second = DownloadJob.create(sample_url)

        assert first.state == JobState.PREPARING
        assert first.progress == 0
        assert first.title == ""
        assert first.verification_result is None
        assert first.save_path is None
        assert len(first.job_id) == 36
        assert first.job_id != second.job_id

    def test_advances_through_every_stage_in_order(self, sample_url):
        job = DownloadJob.create(sample_url)
        for state in (JobState.DOWNLOADING, JobState.CONVERTING, JobState.UPLOADING, JobState.DONE):
            assert job.advance_to(state) is True
            assert job.state == state

    def test_stages_may_be_skipped_forward(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.UPLOADING)
        assert job.state == JobState.UPLOADING

    def test_same_state_is_a_no_op(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.DOWNLOADING)
        assert job.advance_to(JobState.DOWNLOADING) is False

    def test_cannot_regress(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.CONVERTING)
        with pytest.raises(InvalidStateTransition):
            job.advance_to(JobState.DOWNLOADING)
        assert job.state == JobState.CONVERTING

    @pytest.mark.parametrize("terminal", [JobState.DONE, JobState.FAILED, JobState.CANCELLED])
    def test_terminal_states_are_final(self, sample_url, terminal):
        job = DownloadJob.create(sample_url)
        job.advance_to(terminal)
        other = JobState.CANCELLED if terminal != JobState.CANCELLED else JobState.DONE
        with pytest.raises(InvalidStateTransition):
            job.advance_to(other)

    def test_done_sets_progress_to_exactly_100(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.DOWNLOADING)
        job.update_progress(40)
        job.advance_to(JobState.DONE)
        assert job.progress == 100

    def test_failed_keeps_message_and_progress(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.DOWNLOADING)
        job.update_progress(40)
        job.advance_to(JobState.FAILED, "network down")
        assert job.error_message == "network down"
        assert job.progress == 40

    def test_progress_never_decreases(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.DOWNLOADING)
        job.update_progress(60)
        job.update_progress(10)
        assert job.progress == 60

    def test_progress_is_clamped_below_100_until_done(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.DOWNLOADING)
        job.update_progress(100)
        assert job.progress == MAX_IN_FLIGHT_PROGRESS
        job.update_progress(250)
        assert job.progress < 100
        job.update_progress(-5)
        assert job.progress == MAX_IN_FLIGHT_PROGRESS

    def test_progress_is_frozen_once_terminal(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.advance_to(JobState.CANCELLED)
        job.update_progress(50)
        assert job.progress == 0

    def test_verification_result_is_set_once(self, sample_url):
        job = DownloadJob.create(sample_url)
        job.set_verification_result(VerificationResult.VALID)
        with pytest.raises(InvalidStateTransition):
            job.set_verification_result(VerificationResult.GENERIC_ERROR)
        assert job.verification_result == VerificationResult.VALID

    def test_to_dict_is_json_friendly(self, sample_url, tmp_path):
        job = DownloadJob.create(sample_url)
        job.set_verification_result(VerificationResult.VALID)
        job.title = "Test Video"
        job.save_path = tmp_path / "Test Video.mkv"

        data = job.to_dict()

        assert data['id'] == job.job_id
        assert data['state'] == "Preparing"
        assert data['verification_result'] == "Valid"
        assert data['save_path'] == str(tmp_path / "Test Video.mkv")
        assert 'cancellation' not in data


class TestJobRecord:

    def test_record_restores_a_finished_job(self, sample_url, tmp_path):
        job = DownloadJob.create(sample_url)
        job.title = "Test Video"
        job.save_path = tmp_path / "Test Video.mkv"
        job.advance_to(JobState.DONE)

        restored = DownloadJob.from_record(JobRecord.model_validate_json(job.to_record().model_dump_json()))

        assert restored.job_id == job.job_id
        assert restored.url == sample_url
        assert restored.title == "Test Video"
        assert restored.save_path == job.save_path
        assert restored.state == JobState.DONE
        assert restored.progress == 100
        assert restored.verification_result == VerificationResult.VALID
        assert restored.cancellation is None
