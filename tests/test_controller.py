"""
Tests for the HTTP adapter, using aiohttp's test server against a manager
wired to the fake resolver and transcoder.
"""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from conftest import FakeResolver
from video_downloader.controller import JobController
from video_downloader.downloads import DownloadManager
from video_downloader.exceptions import URLExtractionError


def _client(manager: DownloadManager) -> TestClient:
    return TestClient(TestServer(JobController(manager).create_app()))


class TestJobController:

    @pytest.mark.asyncio
    async def test_accepted_submission_runs_to_done(self, manager, sample_url, save_dir):
        async with _client(manager) as client:
            response = await client.post('/downloads', json={'url': sample_url})
            assert response.status == 202
            body = await response.json()
            assert body['verification_result'] == "Valid"
            assert body['title'] == "Test Video"
            assert response.headers['Server'].startswith("video-downloader/")

            await manager.wait_for(body['id'])

            response = await client.get(f"/downloads/{body['id']}")
            assert response.status == 200
            job = await response.json()
            assert job['state'] == "Done"
            assert job['progress'] == 100
            assert job['save_path'] == str(save_dir / "Test Video.mkv")

    @pytest.mark.asyncio
    async def test_rejected_submission(self, store, transcoder, work_dir, save_dir, sample_url):
        resolver = FakeResolver(error=URLExtractionError("Unsupported URL", "ERROR: Unsupported URL: x"))
        manager = DownloadManager(store, resolver, transcoder, work_dir=work_dir, save_dir=save_dir)

        async with _client(manager) as client:
            response = await client.post('/downloads', json={'url': sample_url})
            assert response.status == 422
            assert (await response.json())['verification_result'] == "NoVideoFound"

            response = await client.get('/downloads')
            assert await response.json() == []

    @pytest.mark.parametrize("payload", [
        {'data': "not json"},
        {'json': {}},
        {'json': {'url': "   "}},
        {'json': ["https://example.com"]},
    ])
    @pytest.mark.asyncio
    async def test_bad_requests(self, manager, resolver, payload):
        async with _client(manager) as client:
            response = await client.post('/downloads', **payload)
            assert response.status == 400
            assert 'error' in await response.json()
        assert resolver.verified == []

    @pytest.mark.asyncio
    async def test_list_jobs(self, manager, sample_url):
        job = await manager.submit(sample_url)
        await manager.wait_for(job.job_id)

        async with _client(manager) as client:
            response = await client.get('/downloads')
            assert response.status == 200
            assert [entry['id'] for entry in await response.json()] == [job.job_id]

    @pytest.mark.asyncio
    async def test_unknown_job(self, manager):
        async with _client(manager) as client:
            assert (await client.get('/downloads/nope')).status == 404
            response = await client.delete('/downloads/nope')
            assert response.status == 404
            assert "nope" in (await response.json())['error']

    @pytest.mark.asyncio
    async def test_delete_job(self, manager, sample_url, save_dir):
        job = await manager.submit(sample_url)
        await manager.wait_for(job.job_id)

        async with _client(manager) as client:
            response = await client.delete(f"/downloads/{job.job_id}")
            assert response.status == 200
            assert await response.json() == {'id': job.job_id, 'deleted': True}
            assert (await client.get(f"/downloads/{job.job_id}")).status == 404

        assert not (save_dir / "Test Video.mkv").exists()
