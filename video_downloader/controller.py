"""
Defines the JobController, a thin JSON-over-HTTP adapter around the DownloadManager.
"""
import json
import logging

from aiohttp import web

from ._version import __version__
from .downloads import DownloadManager
from .exceptions import JobNotFoundError
from .jobs import VerificationResult


class JobController:
    """Maps HTTP requests onto DownloadManager operations."""

    def __init__(self, manager: DownloadManager):
        """
        Initializes the JobController.

        Args:
            manager: The orchestrator that owns all jobs.
        """
        self.manager = manager
        self.logger = logging.getLogger(__name__)

    def create_app(self) -> web.Application:
        """Builds the aiohttp application with all routes registered."""
        app = web.Application(middlewares=[self._server_header])
        app.add_routes([
            web.get('/downloads', self.list_jobs),
            web.post('/downloads', self.submit),
            web.get('/downloads/{job_id}', self.get_job),
            web.delete('/downloads/{job_id}', self.delete_job),
        ])
        app.on_shutdown.append(self._on_shutdown)
        return app

    @web.middleware
    async def _server_header(self, request: web.Request, handler):
        response = await handler(request)
        response.headers['Server'] = f"video-downloader/{__version__}"
        return response

    async def _on_shutdown(self, app: web.Application):
        await self.manager.stop_all()

    @staticmethod
    def _error(status: int, message: str) -> web.Response:
        return web.json_response({'error': message}, status=status)

    async def list_jobs(self, request: web.Request) -> web.Response:
        return web.json_response([job.to_dict() for job in self.manager.list_jobs()])

    async def get_job(self, request: web.Request) -> web.Response:
        try:
            job = self.manager.store.find_by_id(request.match_info['job_id'])
        except JobNotFoundError as e:
            return self._error(404, str(e))
        return web.json_response(job.to_dict())

    async def submit(self, request: web.Request) -> web.Response:
        """
        Submits a URL.

        Responds 202 with the job when the URL was accepted, 422 with the
        rejected job (see its `verification_result`) otherwise.
        """
        try:
            data = await request.json()
        except json.JSONDecodeError:
            return self._error(400, "Request body must be JSON.")
        url = data.get('url') if isinstance(data, dict) else None
        if not isinstance(url, str) or not url.strip():
            return self._error(400, "Field 'url' is required.")

        job = await self.manager.submit(url.strip())
        status = 202 if job.verification_result == VerificationResult.VALID else 422
        return web.json_response(job.to_dict(), status=status)

    async def delete_job(self, request: web.Request) -> web.Response:
        job_id = request.match_info['job_id']
        try:
            deleted = await self.manager.delete_job(job_id)
        except JobNotFoundError as e:
            return self._error(404, str(e))
        return web.json_response({'id': job_id, 'deleted': deleted})
