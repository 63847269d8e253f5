"""
Tests for CancellationToken and the cancellable file copy.
"""

import asyncio
import threading

import pytest

from video_downloader.cancellation import CancellationToken
from video_downloader.exceptions import DownloadCancelledError
from video_downloader.transfer import copy_file


class TestCancellationToken:

    def test_cancel_runs_callbacks_once(self):
        token = CancellationToken()
        calls = []
        token.register(lambda: calls.append("a"))

        token.cancel()
        token.cancel()

        assert token.is_cancelled
        assert calls == ["a"]

    def test_register_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []
        token.register(lambda: calls.append("late"))
        assert calls == ["late"]

    def test_unregistered_callback_is_not_called(self):
        token = CancellationToken()
        calls = []
        unregister = token.register(lambda: calls.append("x"))
        unregister()
        token.cancel()
        assert calls == []

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(DownloadCancelledError):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_run_returns_result(self):
        async def work():
            return 42

        assert await CancellationToken().run(work()) == 42

    @pytest.mark.asyncio
    async def test_run_interrupts_work_in_flight(self):
        token = CancellationToken()
        started = asyncio.Event()
        interrupted = []

        async def work():
            started.set()
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                interrupted.append(True)
                raise

        async def cancel_when_started():
            await started.wait()
            token.cancel()

        canceller = asyncio.create_task(cancel_when_started())
        with pytest.raises(DownloadCancelledError):
            await token.run(work())
        await canceller
        assert interrupted == [True]

    @pytest.mark.asyncio
    async def test_run_on_cancelled_token_never_completes_work(self):
        token = CancellationToken()
        token.cancel()
        finished = []

        async def work():
            await asyncio.sleep(0)
            finished.append(True)

        with pytest.raises(DownloadCancelledError):
            await token.run(work())
        assert finished == []

    @pytest.mark.asyncio
    async def test_cancel_from_another_thread(self):
        token = CancellationToken()
        started = asyncio.Event()

        async def work():
            started.set()
            await asyncio.Event().wait()

        async def cancel_from_thread():
            await started.wait()
            thread = threading.Thread(target=token.cancel)
            thread.start()
            await asyncio.to_thread(thread.join)

        canceller = asyncio.create_task(cancel_from_thread())
        with pytest.raises(DownloadCancelledError):
            await asyncio.wait_for(token.run(work()), timeout=5)
        await canceller


class TestCopyFile:

    @pytest.mark.asyncio
    async def test_copies_content(self, tmp_path):
        source = tmp_path / "source.mkv"
        source.write_bytes(b"0123456789" * 1000)
        destination = tmp_path / "destination.mkv"

        copied = await copy_file(source, destination, chunk_size=64)

        assert copied == 10000
        assert destination.read_bytes() == source.read_bytes()

    @pytest.mark.asyncio
    async def test_cancellation_removes_partial_destination(self, tmp_path):
        source = tmp_path / "source.mkv"
        source.write_bytes(b"x" * 200_000)
        destination = tmp_path / "destination.mkv"
        token = CancellationToken()

        asyncio.get_running_loop().call_later(0.05, token.cancel)
        with pytest.raises(DownloadCancelledError):
            await token.run(copy_file(source, destination, chunk_size=8))

        assert not destination.exists()
        assert list(tmp_path.iterdir()) == [source]

    @pytest.mark.asyncio
    async def test_interrupted_copy_leaves_existing_destination_intact(self, tmp_path):
        source = tmp_path / "source.mkv"
        source.write_bytes(b"y" * 200_000)
        destination = tmp_path / "destination.mkv"
        destination.write_bytes(b"earlier download")
        token = CancellationToken()

        asyncio.get_running_loop().call_later(0.05, token.cancel)
        with pytest.raises(DownloadCancelledError):
            await token.run(copy_file(source, destination, chunk_size=8))

        assert destination.read_bytes() == b"earlier download"
        assert not destination.with_name("destination.mkv.part").exists()

    @pytest.mark.asyncio
    async def test_missing_source_leaves_existing_destination(self, tmp_path):
        destination = tmp_path / "destination.mkv"
        destination.write_bytes(b"keep me")

        with pytest.raises(FileNotFoundError):
            await copy_file(tmp_path / "missing.mkv", destination)

        assert destination.read_bytes() == b"keep me"
