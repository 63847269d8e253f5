"""
Cooperative cancellation shared between a job's pipeline and the deletion path.

A `CancellationToken` can be cancelled from any thread. Long-running calls are
wrapped with `CancellationToken.run`, which cancels the underlying asyncio task
as soon as the token is cancelled, so a subprocess or file copy is interrupted
mid-flight instead of only at the next stage boundary.
"""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, List, TypeVar

from .exceptions import DownloadCancelledError

T = TypeVar('T')


class CancellationToken:
    """A thread-safe, one-shot cancellation flag with callbacks."""

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.logger = logging.getLogger(__name__)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        """Requests cancellation. Calling it more than once has no further effect."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        for callback in callbacks:
            try:
                callback()
            except Exception:
                self.logger.exception("Error in cancellation callback.")

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Registers a callback to run when the token is cancelled.

        If the token is already cancelled the callback runs immediately.

        Args:
            callback: A thread-safe, argument-less callable.

        Returns:
            A function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def unregister():
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)
                return unregister

        callback()
        return lambda: None

    def raise_if_cancelled(self):
        if self.is_cancelled:
            raise DownloadCancelledError("Operation cancelled.")

    async def run(self, awaitable: Awaitable[T]) -> T:
        """
        Awaits `awaitable` in a child task that is cancelled together with this token.

        Args:
            awaitable: The coroutine performing the long-running work.

        Returns:
            Whatever the awaitable returns.

        Raises:
            DownloadCancelledError: If the token was cancelled before or during the call.
        """
        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)
        unregister = self.register(lambda: loop.call_soon_threadsafe(task.cancel))
        try:
            return await task
        except asyncio.CancelledError:
            if self.is_cancelled:
                raise DownloadCancelledError("Operation cancelled.") from None
            raise
        finally:
            unregister()
