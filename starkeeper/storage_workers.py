import asyncio
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from .constants import DEFAULT_STORAGE_WORKERS

logger = logging.getLogger(__name__)


class BlobWorkerPool:
    """Run a blocking blob store adapter (S3 or WebDAV) on a thread pool.

    At most `max_concurrent` object-store requests are in flight at once,
    however many workers the executor has. The adapter's put/get/delete/sign
    are mirrored as blocking methods and as `async_*` coroutines for request
    handlers.
    """

    def __init__(self, storage_adapter: Any, max_workers: int = DEFAULT_STORAGE_WORKERS,
                 max_concurrent: Optional[int] = None):
        self._storage = storage_adapter
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="blob")
        self._semaphore = threading.BoundedSemaphore(max_concurrent or max_workers)

    @property
    def adapter(self) -> Any:
        return self._storage

    def _throttled(self, fn: Callable, *args, **kwargs):
        with self._semaphore:
            return fn(*args, **kwargs)

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        """Queue `fn` (usually a bound adapter method) and return its Future."""
        return self._executor.submit(self._throttled, fn, *args, **kwargs)

    def run(self, fn: Callable, *args, timeout: Optional[float] = None, **kwargs):
        return self.submit(fn, *args, **kwargs).result(timeout=timeout)

    async def async_run(self, fn: Callable, *args, timeout: Optional[float] = None, **kwargs):
        pending = asyncio.wrap_future(self.submit(fn, *args, **kwargs))
        if timeout is None:
            return await pending
        return await asyncio.wait_for(pending, timeout=timeout)

    def shutdown(self, wait: bool = True):
        logger.debug("Stopping blob worker pool (wait=%s)", wait)
        try:
            self._executor.shutdown(wait=wait)
        except Exception:
            logger.exception("Error shutting down blob worker pool")

    def put(self, *args, timeout: Optional[float] = None, **kwargs):
        return self.run(self._storage.put, *args, timeout=timeout, **kwargs)

    async def async_put(self, *args, timeout: Optional[float] = None, **kwargs):
        return await self.async_run(self._storage.put, *args, timeout=timeout, **kwargs)

    def get(self, *args, timeout: Optional[float] = None, **kwargs):
        return self.run(self._storage.get, *args, timeout=timeout, **kwargs)

    async def async_get(self, *args, timeout: Optional[float] = None, **kwargs):
        return await self.async_run(self._storage.get, *args, timeout=timeout, **kwargs)

    def delete(self, *args, timeout: Optional[float] = None, **kwargs):
        return self.run(self._storage.delete, *args, timeout=timeout, **kwargs)

    async def async_delete(self, *args, timeout: Optional[float] = None, **kwargs):
        return await self.async_run(self._storage.delete, *args, timeout=timeout, **kwargs)

    def sign(self, *args, timeout: Optional[float] = None, **kwargs):
        return self.run(self._storage.sign, *args, timeout=timeout, **kwargs)

    async def async_sign(self, *args, timeout: Optional[float] = None, **kwargs):
        return await self.async_run(self._storage.sign, *args, timeout=timeout, **kwargs)

