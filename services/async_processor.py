"""Background job runner: asyncio tasks keyed by job id"""
import asyncio
import logging
from typing import Coroutine, Dict, Optional

from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

class AsyncJobProcessor:
    """
    Runs ingestion jobs as tasks on the server's event loop (max N concurrent).

    Tasks are registered under their job id so they can be cancelled or
    awaited individually. Call shutdown() on app exit.
    """

    def __init__(self, max_workers: int = settings.MAX_CONCURRENT_JOBS):
        self._max_workers = max_workers
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._tasks: Dict[str, asyncio.Task] = {}

    def _get_semaphore(self) -> asyncio.Semaphore:
        # Created lazily so it binds to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self._max_workers)
        return self._semaphore

    async def _run(self, job_id: str, coro: Coroutine) -> None:
        try:
            async with self._get_semaphore():
                await coro
        except asyncio.CancelledError:
            logger.info(f"[JOBS] Job {job_id} cancelled")
            raise
        except Exception as e:
            logger.exception(f"[JOBS] Background job {job_id} failed: {e}")
        finally:
            self._tasks.pop(job_id, None)

    def submit(self, job_id: str, coro: Coroutine) -> None:
        """Schedule a job on the running loop (fire-and-forget)."""
        if job_id in self._tasks:
            coro.close()
            raise RuntimeError(f"Job {job_id} is already running")
        self._tasks[job_id] = asyncio.get_running_loop().create_task(self._run(job_id, coro))

    def is_running(self, job_id: str) -> bool:
        return job_id in self._tasks

    def cancel(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        if task is None:
            return False
        task.cancel()
        return True

    async def wait(self, job_id: str) -> None:
        """Wait for a job to finish (no-op if it is not running)."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel running jobs and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self._semaphore = None

# Global instance
job_processor = AsyncJobProcessor()
