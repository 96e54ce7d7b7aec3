import asyncio
import functools
import logging
from typing import Dict, List, Optional

from app.settings import settings
from domain.services.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class JobRunner:
    """Runs submitted jobs as supervised background tasks.

    Each job gets its own task and cancellation token; at most
    ``max_concurrent_jobs`` orchestrator runs are active at once, the rest wait
    in ``pending``. Tasks that die with an exception are logged, never lost.
    """

    def __init__(self, orchestrator, max_concurrent_jobs: Optional[int] = None):
        self.orchestrator = orchestrator
        self._slots = asyncio.Semaphore(max(1, max_concurrent_jobs or settings.MAX_CONCURRENT_JOBS))
        self._tasks: Dict[str, asyncio.Task] = {}
        self._tokens: Dict[str, CancellationToken] = {}

    def submit(self, job_id: str) -> asyncio.Task:
        if job_id in self._tasks:
            return self._tasks[job_id]
        token = CancellationToken()
        task = asyncio.create_task(self._run(job_id, token), name=f"bulk-match-{job_id}")
        self._tasks[job_id] = task
        self._tokens[job_id] = token
        task.add_done_callback(functools.partial(self._on_done, job_id))
        return task

    async def _run(self, job_id: str, token: CancellationToken) -> Optional[str]:
        async with self._slots:
            return await self.orchestrator.run(job_id, token)

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        self._tokens.pop(job_id, None)
        if task.cancelled():
            logger.warning("Job %s task was cancelled before finishing", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Job %s task crashed: %s", job_id, exc, exc_info=exc)
        else:
            logger.info("Job %s finished with status %s", job_id, task.result())

    def signal_cancel(self, job_id: str) -> None:
        token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()

    def active_job_ids(self) -> List[str]:
        return list(self._tasks)

    async def wait(self, job_id: str) -> Optional[str]:
        """Wait for a submitted job and return its final status."""
        task = self._tasks.get(job_id)
        if task is not None:
            return await task
        return await asyncio.to_thread(self.orchestrator.repo.get_status, job_id)

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Ask every running job to stop at its next pair, then wait for them."""
        for token in list(self._tokens.values()):
            token.cancel()
        tasks = list(self._tasks.values())
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            logger.warning("Job task %s did not stop in time; cancelling", task.get_name())
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
