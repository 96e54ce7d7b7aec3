import asyncio
import logging
from typing import Callable, Optional

from domain.errors import JobNotFoundError
from domain.schemas import CANCELLED

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation for one running job.

    The token is set either in-process (``cancel()``) or by observing the
    persisted ``cancelled`` status through ``probe`` on ``refresh()``. It never
    interrupts an in-flight scorer call; workers check it before each pair.
    """

    def __init__(self, probe: Optional[Callable[[], Optional[str]]] = None):
        self.probe = probe
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def refresh(self) -> bool:
        if not self._event.is_set() and self.probe is not None:
            status = await asyncio.to_thread(self.probe)
            if status == CANCELLED:
                self._event.set()
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def cancel_job(repo, job_id: str, runner=None) -> bool:
    """Request cancellation of a job.

    Flips a pending/processing job to ``cancelled`` and stamps ``completed_at``.
    Terminal jobs ignore the request. Returns whether the request took effect.
    """
    if repo.get_status(job_id) is None:
        raise JobNotFoundError(job_id)
    changed = repo.cancel(job_id)
    if changed:
        logger.info("Job %s cancelled", job_id)
        if runner is not None:
            runner.signal_cancel(job_id)
    else:
        logger.info("Cancel ignored for job %s: already terminal", job_id)
    return changed
