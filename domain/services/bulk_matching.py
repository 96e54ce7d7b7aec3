import logging
from typing import List, Optional, Union

from app.settings import settings
from domain.errors import JobNotFoundError
from domain.schemas import BulkMatchJobConfig, JobStatusResponse, MatchResultResponse
from domain.services.cancellation import cancel_job
from domain.services.job_runner import JobRunner
from domain.services.orchestrator import BulkMatchOrchestrator
from domain.services.result_export import results_to_csv
from domain.services.scoring import Scorer, with_timeout
from domain.services.submission import submit_job
from infra.llm.client import LLMScorer
from infra.notifications.notifier import Notifier, default_notifier
from infra.repositories.bulk_match_repository import BulkMatchRepository

logger = logging.getLogger(__name__)


class BulkMatchingService:
    """Entry point for bulk matching: submit, observe, cancel and export jobs."""

    def __init__(
        self,
        repo: Optional[BulkMatchRepository] = None,
        scorer: Optional[Scorer] = None,
        notifier: Optional[Notifier] = None,
        *,
        max_total_items: Optional[int] = None,
        max_concurrent_jobs: Optional[int] = None,
        **orchestrator_options,
    ):
        self.repo = repo or BulkMatchRepository()
        if scorer is None:
            scorer = with_timeout(LLMScorer(), settings.SCORER_TIMEOUT_S)
        self.orchestrator = BulkMatchOrchestrator(
            self.repo, scorer, notifier or default_notifier(), **orchestrator_options)
        self.runner = JobRunner(self.orchestrator, max_concurrent_jobs=max_concurrent_jobs)
        self.max_total_items = max_total_items

    async def create_job(self, config: Union[BulkMatchJobConfig, dict]) -> str:
        return await submit_job(self.repo, self.runner, config, max_total_items=self.max_total_items)

    def get_job_status(self, job_id: str) -> JobStatusResponse:
        job = self.repo.get(job_id)
        if not job:
            raise JobNotFoundError(job_id)
        return JobStatusResponse.model_validate(job)

    def get_job_results(self, job_id: str, limit: int = 100) -> List[MatchResultResponse]:
        if self.repo.get_status(job_id) is None:
            raise JobNotFoundError(job_id)
        return [MatchResultResponse.model_validate(r) for r in self.repo.list_results(job_id, limit)]

    def cancel_job(self, job_id: str) -> bool:
        return cancel_job(self.repo, job_id, runner=self.runner)

    def list_user_jobs(self, owner_id: str, limit: int = 50) -> List[JobStatusResponse]:
        return [JobStatusResponse.model_validate(j) for j in self.repo.list_jobs(str(owner_id), limit)]

    def export_results_csv(self, job_id: str) -> str:
        if self.repo.get_status(job_id) is None:
            raise JobNotFoundError(job_id)
        return results_to_csv(self.repo.list_results(job_id, limit=None))

    async def wait_for(self, job_id: str) -> JobStatusResponse:
        await self.runner.wait(job_id)
        return self.get_job_status(job_id)

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        await self.runner.shutdown(timeout)
