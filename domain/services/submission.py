import asyncio
import logging
from typing import Optional, Union

from app.settings import settings
from domain.errors import JobTooLargeError
from domain.schemas import BulkMatchJobConfig, SourceData

logger = logging.getLogger(__name__)


def calculate_total_items(match_type: str, source_data: SourceData) -> int:
    candidates = len(source_data.candidate_ids)
    jobs = len(source_data.job_ids)
    if match_type == "all_to_all":
        return candidates * jobs
    if match_type == "candidates_to_job":
        return candidates * max(jobs, 1)
    if match_type == "jobs_to_candidate":
        return jobs * max(candidates, 1)
    return 0


async def submit_job(
    repo,
    runner,
    config: Union[BulkMatchJobConfig, dict],
    *,
    max_total_items: Optional[int] = None,
) -> str:
    """Size and persist a new job, hand it to the runner, and return its id.

    Returns as soon as the ``pending`` record exists; no pair is scored here.
    Store errors propagate to the caller and leave no job behind.
    """
    if not isinstance(config, BulkMatchJobConfig):
        config = BulkMatchJobConfig.model_validate(config)
    total_items = calculate_total_items(config.match_type, config.source_data)
    limit = settings.MAX_TOTAL_ITEMS if max_total_items is None else max_total_items
    if limit and total_items > limit:
        raise JobTooLargeError(total_items, limit)

    job_id = await asyncio.to_thread(repo.create_job, config, total_items)
    logger.info("Created bulk match job %s for owner %s: %s, %d pairs",
                job_id, config.owner_id, config.match_type, total_items)
    runner.submit(job_id)
    return job_id
