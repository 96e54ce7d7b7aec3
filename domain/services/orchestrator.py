import asyncio
import logging
import time
from typing import Any, Callable, List, Optional, Tuple

from app.settings import settings
from domain.errors import JobNotFoundError, PairResolutionError, StoreWriteError
from domain.schemas import (
    MATCH_TYPES, COMPLETED, FAILED, CANCELLED,
    CompletionNotice, MatchScore, ResultsSummary, SourceData,
)
from domain.services.aggregator import ResultAggregator, round_half_up
from domain.services.cancellation import CancellationToken
from domain.services.scoring import Scorer

logger = logging.getLogger("bulk_matching")


def compute_progress(processed: int, total: int) -> int:
    """Percentage of pairs processed; 100 only once every pair is done."""
    if total <= 0 or processed >= total:
        return 100
    return min(99, round_half_up(processed / total * 100))


def expand_pairs(match_type: str, candidates: List[Any], job_postings: List[Any]) -> List[Tuple[Any, Any]]:
    """Ordered cross product, candidate-major and job-minor."""
    if match_type not in MATCH_TYPES:
        return []
    return [(c, j) for c in candidates for j in job_postings]


class _JobProgress:
    """Authoritative in-memory counters for one run; flushed to the store in batches."""

    def __init__(self, total: int, clock: Callable[[], float]):
        self.total = total
        self.processed = 0
        self.successful = 0
        self.failed = 0
        self.unflushed = 0
        self.last_flush_at = clock()
        self.lock = asyncio.Lock()

    def record(self, success: bool) -> None:
        if success:
            self.successful += 1
        else:
            self.failed += 1
        self.processed += 1
        self.unflushed += 1

    @property
    def progress(self) -> int:
        return compute_progress(self.processed, self.total)


class BulkMatchOrchestrator:
    """Drives one bulk match job from ``pending`` to a terminal state."""

    def __init__(
        self,
        repo,
        scorer: Scorer,
        notifier,
        *,
        aggregator: Optional[ResultAggregator] = None,
        pair_concurrency: Optional[int] = None,
        progress_batch_size: Optional[int] = None,
        progress_flush_interval_ms: Optional[int] = None,
        store_write_max_retries: Optional[int] = None,
        store_write_backoff_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repo = repo
        self.scorer = scorer
        self.notifier = notifier
        self.aggregator = aggregator or ResultAggregator(repo)
        self.pair_concurrency = max(1, pair_concurrency or settings.PAIR_CONCURRENCY)
        self.progress_batch_size = max(1, progress_batch_size or settings.PROGRESS_BATCH_SIZE)
        self.progress_flush_interval_ms = (
            settings.PROGRESS_FLUSH_INTERVAL_MS if progress_flush_interval_ms is None
            else progress_flush_interval_ms)
        self.store_write_max_retries = (
            settings.STORE_WRITE_MAX_RETRIES if store_write_max_retries is None
            else store_write_max_retries)
        self.store_write_backoff_s = (
            settings.STORE_WRITE_BACKOFF_S if store_write_backoff_s is None
            else store_write_backoff_s)
        self._clock = clock

    async def _store(self, fn, *args):
        """Run a blocking store call off the event loop, with bounded retry."""
        backoff = self.store_write_backoff_s
        attempts = self.store_write_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return await asyncio.to_thread(fn, *args)
            except Exception as exc:
                if attempt == attempts:
                    raise StoreWriteError(
                        f"{getattr(fn, '__name__', 'store call')} failed after {attempts} attempts: {exc}"
                    ) from exc
                logger.warning(
                    f"Store call {getattr(fn, '__name__', fn)} failed (attempt {attempt}/{attempts}): {exc}")
            await asyncio.sleep(backoff)
            backoff *= 2

    async def _notify(self, send, *args) -> None:
        try:
            await send(*args)
        except Exception as exc:
            logger.warning(f"Notification {getattr(send, '__name__', send)} failed: {exc}")

    async def run(self, job_id: str, token: Optional[CancellationToken] = None) -> Optional[str]:
        """Process every pair of the job and return its final status."""
        token = token or CancellationToken()
        if token.probe is None:
            token.probe = lambda: self.repo.get_status(job_id)
        job = None
        state = None
        try:
            job = await self._store(self.repo.get, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if token.cancelled:
                # Stopped (e.g. runner shutdown) before it ever started.
                await self._store(self.repo.cancel, job_id)
                return await self._store(self.repo.get_status, job_id)

            if not await self._store(self.repo.mark_processing, job_id):
                # Cancelled, already terminal, or picked up by another run.
                status = await self._store(self.repo.get_status, job_id)
                logger.info(f"Job {job_id} not started: status is {status}")
                return status
            started_at = self._clock()
            logger.info(f"=== Starting bulk match job {job_id} ({job.match_type}, {job.total_items} pairs) ===")

            pairs = await self._resolve_pairs(job)
            state = _JobProgress(job.total_items, self._clock)
            cancelled = await self._process_pairs(job, pairs, token, state)
            async with state.lock:
                await self._flush(job_id, state)

            if cancelled:
                await self._store(self.repo.cancel, job_id)
            summary = await self._build_summary(job_id, state, started_at)
            notice = CompletionNotice(
                operation_type=f"Bulk Matching: {job.job_name}",
                total_processed=summary.total_processed,
                success_count=summary.successful_matches,
                failure_count=summary.failed_items,
                duration_seconds=summary.duration_seconds,
            )

            if not cancelled and await self._store(self.repo.complete, job_id, summary.model_dump()):
                logger.info(
                    f"Job {job_id} completed: {state.successful} successful, {state.failed} failed")
                await self._notify(self.notifier.notify_completion, job.owner_id, notice)
                return COMPLETED

            # Cancelled during the loop, or right after the last pair.
            await self._store(self.repo.record_cancelled_summary, job_id, summary.model_dump())
            logger.info(f"Job {job_id} cancelled after {state.processed}/{state.total} pairs")
            await self._notify(self.notifier.notify_cancelled, job.owner_id, notice)
            return CANCELLED
        except JobNotFoundError:
            logger.error(f"Bulk match job {job_id} not found")
            return None
        except Exception as exc:
            logger.exception(f"Job {job_id} failed: {exc}")
            if state is not None and state.unflushed > 0:
                # Persist the pairs finished since the last batch before failing.
                try:
                    async with state.lock:
                        await self._flush(job_id, state)
                except Exception as flush_exc:
                    logger.warning(f"Could not flush progress of failed job {job_id}: {flush_exc}")
            return await self._fail(job_id, job, str(exc) or type(exc).__name__)

    async def _fail(self, job_id: str, job, message: str) -> Optional[str]:
        try:
            failed = await self._store(self.repo.fail, job_id, message)
        except StoreWriteError:
            logger.exception(f"Could not record failure of job {job_id}")
            return None
        if not failed:
            return await asyncio.to_thread(self.repo.get_status, job_id)
        if job is not None:
            await self._notify(
                self.notifier.notify_failure, job.owner_id, f"Bulk Matching: {job.job_name}", message)
        return FAILED

    async def _resolve_pairs(self, job) -> List[Tuple[Any, Any]]:
        if job.total_items == 0:
            return []
        source = SourceData.model_validate(job.source_data or {})
        try:
            candidates = await asyncio.to_thread(self.repo.load_candidates, source.candidate_ids)
            postings = await asyncio.to_thread(self.repo.load_job_postings, source.job_ids)
        except KeyError as exc:
            raise PairResolutionError(str(exc).strip("'\"")) from exc
        pairs = expand_pairs(job.match_type, candidates, postings)
        if len(pairs) != job.total_items:
            raise PairResolutionError(
                f"selection resolves to {len(pairs)} pairs but the job expects {job.total_items}")
        return pairs

    async def _process_pairs(self, job, pairs, token: CancellationToken, state: _JobProgress) -> bool:
        """Score pairs in order with up to ``pair_concurrency`` workers.

        Returns True when the loop stopped because of cancellation.
        """
        pair_iter = iter(pairs)
        abort = asyncio.Event()

        async def worker():
            for candidate, posting in pair_iter:
                if abort.is_set() or await token.refresh():
                    return
                try:
                    await self._process_pair(job, candidate, posting, state)
                except BaseException:
                    abort.set()
                    raise

        n_workers = min(self.pair_concurrency, len(pairs)) or 1
        outcomes = await asyncio.gather(*(worker() for _ in range(n_workers)), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return token.cancelled

    async def _process_pair(self, job, candidate, posting, state: _JobProgress) -> None:
        try:
            score = await self.scorer(candidate, posting)
            if not isinstance(score, MatchScore):
                score = MatchScore.model_validate(score)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.warning(
                f"Error matching candidate {candidate.id} to job {posting.id} in {job.id}: {error}")
            await self._store(self.repo.add_result, job.id, candidate.id, posting.id, None, error)
            success = False
        else:
            await self._store(self.repo.add_result, job.id, candidate.id, posting.id, score)
            success = True

        async with state.lock:
            state.record(success)
            elapsed_ms = (self._clock() - state.last_flush_at) * 1000
            if (state.unflushed >= self.progress_batch_size
                    or elapsed_ms >= self.progress_flush_interval_ms):
                await self._flush(job.id, state)

    async def _flush(self, job_id: str, state: _JobProgress) -> None:
        await self._store(
            self.repo.update_progress, job_id,
            state.processed, state.successful, state.failed, state.progress)
        state.unflushed = 0
        state.last_flush_at = self._clock()

    async def _build_summary(self, job_id: str, state: _JobProgress, started_at: float) -> ResultsSummary:
        stats = await self._store(self.aggregator.summarize, job_id)
        return ResultsSummary(
            total_processed=state.processed,
            successful_matches=state.successful,
            failed_items=state.failed,
            duration_seconds=round_half_up(self._clock() - started_at),
            **stats,
        )
