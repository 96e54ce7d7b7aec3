"""
Tests for the orchestrator state machine, counters and failure semantics.
"""

import asyncio

from domain.schemas import COMPLETED, FAILED, CANCELLED, PROCESSING, BulkMatchJobConfig
from domain.services.orchestrator import compute_progress, expand_pairs
from infra.repositories.bulk_match_repository import BulkMatchRepository


class CheckingRepository(BulkMatchRepository):
    """Records every progress write and checks the counter invariants at that instant."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.snapshots = []

    def update_progress(self, job_id, processed, successful, failed, progress):
        applied = super().update_progress(job_id, processed, successful, failed, progress)
        job = self.get(job_id)
        self.snapshots.append({
            "processed": job.processed_items,
            "successful": job.successful_matches,
            "failed": job.failed_items,
            "progress": job.progress,
            "total": job.total_items,
            "rows": self.count_results(job_id),
        })
        return applied


class FlakyProgressRepository(BulkMatchRepository):
    """Fails progress writes for one pair number, either always or a set number of times."""

    def __init__(self, session_factory, fail_at: int, failures: int = 10**6):
        super().__init__(session_factory)
        self.fail_at = fail_at
        self.failures_left = failures
        self.progress_calls = 0

    def update_progress(self, job_id, processed, successful, failed, progress):
        self.progress_calls += 1
        if processed == self.fail_at and self.failures_left > 0:
            self.failures_left -= 1
            raise RuntimeError("database is locked")
        return super().update_progress(job_id, processed, successful, failed, progress)


def _run(service, config):
    async def scenario():
        job_id = await service.create_job(config)
        return await service.wait_for(job_id)

    return asyncio.run(scenario())


class TestProgressMath:
    """Test progress computation."""

    def test_progress_rounds_half_up(self):
        assert compute_progress(1, 3) == 33
        assert compute_progress(2, 3) == 67
        assert compute_progress(1, 8) == 13  # 12.5

    def test_progress_is_100_only_when_done(self):
        assert compute_progress(199, 200) == 99
        assert compute_progress(200, 200) == 100

    def test_empty_job_is_complete(self):
        assert compute_progress(0, 0) == 100

    def test_pairs_are_candidate_major(self):
        assert expand_pairs("all_to_all", ["A", "B"], ["J1", "J2"]) == [
            ("A", "J1"), ("A", "J2"), ("B", "J1"), ("B", "J2")]

    def test_unknown_match_type_has_no_pairs(self):
        assert expand_pairs("mystery", ["A"], ["J1"]) == []


class TestScenarios:
    """End-to-end job scenarios."""

    def test_all_pairs_succeed(self, make_service, scorer_factory, notifier, job_config):
        scorer = scorer_factory(values=[95, 85])
        job = _run(make_service(scorer), job_config(candidates=("A", "B"), jobs=("J1",)))

        assert job.status == COMPLETED
        assert job.total_items == 2
        assert job.processed_items == 2
        assert job.successful_matches == 2
        assert job.failed_items == 0
        assert job.progress == 100
        assert job.started_at is not None
        assert job.completed_at is not None
        assert job.error_message is None
        summary = job.results_summary
        assert summary.total_processed == 2
        assert summary.average_match_score == 90
        assert summary.high_quality_matches == 1
        assert summary.duration_seconds >= 0

        assert len(notifier.completions) == 1
        owner, notice = notifier.completions[0]
        assert owner == "owner-1"
        assert notice.operation_type == "Bulk Matching: Spring hiring"
        assert notice.success_count == 2
        assert notice.failure_count == 0

    def test_pair_failure_does_not_fail_job(self, make_service, scorer_factory, job_config):
        scorer = scorer_factory(values=[70], fail_on={2})
        service = make_service(scorer)
        job = _run(service, job_config(candidates=("A", "B", "C"), jobs=("J1",)))

        assert job.status == COMPLETED
        assert job.processed_items == 3
        assert job.successful_matches == 2
        assert job.failed_items == 1
        assert job.results_summary.average_match_score == 70

        results = service.get_job_results(job.id)
        assert [r.status for r in results] == ["completed", "failed", "completed"]
        assert results[1].candidate_id == "B"
        assert results[1].error_message == "scorer exploded on call 2"
        assert results[1].match_score is None

    def test_empty_selection(self, make_service, notifier, job_config):
        job = _run(make_service(), job_config(candidates=(), jobs=("J1", "J2")))

        assert job.total_items == 0
        assert job.status == COMPLETED
        assert job.progress == 100
        assert job.results_summary.average_match_score == 0
        assert job.results_summary.high_quality_matches == 0
        assert len(notifier.completions) == 1

    def test_cancel_mid_run(self, make_service, scorer_factory, notifier, job_config):
        holder = {}

        def cancel_after_two(n):
            if n == 3:
                holder["service"].cancel_job(holder["job_id"])

        scorer = scorer_factory(on_call=cancel_after_two)
        service = make_service(scorer)
        holder["service"] = service
        # 5 candidates x 2 jobs = 10 pairs
        config = job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2"))

        async def scenario():
            holder["job_id"] = await service.create_job(config)
            return await service.wait_for(holder["job_id"])

        job = asyncio.run(scenario())

        assert job.status == CANCELLED
        assert job.total_items == 10
        assert 2 <= job.processed_items < 10
        assert job.successful_matches + job.failed_items == job.processed_items
        assert job.completed_at is not None
        assert job.results_summary.total_processed == job.processed_items
        assert len(service.repo.list_results(job.id, limit=None)) == job.processed_items
        assert notifier.completions == []

    def test_store_failure_mid_loop_fails_job(self, make_service, session_factory, seed, notifier, job_config):
        flaky = seed(FlakyProgressRepository(session_factory, fail_at=5))
        service = make_service(repository=flaky, store_write_max_retries=2)
        config = job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2"))

        job = _run(service, config)

        assert job.status == FAILED
        assert "database is locked" in job.error_message
        assert job.processed_items == 4
        assert job.completed_at is not None
        assert job.results_summary is None
        assert notifier.completions == []
        assert len(notifier.failures) == 1
        # pair 5: initial attempt + 2 retries, then the same again for the flush before failing
        assert flaky.progress_calls == 4 + 3 + 3


class TestInvariants:
    """Counter and progress invariants observed on every write."""

    def test_counters_consistent_at_every_write(self, make_service, session_factory, seed, scorer_factory, job_config):
        checking = seed(CheckingRepository(session_factory))
        scorer = scorer_factory(values=[50, 91, 99], fail_on={3, 7})
        service = make_service(scorer, repository=checking)
        job = _run(service, job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2")))

        assert job.status == COMPLETED
        assert job.processed_items == job.total_items == 10
        assert checking.snapshots
        previous = 0
        for snap in checking.snapshots:
            assert snap["successful"] + snap["failed"] == snap["processed"]
            assert snap["processed"] <= snap["total"]
            assert snap["rows"] == snap["processed"]
            assert 0 <= snap["progress"] <= 100
            assert snap["progress"] >= previous
            previous = snap["progress"]
        assert all(s["processed"] == 10 for s in checking.snapshots if s["progress"] == 100)

    def test_pairs_scored_in_cross_product_order(self, make_service, scorer_factory, job_config):
        scorer = scorer_factory()
        _run(make_service(scorer), job_config(candidates=("B", "A"), jobs=("J2", "J1")))
        assert scorer.calls == [("B", "J2"), ("B", "J1"), ("A", "J2"), ("A", "J1")]

    def test_candidates_to_job_order(self, make_service, scorer_factory, job_config):
        scorer = scorer_factory()
        job = _run(make_service(scorer), job_config(
            candidates=("A", "B", "C"), jobs=("J1",), match_type="candidates_to_job"))
        assert job.status == COMPLETED
        assert scorer.calls == [("A", "J1"), ("B", "J1"), ("C", "J1")]


class TestFailureBoundaries:
    """Errors outside the per-pair boundary fail the whole job."""

    def test_unknown_candidate_fails_job(self, make_service, scorer_factory, job_config):
        scorer = scorer_factory()
        job = _run(make_service(scorer), job_config(candidates=("A", "ZZZ"), jobs=("J1",)))

        assert job.status == FAILED
        assert "ZZZ" in job.error_message
        assert job.processed_items == 0
        assert scorer.calls == []

    def test_missing_jobs_for_sized_selection_fails_job(self, make_service, job_config):
        # candidates_to_job sizes an empty job list as one job, but there is no pair to score.
        job = _run(make_service(), job_config(candidates=("A", "B"), jobs=(), match_type="candidates_to_job"))

        assert job.total_items == 2
        assert job.status == FAILED
        assert "expects 2" in job.error_message

    def test_unknown_match_type_completes_empty(self, make_service, scorer_factory, job_config):
        scorer = scorer_factory()
        job = _run(make_service(scorer), job_config(match_type="by_vibes"))

        assert job.total_items == 0
        assert job.status == COMPLETED
        assert scorer.calls == []

    def test_transient_store_failure_is_retried(self, make_service, session_factory, seed, job_config):
        flaky = seed(FlakyProgressRepository(session_factory, fail_at=3, failures=1))
        service = make_service(repository=flaky, store_write_max_retries=2)
        job = _run(service, job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1",)))

        assert job.status == COMPLETED
        assert job.processed_items == 5

    def test_notification_failure_keeps_job_completed(self, make_service, notifier, job_config):
        notifier.fail = True
        job = _run(make_service(), job_config())

        assert job.status == COMPLETED
        assert job.results_summary.total_processed == 2

    def test_failed_job_sends_failure_notice(self, make_service, notifier, job_config):
        job = _run(make_service(), job_config(candidates=("A", "NOPE")))

        assert job.status == FAILED
        assert len(notifier.failures) == 1
        owner, operation, message = notifier.failures[0]
        assert owner == "owner-1"
        assert operation == "Bulk Matching: Spring hiring"
        assert "NOPE" in message


class TestLifecycle:
    """Jobs that never start, and jobs already picked up elsewhere."""

    def test_job_cancelled_while_pending_is_not_started(self, make_service, scorer_factory, repo):
        scorer = scorer_factory()
        service = make_service(scorer)
        config = BulkMatchJobConfig(
            owner_id="owner-1", job_name="Spring hiring", match_type="all_to_all",
            source_data={"candidate_ids": ["A"], "job_ids": ["J1"]})
        job_id = repo.create_job(config, 1)
        assert service.cancel_job(job_id) is True

        status = asyncio.run(service.orchestrator.run(job_id))

        assert status == CANCELLED
        assert scorer.calls == []
        job = service.get_job_status(job_id)
        assert job.started_at is None
        assert job.processed_items == 0
        assert job.results_summary is None

    def test_missing_job_is_a_no_op(self, make_service):
        service = make_service()
        assert asyncio.run(service.orchestrator.run("bmj_missing")) is None

    def test_job_already_processing_is_not_rerun(self, make_service, scorer_factory, repo, score_factory):
        scorer = scorer_factory()
        service = make_service(scorer)
        config = BulkMatchJobConfig(
            owner_id="owner-1", job_name="Spring hiring", match_type="all_to_all",
            source_data={"candidate_ids": ["A", "B"], "job_ids": ["J1"]})
        job_id = repo.create_job(config, 2)
        repo.mark_processing(job_id)
        repo.add_result(job_id, "A", "J1", score_factory(80))
        repo.update_progress(job_id, 1, 1, 0, 50)

        status = asyncio.run(service.orchestrator.run(job_id))

        assert status == PROCESSING
        assert scorer.calls == []
        job = service.get_job_status(job_id)
        assert job.processed_items == 1
        assert repo.count_results(job_id) == 1


class TestBatchingAndConcurrency:
    """Progress batching and parallel pair workers."""

    def test_progress_written_in_batches(self, make_service, session_factory, seed, job_config):
        counting = seed(FlakyProgressRepository(session_factory, fail_at=-1))
        service = make_service(
            repository=counting, progress_batch_size=3, progress_flush_interval_ms=10**9)
        job = _run(service, job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2")))

        assert job.status == COMPLETED
        assert job.processed_items == 10
        assert job.progress == 100
        # flushes after pairs 3, 6, 9 and the final one
        assert counting.progress_calls == 4

    def test_parallel_workers_process_every_pair_once(self, make_service, session_factory, seed,
                                                       scorer_factory, job_config):
        checking = seed(CheckingRepository(session_factory))
        scorer = scorer_factory(values=[60, 95], fail_on={4})
        service = make_service(scorer, repository=checking, pair_concurrency=3)
        job = _run(service, job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2")))

        assert job.status == COMPLETED
        assert job.processed_items == 10
        assert job.successful_matches == 9
        assert job.failed_items == 1
        assert sorted(scorer.calls) == sorted(
            (c, j) for c in ("A", "B", "C", "D", "E") for j in ("J1", "J2"))
        results = service.get_job_results(job.id, limit=50)
        assert len(results) == 10
        assert len({(r.candidate_id, r.job_posting_id) for r in results}) == 10
        for snap in checking.snapshots:
            assert snap["successful"] + snap["failed"] == snap["processed"]

    def test_store_failure_in_one_worker_fails_job(self, make_service, session_factory, seed, job_config):
        flaky = seed(FlakyProgressRepository(session_factory, fail_at=4))
        service = make_service(repository=flaky, pair_concurrency=2, store_write_max_retries=0)
        job = _run(service, job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2")))

        assert job.status == FAILED
        assert "database is locked" in job.error_message
        assert job.processed_items < 10

    def test_failure_mid_batch_persists_finished_pairs(self, make_service, session_factory, seed,
                                                       notifier, job_config):
        class FailingInsertRepository(BulkMatchRepository):
            def __init__(self, session_factory, fail_on_insert):
                super().__init__(session_factory)
                self.fail_on_insert = fail_on_insert
                self.inserts = 0

            def add_result(self, *args, **kwargs):
                self.inserts += 1
                if self.inserts == self.fail_on_insert:
                    raise RuntimeError("disk I/O error")
                return super().add_result(*args, **kwargs)

        failing = seed(FailingInsertRepository(session_factory, fail_on_insert=5))
        service = make_service(
            repository=failing, progress_batch_size=3, progress_flush_interval_ms=10**9,
            store_write_max_retries=0)
        job = _run(service, job_config(candidates=("A", "B", "C", "D", "E"), jobs=("J1", "J2")))

        assert job.status == FAILED
        assert "disk I/O error" in job.error_message
        # pairs 1-3 were flushed as a batch; pair 4 only by the flush before failing
        assert job.processed_items == failing.count_results(job.id) == 4
        assert job.successful_matches + job.failed_items == job.processed_items
        assert job.progress == 40
        assert len(notifier.failures) == 1
