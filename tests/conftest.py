"""
Pytest configuration and shared fixtures.
"""

import asyncio
from typing import Callable, List, Optional

import pytest

from domain.schemas import CompletionNotice, MatchScore
from domain.services.bulk_matching import BulkMatchingService
from infra.db.session import init_db, make_engine, make_session_factory
from infra.notifications.notifier import Notifier
from infra.repositories.bulk_match_repository import BulkMatchRepository

CANDIDATE_IDS = ["A", "B", "C", "D", "E"]
JOB_POSTING_IDS = ["J1", "J2"]


def make_score(value: int, **overrides) -> MatchScore:
    fields = dict(
        match_score=value,
        skill_match_score=value,
        culture_fit_score=value,
        wellbeing_match_score=value,
        match_breakdown={"strengths": ["python"], "gaps": [], "recommendations": []},
        match_explanation=f"scored {value}",
    )
    fields.update(overrides)
    return MatchScore(**fields)


class FakeScorer:
    """Scores pairs from a list of values and fails on chosen call numbers (1-based)."""

    def __init__(self, values: Optional[List[int]] = None, fail_on=(), on_call: Optional[Callable] = None):
        self.values = values or [80]
        self.fail_on = set(fail_on)
        self.on_call = on_call
        self.calls: List[tuple] = []

    async def __call__(self, candidate, job_posting) -> MatchScore:
        self.calls.append((candidate.id, job_posting.id))
        n = len(self.calls)
        if self.on_call is not None:
            self.on_call(n)
        await asyncio.sleep(0)
        if n in self.fail_on:
            raise RuntimeError(f"scorer exploded on call {n}")
        return make_score(self.values[(n - 1) % len(self.values)])


class RecordingNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.completions: List[tuple] = []
        self.cancellations: List[tuple] = []
        self.failures: List[tuple] = []

    async def notify_completion(self, owner_id: str, notice: CompletionNotice) -> None:
        if self.fail:
            raise ConnectionError("notification service down")
        self.completions.append((owner_id, notice))

    async def notify_cancelled(self, owner_id: str, notice: CompletionNotice) -> None:
        self.cancellations.append((owner_id, notice))

    async def notify_failure(self, owner_id: str, operation_type: str, error_message: str) -> None:
        self.failures.append((owner_id, operation_type, error_message))


@pytest.fixture
def session_factory(tmp_path):
    """Session factory bound to a temporary SQLite database."""
    engine = make_engine(str(tmp_path / "test.sqlite3"))
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


def _seed(repo: BulkMatchRepository) -> BulkMatchRepository:
    for i, cid in enumerate(CANDIDATE_IDS):
        repo.save_candidate(cid, f"Candidate {cid}", skills="Python, SQL", years_of_experience=i + 1)
    for jid in JOB_POSTING_IDS:
        repo.save_job_posting(jid, f"Engineer {jid}", required_skills="Python", experience_required=2)
    return repo


@pytest.fixture
def repo(session_factory) -> BulkMatchRepository:
    """Repository over the temporary database, seeded with candidates and job postings."""
    return _seed(BulkMatchRepository(session_factory))


@pytest.fixture
def seed():
    return _seed


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def scorer_factory():
    return FakeScorer


@pytest.fixture
def score_factory():
    return make_score


@pytest.fixture
def make_service(repo, notifier):
    """Build a service with fast, deterministic defaults for tests."""

    def _make(scorer=None, repository=None, notifier_override=None, **options) -> BulkMatchingService:
        options.setdefault("store_write_backoff_s", 0)
        options.setdefault("progress_batch_size", 1)
        return BulkMatchingService(
            repository or repo,
            scorer or FakeScorer(),
            notifier_override or notifier,
            **options,
        )

    return _make


@pytest.fixture
def job_config():
    def _config(candidates=("A", "B"), jobs=("J1",), match_type="all_to_all", owner="owner-1"):
        return {
            "owner_id": owner,
            "job_name": "Spring hiring",
            "match_type": match_type,
            "source_type": "database_selection",
            "source_data": {"candidate_ids": list(candidates), "job_ids": list(jobs)},
        }

    return _config
