import math
from typing import Dict, Iterable

from domain.schemas import HIGH_QUALITY_THRESHOLD


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_scores(scores: Iterable[int]) -> Dict[str, int]:
    """Single pass over completed match scores."""
    count = 0
    total = 0
    high_quality = 0
    for score in scores:
        count += 1
        total += score
        if score >= HIGH_QUALITY_THRESHOLD:
            high_quality += 1
    return {
        "average_match_score": round_half_up(total / count) if count else 0,
        "high_quality_matches": high_quality,
    }


class ResultAggregator:
    """Summary statistics over a job's result rows, computed once at termination."""

    def __init__(self, repo):
        self.repo = repo

    def summarize(self, job_id: str) -> Dict[str, int]:
        return summarize_scores(self.repo.completed_match_scores(job_id))
