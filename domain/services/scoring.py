import asyncio
from typing import Any, Awaitable, Callable

from domain.schemas import MatchScore

# A scorer takes a candidate record and a job posting record and returns
# their scores, or raises. Any exception counts as a failed pair.
Scorer = Callable[[Any, Any], Awaitable[MatchScore]]


def with_timeout(scorer: Scorer, seconds: float) -> Scorer:
    """Bound each scorer call; a timeout surfaces as asyncio.TimeoutError."""

    async def _scored(candidate, job_posting) -> MatchScore:
        return await asyncio.wait_for(scorer(candidate, job_posting), timeout=seconds)

    return _scored
