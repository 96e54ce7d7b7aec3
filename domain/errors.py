class BulkMatchError(Exception):
    """Base error for the bulk matching engine."""


class JobNotFoundError(BulkMatchError, KeyError):
    def __init__(self, job_id: str):
        super().__init__(f"bulk match job not found: {job_id}")
        self.job_id = job_id

    def __str__(self) -> str:
        return self.args[0]


class JobTooLargeError(BulkMatchError, ValueError):
    """Raised at submission when a job exceeds the configured pair cap."""

    def __init__(self, total_items: int, limit: int):
        super().__init__(
            f"job would score {total_items} pairs, above the limit of {limit}")
        self.total_items = total_items
        self.limit = limit


class PairResolutionError(BulkMatchError):
    """Candidate or job identifiers could not be resolved into pairs."""


class StoreWriteError(BulkMatchError):
    """A job store write kept failing after bounded retries."""


class ScorerError(BulkMatchError):
    """The scorer could not produce a usable score for a pair."""
