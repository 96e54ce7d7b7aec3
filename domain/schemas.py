from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, Dict, List, Literal

MATCH_TYPES = ("candidates_to_job", "jobs_to_candidate", "all_to_all")

PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"
ACTIVE_STATUSES = (PENDING, PROCESSING)
TERMINAL_STATUSES = (COMPLETED, FAILED, CANCELLED)

HIGH_QUALITY_THRESHOLD = 90


def _as_id_list(value):
    # A selection is a set of identifiers; keep first-seen order.
    if value is None:
        return []
    seen = set()
    out: List[str] = []
    for v in value:
        key = str(v)
        if key not in seen:
            seen.add(key)
            out.append(key)
    return out


class SourceData(BaseModel):
    candidate_ids: List[str] = Field(default_factory=list)
    job_ids: List[str] = Field(default_factory=list)
    filters: Optional[Dict] = None

    @field_validator("candidate_ids", "job_ids", mode="before")
    @classmethod
    def _ids_as_strings(cls, value):
        return _as_id_list(value)


class BulkMatchJobConfig(BaseModel):
    owner_id: str
    job_name: str = Field(..., min_length=1)
    # Unknown match types are accepted and size to zero pairs.
    match_type: str
    source_type: Literal["file_upload", "database_selection", "api"] = "database_selection"
    source_data: SourceData = Field(default_factory=SourceData)

    @field_validator("owner_id", mode="before")
    @classmethod
    def _owner_as_string(cls, value):
        return str(value)


class MatchBreakdown(BaseModel):
    strengths: List[str] = Field(default_factory=list)
    gaps: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)

    @field_validator("strengths", "gaps", "recommendations", mode="before")
    @classmethod
    def _ensure_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        if isinstance(value, list):
            return [str(item) for item in value if item is not None]
        raise ValueError("breakdown entries must be a string or list of strings")


class MatchScore(BaseModel):
    """Scores for one (candidate, job posting) pair, as returned by a scorer."""

    model_config = ConfigDict(populate_by_name=True)

    match_score: int = Field(..., ge=0, le=100, alias="matchScore")
    skill_match_score: int = Field(..., ge=0, le=100, alias="skillMatchScore")
    culture_fit_score: int = Field(..., ge=0, le=100, alias="cultureFitScore")
    wellbeing_match_score: int = Field(..., ge=0, le=100, alias="wellbeingMatchScore")
    match_breakdown: MatchBreakdown = Field(default_factory=MatchBreakdown, alias="matchBreakdown")
    match_explanation: str = Field("", alias="matchExplanation")


class ResultsSummary(BaseModel):
    total_processed: int
    successful_matches: int
    failed_items: int
    duration_seconds: int
    average_match_score: int
    high_quality_matches: int


class JobStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    job_name: str
    match_type: str
    source_type: str
    source_data: SourceData
    status: str
    total_items: int
    processed_items: int
    successful_matches: int
    failed_items: int
    progress: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    results_summary: Optional[ResultsSummary] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class MatchResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: str
    candidate_id: str
    job_posting_id: str
    status: str
    match_score: Optional[int] = None
    skill_match_score: Optional[int] = None
    culture_fit_score: Optional[int] = None
    wellbeing_match_score: Optional[int] = None
    match_breakdown: Optional[MatchBreakdown] = None
    match_explanation: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None


class CompletionNotice(BaseModel):
    operation_type: str
    total_processed: int
    success_count: int
    failure_count: int
    duration_seconds: int
