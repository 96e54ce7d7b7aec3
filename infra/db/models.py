from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, Text, DateTime, ForeignKey, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from infra.db.session import Base


def utcnow() -> datetime:
    # SQLite stores naive datetimes; keep everything naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CandidateRecord(Base):
    __tablename__ = "candidates"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    skills = Column(Text, nullable=True)
    years_of_experience = Column(Integer, nullable=True)
    education = Column(Text, nullable=True)

class JobPostingRecord(Base):
    __tablename__ = "job_postings"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    required_skills = Column(Text, nullable=True)
    experience_required = Column(Integer, nullable=True)

class BulkMatchJobRecord(Base):
    __tablename__ = "bulk_match_jobs"
    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=False, index=True)
    job_name = Column(String, nullable=False)
    match_type = Column(String, nullable=False)   # candidates_to_job | jobs_to_candidate | all_to_all
    source_type = Column(String, nullable=False)  # file_upload | database_selection | api
    source_data = Column(JSON, nullable=False)
    total_items = Column(Integer, nullable=False, default=0)
    processed_items = Column(Integer, nullable=False, default=0)
    successful_matches = Column(Integer, nullable=False, default=0)
    failed_items = Column(Integer, nullable=False, default=0)
    progress = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    results_summary = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    results = relationship("BulkMatchResultRecord", back_populates="job")

class BulkMatchResultRecord(Base):
    __tablename__ = "bulk_match_results"
    __table_args__ = (
        UniqueConstraint("job_id", "candidate_id", "job_posting_id", name="uq_bulk_match_pair"),
        Index("ix_bulk_match_results_match_score", "match_score"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, ForeignKey("bulk_match_jobs.id"), nullable=False, index=True)
    candidate_id = Column(String, nullable=False)
    job_posting_id = Column(String, nullable=False)
    status = Column(String, nullable=False)   # completed | failed
    match_score = Column(Integer, nullable=True)
    skill_match_score = Column(Integer, nullable=True)
    culture_fit_score = Column(Integer, nullable=True)
    wellbeing_match_score = Column(Integer, nullable=True)
    match_breakdown = Column(JSON, nullable=True)
    match_explanation = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=False, default=utcnow)
    job = relationship("BulkMatchJobRecord", back_populates="results")
