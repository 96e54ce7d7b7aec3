import uuid
from typing import Optional, Dict, List, Any
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from infra.db.session import SessionLocal
from infra.db.models import (
    BulkMatchJobRecord, BulkMatchResultRecord, CandidateRecord, JobPostingRecord, utcnow)
from domain.schemas import (
    BulkMatchJobConfig, MatchScore, PENDING, PROCESSING, COMPLETED, FAILED, CANCELLED, ACTIVE_STATUSES)


class BulkMatchRepository:
    """Job store for bulk match jobs and their per-pair results.

    Every status-changing write is a conditional UPDATE on the current status,
    so a job that reached a terminal state is never moved again.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def create_job(self, config: BulkMatchJobConfig, total_items: int) -> str:
        jid = f"bmj_{uuid.uuid4().hex}"
        with self._session_factory() as s:
            s.add(BulkMatchJobRecord(
                id=jid,
                owner_id=config.owner_id,
                job_name=config.job_name,
                match_type=config.match_type,
                source_type=config.source_type,
                source_data=config.source_data.model_dump(),
                total_items=total_items,
                processed_items=0,
                successful_matches=0,
                failed_items=0,
                progress=0,
                status=PENDING,
            ))
            s.commit()
        return jid

    def get(self, job_id: str) -> Optional[BulkMatchJobRecord]:
        with self._session_factory() as s:
            return s.get(BulkMatchJobRecord, job_id)

    def get_status(self, job_id: str) -> Optional[str]:
        with self._session_factory() as s:
            return s.execute(
                select(BulkMatchJobRecord.status).where(BulkMatchJobRecord.id == job_id)
            ).scalar_one_or_none()

    def list_jobs(self, owner_id: str, limit: int = 50) -> List[BulkMatchJobRecord]:
        with self._session_factory() as s:
            rows = s.execute(
                select(BulkMatchJobRecord)
                .where(BulkMatchJobRecord.owner_id == owner_id)
                .order_by(BulkMatchJobRecord.created_at.desc(), BulkMatchJobRecord.id)
                .limit(limit)
            ).scalars().all()
            return list(rows)

    def _transition(self, job_id: str, from_statuses, **values) -> bool:
        with self._session_factory() as s:
            res = s.execute(
                update(BulkMatchJobRecord)
                .where(BulkMatchJobRecord.id == job_id,
                       BulkMatchJobRecord.status.in_(from_statuses))
                .values(updated_at=utcnow(), **values)
            )
            s.commit()
            return res.rowcount == 1

    def mark_processing(self, job_id: str) -> bool:
        return self._transition(job_id, (PENDING,), status=PROCESSING, started_at=utcnow())

    def update_progress(self, job_id: str, processed: int, successful: int, failed: int, progress: int) -> bool:
        # A cancelled job still gets the counters of the pairs it finished.
        # Counters only move forward.
        with self._session_factory() as s:
            res = s.execute(
                update(BulkMatchJobRecord)
                .where(BulkMatchJobRecord.id == job_id,
                       BulkMatchJobRecord.status.in_((PROCESSING, CANCELLED)),
                       BulkMatchJobRecord.processed_items <= processed)
                .values(
                    processed_items=processed,
                    successful_matches=successful,
                    failed_items=failed,
                    progress=progress,
                    updated_at=utcnow(),
                )
            )
            s.commit()
            return res.rowcount == 1

    def complete(self, job_id: str, summary: Dict[str, Any]) -> bool:
        return self._transition(
            job_id, (PROCESSING,),
            status=COMPLETED, results_summary=summary, completed_at=utcnow())

    def record_cancelled_summary(self, job_id: str, summary: Dict[str, Any]) -> bool:
        return self._transition(job_id, (CANCELLED,), results_summary=summary)

    def fail(self, job_id: str, error: str) -> bool:
        return self._transition(
            job_id, ACTIVE_STATUSES,
            status=FAILED, error_message=error, completed_at=utcnow())

    def cancel(self, job_id: str) -> bool:
        return self._transition(
            job_id, ACTIVE_STATUSES, status=CANCELLED, completed_at=utcnow())

    def add_result(
        self,
        job_id: str,
        candidate_id: str,
        job_posting_id: str,
        score: Optional[MatchScore] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Append the single result row of a pair.

        Returns False when the pair already has a row, e.g. when a retried
        insert had in fact been committed.
        """
        rec = BulkMatchResultRecord(
            job_id=job_id,
            candidate_id=candidate_id,
            job_posting_id=job_posting_id,
            processed_at=utcnow(),
        )
        if score is not None:
            rec.status = COMPLETED
            rec.match_score = score.match_score
            rec.skill_match_score = score.skill_match_score
            rec.culture_fit_score = score.culture_fit_score
            rec.wellbeing_match_score = score.wellbeing_match_score
            rec.match_breakdown = score.match_breakdown.model_dump()
            rec.match_explanation = score.match_explanation
        else:
            rec.status = FAILED
            rec.error_message = error or "Unknown error"
        with self._session_factory() as s:
            s.add(rec)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                return False
        return True

    def list_results(self, job_id: str, limit: Optional[int] = 100) -> List[BulkMatchResultRecord]:
        with self._session_factory() as s:
            stmt = (select(BulkMatchResultRecord)
                    .where(BulkMatchResultRecord.job_id == job_id)
                    .order_by(BulkMatchResultRecord.id))
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(s.execute(stmt).scalars().all())

    def count_results(self, job_id: str) -> int:
        with self._session_factory() as s:
            return s.execute(
                select(func.count(BulkMatchResultRecord.id))
                .where(BulkMatchResultRecord.job_id == job_id)
            ).scalar_one()

    def completed_match_scores(self, job_id: str) -> List[int]:
        with self._session_factory() as s:
            return list(s.execute(
                select(BulkMatchResultRecord.match_score)
                .where(BulkMatchResultRecord.job_id == job_id,
                       BulkMatchResultRecord.status == COMPLETED,
                       BulkMatchResultRecord.match_score.is_not(None))
            ).scalars().all())

    # Profile lookups used to resolve a job's pairs.

    def save_candidate(self, candidate_id: str, name: str, **fields) -> str:
        with self._session_factory() as s:
            s.merge(CandidateRecord(id=str(candidate_id), name=name, **fields))
            s.commit()
        return str(candidate_id)

    def save_job_posting(self, job_posting_id: str, title: str, **fields) -> str:
        with self._session_factory() as s:
            s.merge(JobPostingRecord(id=str(job_posting_id), title=title, **fields))
            s.commit()
        return str(job_posting_id)

    def load_candidates(self, ids: List[str]) -> List[CandidateRecord]:
        return self._load_in_order(CandidateRecord, ids)

    def load_job_postings(self, ids: List[str]) -> List[JobPostingRecord]:
        return self._load_in_order(JobPostingRecord, ids)

    def _load_in_order(self, model, ids: List[str]) -> list:
        if not ids:
            return []
        with self._session_factory() as s:
            found = {r.id: r for r in s.execute(
                select(model).where(model.id.in_(ids))).scalars().all()}
        missing = [i for i in ids if i not in found]
        if missing:
            raise KeyError(f"unknown {model.__tablename__} ids: {missing}")
        return [found[i] for i in ids]
