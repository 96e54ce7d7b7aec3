import csv
import io
from typing import Iterable

EXPORT_HEADERS = [
    "Candidate ID",
    "Job ID",
    "Status",
    "Overall Match Score (%)",
    "Skills Match (%)",
    "Culture Fit (%)",
    "Wellbeing Match (%)",
    "Explanation",
    "Error",
    "Processed At",
]


def _cell(value) -> str:
    return "" if value is None else str(value)


def results_to_csv(results: Iterable) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(EXPORT_HEADERS)
    for r in results:
        writer.writerow([
            r.candidate_id,
            r.job_posting_id,
            r.status,
            _cell(r.match_score),
            _cell(r.skill_match_score),
            _cell(r.culture_fit_score),
            _cell(r.wellbeing_match_score),
            _cell(r.match_explanation),
            _cell(r.error_message),
            r.processed_at.isoformat() if r.processed_at else "",
        ])
    return buf.getvalue()
