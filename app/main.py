import argparse
import asyncio
import json

from app.settings import settings
from app.logging import configure_logging
from domain.services.bulk_matching import BulkMatchingService
from infra.db.session import init_db


def build_service(**kwargs) -> BulkMatchingService:
    configure_logging()
    init_db()
    return BulkMatchingService(**kwargs)


async def run_once(config: dict, **kwargs) -> dict:
    """Submit one job, wait for it to finish, and return its final status."""
    service = build_service(**kwargs)
    job_id = await service.create_job(config)
    try:
        status = await service.wait_for(job_id)
    finally:
        await service.shutdown(timeout=5)
    return status.model_dump(mode="json")


def _split_ids(raw: str | None):
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=f"{settings.APP_NAME}: run one bulk match job")
    parser.add_argument("--owner", required=True, help="Owner id to notify")
    parser.add_argument("--name", required=True, help="Job name")
    parser.add_argument("--match-type", default="all_to_all",
                        choices=["candidates_to_job", "jobs_to_candidate", "all_to_all"])
    parser.add_argument("--candidates", help="Comma-separated candidate ids")
    parser.add_argument("--jobs", help="Comma-separated job posting ids")
    args = parser.parse_args()
    result = asyncio.run(run_once({
        "owner_id": args.owner,
        "job_name": args.name,
        "match_type": args.match_type,
        "source_type": "api",
        "source_data": {
            "candidate_ids": _split_ids(args.candidates),
            "job_ids": _split_ids(args.jobs),
        },
    }))
    print(json.dumps(result, indent=2))
