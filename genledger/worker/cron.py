"""Cron: reconcile generation jobs still pending upstream."""

from datetime import datetime, timedelta

from beanie.operators import Set
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from genledger.core.config import Settings, get_settings
from genledger.core.exceptions import AppError
from genledger.core.logging import get_logger
from genledger.models.generation_job import GenerationJob
from genledger.services.generation_api import GenerationApiClient
from genledger.services.reconcile import reconcile_task

log = get_logger(__name__)


async def _mark_checked(job: GenerationJob) -> None:
    try:
        await GenerationJob.find_one(GenerationJob.id == job.id).update(
            Set({"last_checked_at": datetime.utcnow()})
        )
    except PyMongoError:
        log.exception("reconcile_mark_checked_failed", job_id=str(job.id))


async def run_reconcile_pending_jobs(
    settings: Settings | None = None,
    api: GenerationApiClient | None = None,
) -> dict[str, int]:
    """
    One sweep over pending jobs older than reconcile_min_age_seconds. Returns status counts.

    Never-checked jobs come first, then the least recently checked, so a batch
    of long-running tasks does not hide the jobs behind it.
    """
    settings = settings or get_settings()
    owns_api = api is None
    api = api or GenerationApiClient(settings)
    counts = {"succeeded": 0, "failed": 0, "processing": 0, "errors": 0}
    try:
        cutoff = datetime.utcnow() - timedelta(seconds=settings.reconcile_min_age_seconds)
        due = await GenerationJob.find(
            GenerationJob.status == "pending",
            GenerationJob.created_at <= cutoff,
        ).sort(
            [("last_checked_at", ASCENDING), ("created_at", ASCENDING)]
        ).limit(settings.reconcile_batch_size).to_list()
        if due:
            log.info("reconcile_pending_jobs", count=len(due))
        for job in due:
            try:
                result = await reconcile_task(
                    api,
                    job.user_id,
                    job.remote_task_id,
                    job_id=str(job.id),
                )
            except AppError as e:
                counts["errors"] += 1
                log.warning("reconcile_job_error", job_id=str(job.id), code=e.code, error=e.message)
            except PyMongoError:
                counts["errors"] += 1
                log.exception("reconcile_job_store_error", job_id=str(job.id))
            else:
                counts[result.status] += 1
            await _mark_checked(job)
    finally:
        if owns_api:
            await api.aclose()
    return counts
