"""ARQ job definitions."""

import uuid
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings
from arq.cron import cron

from genledger.core.config import get_settings
from genledger.core.logging import get_logger

log = get_logger(__name__)


async def _run_with_dlq(
    job_name: str,
    job_id: str | None,
    args: list[Any],
    kwargs: dict[str, Any],
    coro,
) -> Any:
    """Run coroutine; on exception persist to FailedJob then re-raise."""
    try:
        return await coro
    except Exception as e:
        from genledger.models.failed_job import FailedJob
        fid = job_id or str(uuid.uuid4())
        await FailedJob(
            job_name=job_name,
            job_id=fid,
            args=args,
            kwargs=kwargs,
            reason=str(e)[:2000],
        ).insert()
        log.exception("job_failed", job=job_name, job_id=fid, reason=str(e))
        raise


async def reconcile_pending_jobs(ctx: dict[str, Any]) -> dict[str, int]:
    """Cron job: settle generation jobs whose remote task has reached a terminal state."""
    job_id = ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None
    from genledger.worker.cron import run_reconcile_pending_jobs
    return await _run_with_dlq("reconcile_pending_jobs", job_id, [], {}, run_reconcile_pending_jobs())


async def startup(ctx: dict) -> None:
    from genledger.core.logging import configure_logging
    from genledger.db.init import init_db
    configure_logging(debug=get_settings().debug)
    await init_db()


async def shutdown(ctx: dict) -> None:
    pass


def get_redis_settings() -> RedisSettings:
    s = get_settings()
    u = urlparse(s.redis_url)
    return RedisSettings(
        host=u.hostname or "localhost",
        port=u.port or 6379,
        password=u.password,
        database=int(u.path.lstrip("/")) if u.path.lstrip("/") else 0,
    )


class WorkerSettings:
    """arq genledger.worker.tasks.WorkerSettings"""

    functions: list = []
    cron_jobs = [
        cron(reconcile_pending_jobs, second=0),  # every minute at :00
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
