"""ARQ job definitions."""

import uuid
from typing import Any
from urllib.parse import urlparse

from arq.connections import RedisSettings
from arq.cron import cron

from registrar.core.config import get_settings
from registrar.core.logging import configure_logging, get_logger
from registrar.db.init import init_db
from registrar.models.failed_job import FailedJob
from registrar.worker.cron import run_expire_overdue_requests, run_reprocess_webhook_events

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


def _job_id(ctx: dict[str, Any]) -> str | None:
    return ctx.get("job_id") if isinstance(ctx.get("job_id"), str) else None


async def expire_overdue_requests(ctx: dict[str, Any]) -> int:
    """Cron job: pending_payment requests past their deadline -> payment_expired."""
    return await _run_with_dlq("expire_overdue_requests", _job_id(ctx), [], {}, run_expire_overdue_requests())


async def reprocess_webhook_events(ctx: dict[str, Any]) -> int:
    """Cron job: retry webhook events left processed=False."""
    return await _run_with_dlq("reprocess_webhook_events", _job_id(ctx), [], {}, run_reprocess_webhook_events())


async def startup(ctx: dict) -> None:
    configure_logging(debug=get_settings().debug)
    await init_db()
    log.info("worker_startup")


async def shutdown(ctx: dict) -> None:
    log.info("worker_shutdown")


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
    functions = [expire_overdue_requests, reprocess_webhook_events]
    cron_jobs = [
        cron(expire_overdue_requests, minute={0, 15, 30, 45}, second=0),
        cron(reprocess_webhook_events, minute=set(range(0, 60, 5)), second=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
