"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, builds the shared clients and delegates to the job.
"""

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable

from app.config import settings
from app.db.pool import db_pool
from app.dependencies import Clients, build_clients
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.digest_job import start_digest_scheduler
from app.jobs.email_job import run_email_worker
from app.jobs.message_migration_job import migrate_message_parents
from app.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)

JobCoroutine = Callable[[Clients], Awaitable[object]]


async def _run_migration(clients: Clients) -> int:
    return await migrate_message_parents(clients.store)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "email": run_email_worker,
    "digest": start_digest_scheduler,
    "migrate_message_parents": _run_migration,
}


def _resolve_job_name() -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if len(sys.argv) > 1:
        return sys.argv[1].strip().lower()
    return os.getenv("WORKER_JOB", "email").strip().lower()


async def run_worker(job_name: str | None = None, clients: Clients | None = None) -> None:
    """Run the requested background job, building clients when none are given."""
    name = (job_name or _resolve_job_name()).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name)
    if clients is not None:
        await JOB_REGISTRY[name](clients)
        return

    await db_pool.initialize()
    await fast_redis.initialize()
    clients = await build_clients(fast_redis)
    try:
        await JOB_REGISTRY[name](clients)
    finally:
        await clients.close()
        await fast_redis.close()
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    job_name = _resolve_job_name()
    asyncio.run(run_worker(job_name))


if __name__ == "__main__":
    main()
