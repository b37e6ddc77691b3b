"""
ARQ worker for Household Planner background jobs.

Run with: arq worker.worker.WorkerSettings
"""
import logging

import redis

from config import settings
from logging_config import setup_logging
from services.change_feed import change_feed
from worker.jobs import _redis_settings_from_env, generate_shopping_list_job

logger = logging.getLogger(__name__)


async def startup(ctx) -> None:
    setup_logging(log_level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR or None)

    # Generation runs in this process; its changes reach API subscribers only over Redis
    if settings.ENABLE_REDIS_CHANGES:
        client = redis.Redis.from_url(settings.REDIS_URL)
        change_feed.enable_redis(client)
        ctx["change_redis"] = client
        logger.info("Worker publishes shopping list changes over Redis")


async def shutdown(ctx) -> None:
    client = ctx.pop("change_redis", None)
    if client is not None:
        change_feed.enable_redis(None)
        client.close()


async def health_check(ctx) -> str:
    """Health check job for verifying worker connectivity."""
    return "ok"


class WorkerSettings:
    """ARQ Worker configuration."""

    redis_settings = _redis_settings_from_env()

    functions = [generate_shopping_list_job, health_check]
    on_startup = startup
    on_shutdown = shutdown

    max_jobs = 10
    job_timeout = 5 * 60

    # Results stay readable for an hour; enqueue_generation releases a
    # finished household job id before reusing it
    keep_result = 3600
