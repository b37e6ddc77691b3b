"""
Background jobs for the Household Planner.

Shopping list generation can run on an ARQ worker. Jobs are enqueued with
a per-household job id, so at most one generation per household is queued
or running at a time.
"""
import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse
from uuid import UUID

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.constants import result_key_prefix
from arq.jobs import Job, JobStatus

from db.session import get_db_session
from services.context import HouseholdContext
from services.errors import ShoppingListError
from services.shopping_generator import ShoppingListGenerator

logger = logging.getLogger(__name__)

GENERATE_JOB_NAME = "generate_shopping_list_job"


def _redis_settings_from_env() -> RedisSettings:
    redis_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    parsed = urlparse(redis_url)
    db = int(parsed.path.lstrip("/")) if parsed.path and parsed.path != "/" else 0
    return RedisSettings(
        host=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        password=parsed.password,
        database=db,
    )


def generation_job_id(household_id) -> str:
    return f"generate-shopping-list:{household_id}"


async def _release_finished_job(redis_pool: ArqRedis, job_id: str) -> None:
    """
    Drop the kept result of a finished generation.

    arq refuses a job id while its result is stored, which would block the
    household's next generation (such as the answer to a confirmation)
    until the result expires.
    """
    status = await Job(job_id, redis_pool).status()
    if status == JobStatus.complete:
        logger.debug(f"Releasing finished job {job_id}")
        await redis_pool.delete(result_key_prefix + job_id)


def run_generation(
    household_id: str,
    user_id: str,
    member_ids: List[str],
    start_date: str,
    end_date: str,
    replace_existing: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Generate a shopping list in a fresh session.

    Arguments arrive as strings since they travel through Redis.

    Returns:
        Job result dict with status, message and item count
    """
    context = HouseholdContext(household_id=UUID(household_id), user_id=UUID(user_id))
    with get_db_session() as db:
        try:
            result = ShoppingListGenerator(db).generate(
                context,
                [UUID(member_id) for member_id in member_ids],
                date.fromisoformat(start_date),
                date.fromisoformat(end_date),
                replace_existing=replace_existing,
            )
        except ShoppingListError as e:
            logger.error(f"Shopping list job failed for household {household_id}: {e}")
            return {"status": "failed", "error": str(e)}

        return {
            "status": result.status,
            "message": result.message,
            "item_count": len(result.items),
            "existing_item_count": result.existing_item_count,
            "state_version": result.state_version,
        }


async def generate_shopping_list_job(
    ctx,
    household_id: str,
    user_id: str,
    member_ids: List[str],
    start_date: str,
    end_date: str,
    replace_existing: Optional[bool] = None,
) -> Dict[str, Any]:
    logger.info(f"Generate job: starting for household {household_id}")
    result = run_generation(
        household_id, user_id, member_ids, start_date, end_date, replace_existing
    )
    logger.info(f"Generate job: household {household_id} finished with {result['status']}")
    return result


async def enqueue_generation(
    context: HouseholdContext,
    member_ids: List[UUID],
    start_date: date,
    end_date: date,
    replace_existing: Optional[bool] = None,
) -> Optional[str]:
    """
    Queue a generation job.

    Returns:
        Job id, or None when a generation for the household is queued or running
    """
    job_id = generation_job_id(context.household_id)
    redis_pool = await create_pool(_redis_settings_from_env())
    try:
        await _release_finished_job(redis_pool, job_id)
        job = await redis_pool.enqueue_job(
            GENERATE_JOB_NAME,
            str(context.household_id),
            str(context.user_id),
            [str(member_id) for member_id in member_ids],
            start_date.isoformat(),
            end_date.isoformat(),
            replace_existing,
            _job_id=job_id,
        )
    finally:
        await redis_pool.close()
    return job.job_id if job else None
