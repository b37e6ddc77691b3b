import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware

from config import settings
from logging_config import setup_logging, get_logger
from routers import meal_plan, meals, products, shopping_list
from db.init_db import init_db
from services.change_feed import change_feed

# Setup logging on startup
setup_logging(log_level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR or None)
logger = get_logger(__name__)


async def _start_redis_changes() -> asyncio.Task:
    """Publish shopping list changes on Redis and relay other processes' changes."""
    import redis
    import redis.asyncio as aioredis

    change_feed.enable_redis(redis.Redis.from_url(settings.REDIS_URL))
    async_client = aioredis.from_url(settings.REDIS_URL)
    return asyncio.create_task(change_feed.relay_from_redis(async_client))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize database schema on startup
    init_db()

    relay_task = None
    if settings.ENABLE_REDIS_CHANGES:
        try:
            relay_task = await _start_redis_changes()
            logger.info("Shopping list changes fan out over Redis")
        except Exception as e:
            logger.warning(f"Redis change fan-out unavailable, using in-process delivery: {e}")

    yield

    if relay_task is not None:
        relay_task.cancel()


app = FastAPI(
    title=settings.API_TITLE,
    version=settings.API_VERSION,
    redirect_slashes=False,  # Disable trailing slash redirects that cause HTTPS->HTTP downgrade
    lifespan=lifespan,
)

# CORS configuration - Allow requests from the web client and local development
logger.info(f"Enabling CORS for origins: {settings.allowed_origins_list}")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Middleware for request/response logging and error handling
class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> JSONResponse:
        """Log request details and measure response time."""
        start_time = time.time()
        request_id = request.headers.get("x-request-id", "unknown")

        # Log request
        logger.info(
            f"[{request_id}] {request.method} {request.url.path} - "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
            duration = time.time() - start_time

            # Log response
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} "
                f"completed with status {response.status_code} in {duration:.3f}s"
            )

            return response

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"[{request_id}] {request.method} {request.url.path} "
                f"failed after {duration:.3f}s: {str(e)}",
                exc_info=True,
            )

            # Re-raise so FastAPI's error handling still maps the status code
            raise


app.add_middleware(LoggingMiddleware)


app.include_router(products.router)
app.include_router(meals.router)
app.include_router(meal_plan.router)
app.include_router(shopping_list.router)


@app.get("/")
def health_check() -> dict:
    """Health check endpoint."""
    logger.debug("Health check called")
    return {"status": "ok", "version": settings.API_VERSION}
