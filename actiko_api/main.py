from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis

from actiko_api import models  # noqa: F401
from actiko_api.api.routes.activities import router as activities_router
from actiko_api.api.routes.activity_logs import router as activity_logs_router
from actiko_api.api.routes.goals import router as goals_router
from actiko_api.api.routes.sync import router as sync_router
from actiko_api.api.routes.tasks import router as tasks_router
from actiko_api.core.config import settings
from actiko_api.core.exceptions import register_exception_handlers
from actiko_api.core.logging import setup_json_logging
from actiko_api.core.rate_limit import RateLimitMiddleware
from actiko_api.core.request_logging import RequestLoggingMiddleware

setup_json_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    app.state.redis = redis
    try:
        yield
    finally:
        await redis.aclose()


app = FastAPI(title="actiko api", lifespan=lifespan)
register_exception_handlers(app)
allowed_origins = [item.strip() for item in settings.cors_allowed_origins.split(",") if item.strip()]
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-Client-Version"],
)
app.include_router(activities_router)
app.include_router(activity_logs_router)
app.include_router(goals_router)
app.include_router(tasks_router)
app.include_router(sync_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {
        "status": "ok",
        "env": settings.app_env,
        "commit": settings.git_sha or "unknown",
    }
