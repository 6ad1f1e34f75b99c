"""Health check endpoints for the chat API."""

from typing import Any

import redis.asyncio as redis
from fastapi import APIRouter
from sqlalchemy import text

from grounded_chat.config import settings
from grounded_chat.db.database import engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Basic health check - returns ok if the service is running."""
    return {"status": "ok"}


@router.get("/health/ready")
async def ready() -> dict[str, Any]:
    """
    Readiness check - verifies dependent services are available.

    Checks:
    - Database: knowledge store connection
    - Redis: rate limiter backend (only when RATE_LIMIT_BACKEND is redis)
    """
    services: dict[str, str] = {}
    all_ok = True

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        services["database"] = "ok"
    except Exception as e:
        services["database"] = f"error: {type(e).__name__}"
        all_ok = False

    if settings.RATE_LIMIT_BACKEND.lower() == "redis":
        try:
            redis_client = redis.from_url(settings.REDIS_URL)
            pong = await redis_client.ping()
            await redis_client.aclose()
            if pong:
                services["redis"] = "ok"
            else:
                services["redis"] = "error: no response"
                all_ok = False
        except Exception as e:
            services["redis"] = f"error: {type(e).__name__}"
            all_ok = False
    else:
        services["rate_limiter"] = "ok (in-memory)"

    status = "ready" if all_ok else "degraded"
    return {"status": status, "services": services}
