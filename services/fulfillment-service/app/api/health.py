"""
Fulfillment Service — Health endpoint
"""
import asyncio
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings

settings = get_settings()
router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    deps: dict[str, str] = {}
    healthy = True

    try:
        async with request.app.state.engine.connect() as conn:
            await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=settings.HEALTH_CHECK_TIMEOUT)
        deps["database"] = "ok"
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        deps["database"] = f"error: {str(e)[:100]}"
        healthy = False

    redis = request.app.state.redis
    if redis is None:
        deps["redis"] = "disabled"
    else:
        try:
            await asyncio.wait_for(redis.ping(), timeout=settings.HEALTH_CHECK_TIMEOUT)
            deps["redis"] = "ok"
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            deps["redis"] = f"error: {str(e)[:100]}"
            healthy = False

    return JSONResponse(
        content={
            "status": "healthy" if healthy else "degraded",
            "service": settings.SERVICE_NAME,
            "version": settings.SERVICE_VERSION,
            "dependencies": deps,
        },
        status_code=200 if healthy else 503,
    )
