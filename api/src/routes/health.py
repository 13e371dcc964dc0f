from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError
import httpx

from api.src.config import get_settings
from api.src.db.database import get_db
from api.src.services import clients, events

settings = get_settings()

router = APIRouter(tags=["health"])

async def _database_status(db: AsyncSession) -> str:
    try:
        await db.execute(text("SELECT 1"))
        return "healthy"
    except SQLAlchemyError as e:
        return f"unhealthy: {e}"

async def _redis_status() -> str:
    try:
        await events.publisher.client.ping()
        return "healthy"
    except RedisError as e:
        return f"unhealthy: {e}"

async def _service_status(base_url: str) -> str:
    """Status reported by a collaborating service's own /health."""
    try:
        async with clients.http_client(settings.control_timeout) as client:
            response = await client.get(f"{base_url}/health")
            response.raise_for_status()
            return response.json().get("status", "unknown")
    except (httpx.HTTPError, ValueError) as e:
        return f"unreachable: {e}"

@router.get("/health")
async def health_check():
    return {"status": "healthy", "service": "launchpad-api"}

@router.get("/health/db")
async def db_health_check(db: AsyncSession = Depends(get_db)):
    status = await _database_status(db)
    return {"status": status.split(":")[0], "database": status}

@router.get("/health/redis")
async def redis_health_check():
    status = await _redis_status()
    return {"status": status.split(":")[0], "redis": status}

@router.get("/health/all")
async def full_health_check(db: AsyncSession = Depends(get_db)):
    """Combined health of the API, its stores and the build and deploy services."""
    health = {
        "api": "healthy",
        "database": await _database_status(db),
        "redis": await _redis_status(),
        "builder": await _service_status(settings.builder_url),
        "deploy_engine": await _service_status(settings.deploy_engine_url),
    }
    overall = "healthy" if all(v == "healthy" for v in health.values()) else "degraded"
    return {"status": overall, "services": health}
