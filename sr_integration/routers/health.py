"""
Health check router with database and Redis connectivity verification.
"""
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import redis

from sr_integration.db.session import get_db
from sr_integration.core.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic liveness check - always returns OK."""
    return {"status": "ok"}


@router.get("/api/health")
def api_health_check(db: Session = Depends(get_db)):
    """
    Readiness check for the SR webhook:
    - Database connectivity (required: sales cannot be stored without it)
    - Redis connectivity (optional, reported only)

    Returns 503 when the database is unreachable so the SR agent backs off
    and re-sends later.
    """
    health_status = {
        "status": "ok",
        "services": {}
    }
    is_healthy = True

    try:
        db.execute(text("SELECT 1"))
        health_status["services"]["database"] = {"status": "ok"}
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = {"status": "error", "message": str(e)}
        is_healthy = False

    try:
        redis_client = redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
        redis_client.ping()
        health_status["services"]["redis"] = {"status": "ok"}
    except redis.ConnectionError:
        health_status["services"]["redis"] = {"status": "unavailable", "message": "Redis not connected"}
    except redis.RedisError as e:
        health_status["services"]["redis"] = {"status": "error", "message": str(e)}

    if not is_healthy:
        health_status["status"] = "unhealthy"
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=health_status
        )

    return health_status
