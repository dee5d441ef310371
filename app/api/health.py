from fastapi import APIRouter, HTTPException, Request

from app.database import check_database_health
from app.utils.time_utils import utcnow

router = APIRouter()


@router.get("/health")
def health_check(request: Request):
    """Application health check endpoint"""
    uses_redis = request.app.state.services.settings.cache_backend == "redis"
    try:
        db_health = check_database_health(check_redis=uses_redis)
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail=f"Health check failed: {str(e)}"
        )

    return {
        "status": "healthy" if db_health["overall"] else "unhealthy",
        "timestamp": utcnow(),
        "databases": {
            "database": "connected" if db_health["database"] else "disconnected",
            "redis": "not used" if db_health["redis"] is None
            else ("connected" if db_health["redis"] else "disconnected"),
        },
        "service": "room-chat-core"
    }


@router.get("/health/ready")
def readiness_check(request: Request):
    """Readiness probe endpoint"""
    uses_redis = request.app.state.services.settings.cache_backend == "redis"
    db_health = check_database_health(check_redis=uses_redis)

    if not db_health["overall"]:
        raise HTTPException(
            status_code=503,
            detail="Service not ready - database connections failed"
        )

    return {"status": "ready"}


@router.get("/health/live")
def liveness_check():
    """Liveness probe endpoint"""
    return {"status": "alive", "timestamp": utcnow()}
