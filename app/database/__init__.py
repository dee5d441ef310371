import logging
from .sql import init_db, close_db, check_db_connection, unit_of_work
from .redis import close_redis, health_check as redis_health_check

logger = logging.getLogger(__name__)


def check_database_health(check_redis: bool = True):
    """Check health of the durable store and, when in use, Redis"""
    sql_status = check_db_connection()
    redis_status = redis_health_check()["status"] == "healthy" if check_redis else None

    return {
        "database": sql_status,
        "redis": redis_status,
        "overall": sql_status and redis_status is not False
    }


def close_databases():
    """Close all database connections"""
    try:
        close_db()
        close_redis()
        logger.info("All database connections closed")
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")


__all__ = [
    "init_db",
    "close_databases",
    "check_database_health",
    "unit_of_work",
]
