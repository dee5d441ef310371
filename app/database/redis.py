"""
Redis connection management

Backs the chat cache store, the rate limiter counters and room broadcasts.
"""

import time
from typing import Optional
import redis
from redis import ConnectionPool
from redis.exceptions import ConnectionError

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

redis_client: Optional[redis.Redis] = None
redis_pool: Optional[ConnectionPool] = None


def create_redis_pool() -> ConnectionPool:
    try:
        pool = ConnectionPool.from_url(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            retry_on_timeout=settings.redis_retry_on_timeout,
            socket_timeout=settings.redis_socket_timeout,
            socket_connect_timeout=settings.redis_socket_timeout,
            decode_responses=True,
            encoding='utf-8'
        )

        logger.info(f"Redis connection pool created with max {settings.redis_max_connections} connections")
        return pool

    except Exception as e:
        logger.error(f"Failed to create Redis connection pool: {e}")
        raise


def init_redis() -> redis.Redis:
    """Open the pool and verify the server answers"""
    global redis_client, redis_pool

    try:
        redis_pool = create_redis_pool()
        redis_client = redis.Redis(connection_pool=redis_pool)
        redis_client.ping()

        info = redis_client.info()
        logger.info(f"Redis connection initialized (server {info.get('redis_version', 'unknown')})")
        return redis_client

    except ConnectionError as e:
        logger.error(f"Redis connection failed: {e}")
        raise
    except Exception as e:
        logger.error(f"Redis initialization failed: {e}")
        raise


def close_redis():
    global redis_client, redis_pool

    try:
        if redis_client:
            redis_client.close()
            logger.info("Redis client closed")

        if redis_pool:
            redis_pool.disconnect()
            logger.info("Redis connection pool closed")

    except Exception as e:
        logger.error(f"Error closing Redis connections: {e}")
    finally:
        redis_client = None
        redis_pool = None


def get_redis() -> redis.Redis:
    if redis_client is None:
        return init_redis()
    return redis_client


def health_check(client: Optional[redis.Redis] = None) -> dict:
    try:
        client = client or get_redis()

        start_time = time.perf_counter()
        client.ping()
        ping_time = (time.perf_counter() - start_time) * 1000

        info = client.info()

        return {
            "status": "healthy",
            "ping_ms": round(ping_time, 2),
            "version": info.get("redis_version", "unknown"),
            "used_memory": info.get("used_memory_human", "unknown"),
            "connected_clients": info.get("connected_clients", 0),
        }

    except Exception as e:
        logger.error(f"Redis health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e)
        }
