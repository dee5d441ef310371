"""
Room Chat Core - FastAPI Application

Rooms, presence, the message pipeline, moderation and reports behind one
HTTP surface. Room events are fanned out over Redis pub/sub.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

import app.api as api_package
from app.api import include_routers
from app.core.clock import SystemClock
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.database import close_databases, init_db
from app.database.cache_store import MemoryCacheStore, RedisCacheStore
from app.database.redis import init_redis
from app.database.sql import SessionLocal
from app.middleware.error_handler import register_exception_handlers
from app.middleware.logging_middleware import LoggingMiddleware
from app.services import ChatServices, build_services
from app.services.broadcast import NullBroadcastPublisher, RedisBroadcastPublisher

logger = get_logger(__name__)


def build_default_services() -> ChatServices:
    """Wire the services against the configured cache backend"""
    clock = SystemClock()
    if settings.cache_backend == "redis":
        client = init_redis()
        return build_services(RedisCacheStore(client), RedisBroadcastPublisher(client), clock)
    return build_services(MemoryCacheStore(clock), NullBroadcastPublisher(log_events=True), clock)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    # Startup
    logger.info(f"{settings.app_name} starting up (cache backend: {settings.cache_backend})")
    owns_resources = getattr(app.state, "services", None) is None
    if owns_resources:
        init_db()
        app.state.services = build_default_services()
        app.state.session_factory = SessionLocal

    yield

    # Shutdown
    logger.info(f"{settings.app_name} shutting down")
    if owns_resources:
        close_databases()


def create_app(
    services: Optional[ChatServices] = None,
    session_factory: Optional[sessionmaker] = None,
) -> FastAPI:
    """
    Build the application.

    Passing `services` and `session_factory` skips the startup wiring, which
    is how tests run the app against an in-memory store and a fixed clock.
    """
    setup_logging()

    application = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan
    )
    if services is not None:
        application.state.services = services
        application.state.session_factory = session_factory or SessionLocal

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    application.add_middleware(LoggingMiddleware, slow_request_threshold_ms=1000)

    register_exception_handlers(application)

    # Include routers
    include_routers(application, "api", api_package.__path__)

    @application.get("/")
    def root():
        return {
            "service": settings.app_name,
            "version": settings.version,
            "status": "running"
        }

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
