from typing import Generator
import logging
from contextlib import contextmanager
from sqlalchemy import DateTime, create_engine, text
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from app.core.config import settings

# Base class for SQLAlchemy models
Base = declarative_base()

# Microsecond timestamps on MySQL; cursors compare (created_at, id) exactly
PreciseDateTime = DateTime().with_variant(mysql.DATETIME(fsp=6), "mysql")

logger = logging.getLogger(__name__)


def create_db_engine(url: str, **kwargs) -> Engine:
    """Engine factory; SQLite needs cross-thread access for the threadpool"""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_size", 10)
        kwargs.setdefault("max_overflow", 20)
        kwargs.setdefault("pool_recycle", 3600)  # Recycle connections after 1 hour
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(url, echo=settings.debug, **kwargs)


engine = create_db_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def unit_of_work(session: Session) -> Generator[Session, None, None]:
    """
    Commit everything written inside the block, or nothing.

    Any exception rolls the whole unit back and propagates to the caller.
    """
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Unit of work rolled back: {e}")
        raise


def init_db(bind: Engine = None):
    """Create all tables"""
    # Register models on Base.metadata
    import app.models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            result = conn.execute(text("SELECT 1"))
            return result.fetchone() is not None
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


def close_db():
    engine.dispose()
    logger.info("Database connections closed")
