"""
Shared API dependencies

The acting user is taken from the `X-User-Id` header. Authentication itself
is done upstream; this is the seam where it hands over the user id.
"""

from typing import Generator

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.errors import ErrorKind, Result, ServiceError, ServiceException, ValidationError
from app.core.logging import get_logger
from app.services.container import ChatServices

logger = get_logger(__name__)


def get_db(request: Request) -> Generator[Session, None, None]:
    """Session per request from the app's session factory"""
    session = request.app.state.session_factory()
    try:
        yield session
    except ServiceException:
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Database session error: {e}")
        raise
    finally:
        session.close()


def get_services(request: Request) -> ChatServices:
    return request.app.state.services


def get_current_user_id(x_user_id: str = Header(None, alias="X-User-Id")) -> int:
    if x_user_id is None or not x_user_id.strip().isdigit():
        raise ServiceException(ServiceError(
            kind=ErrorKind.AUTHORIZATION,
            code="authentication_required",
            message="A numeric X-User-Id header is required",
            validation_errors=[ValidationError(field="X-User-Id", message="Missing or not numeric", value=x_user_id)],
        ))
    return int(x_user_id)


def unwrap(result: Result):
    """Return the value of a successful result or raise it as an error response"""
    if not result.ok:
        raise ServiceException(result.error)
    return result.value


DbSession = Depends(get_db)
Services = Depends(get_services)
CurrentUserId = Depends(get_current_user_id)
