from typing import Optional
from fastapi import APIRouter, Query, status
from sqlalchemy.orm import Session

from app.api.dependencies import CurrentUserId, DbSession, Services, unwrap
from app.schemas.chat import MessageCreate, ReportCreate, SystemMessageCreate
from app.services.container import ChatServices

router = APIRouter(prefix="/rooms/{room_id}/messages", tags=["Messages"])


@router.get("")
def get_messages(
    room_id: int,
    cursor: Optional[str] = Query(None, description="Cursor from a previous page"),
    limit: Optional[int] = Query(None, ge=1),
    direction: str = Query("before", description="before | after"),
    db: Session = DbSession,
    services: ChatServices = Services,
):
    """
    Message history with cursor pagination

    Without a cursor the newest messages are returned oldest first. Continue
    with `prev_cursor` and `direction=before` for older messages, or
    `next_cursor` and `direction=after` for newer ones.
    """
    return unwrap(services.pagination.page(db, room_id, cursor, limit, direction))


@router.post("", status_code=status.HTTP_201_CREATED)
def send_message(
    room_id: int,
    message_data: MessageCreate,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.messages.send_message(
        db, room_id, user_id, message_data.message, message_data.message_type
    ))


@router.post("/system", status_code=status.HTTP_201_CREATED)
def send_system_message(
    room_id: int,
    message_data: SystemMessageCreate,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.messages.send_system_message(db, room_id, user_id, message_data.message))


@router.get("/search")
def search_messages(
    room_id: int,
    q: str = Query(..., description="Search text"),
    cursor: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.pagination.search(db, room_id, q, cursor, limit))


@router.get("/statistics")
def get_message_statistics(
    room_id: int,
    days: int = Query(7, ge=1, le=90),
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.pagination.get_message_statistics(db, room_id, days))


@router.get("/after/{message_id}")
def get_messages_after(
    room_id: int,
    message_id: int,
    limit: Optional[int] = Query(None, ge=1),
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.pagination.after(db, room_id, message_id, limit))


@router.delete("/{message_id}")
def delete_message(
    room_id: int,
    message_id: int,
    reason: Optional[str] = Query(None),
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.moderation.delete_message(db, room_id, user_id, message_id, reason))


@router.post("/{message_id}/reports", status_code=status.HTTP_201_CREATED)
def report_message(
    room_id: int,
    message_id: int,
    report_data: ReportCreate,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.reports.report_message(
        db, room_id, message_id, user_id, report_data.report_type, report_data.reason
    ))
