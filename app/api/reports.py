from typing import Optional
from fastapi import APIRouter, Query
from sqlalchemy.orm import Session

from app.api.dependencies import CurrentUserId, DbSession, Services, unwrap
from app.schemas.chat import ReportReview
from app.services.container import ChatServices

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("")
def get_reports(
    room_id: Optional[int] = Query(None, description="Omit to list every room (admins only)"),
    status: Optional[str] = Query(None),
    report_type: Optional[str] = Query(None),
    reported_user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.reports.get_reports(
        db, user_id, room_id, status, report_type, reported_user_id, page, per_page
    ))


@router.get("/mine")
def get_my_reports(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.reports.get_my_reports(db, user_id, page, per_page))


@router.get("/stats")
def get_report_stats(
    room_id: Optional[int] = Query(None),
    days: int = Query(7, ge=1, le=90),
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.reports.get_report_stats(db, user_id, room_id, days))


@router.post("/{report_id}/review")
def review_report(
    report_id: int,
    review: ReportReview,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    """
    Review a report

    - **action**: resolve, dismiss or escalate
    - **delete_message** / **mute_user**: optional cascades; the response
      lists the ones actually performed in `actions_performed`
    """
    return unwrap(services.reports.review_report(
        db, report_id, user_id, review.action, review.notes,
        review.delete_message, review.mute_user, review.mute_duration,
    ))
