from typing import Optional
from fastapi import APIRouter, Query
from sqlalchemy.orm import Session

from app.api.dependencies import CurrentUserId, DbSession, Services, unwrap
from app.schemas.chat import LiftRestrictionRequest, RestrictionRequest
from app.services.container import ChatServices

router = APIRouter(prefix="/rooms/{room_id}/moderation", tags=["Moderation"])


@router.post("/users/{target_id}/mute")
def mute_user(
    room_id: int,
    target_id: int,
    request: RestrictionRequest,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    """Mute a member; omit duration_minutes for a permanent mute (max 1 week otherwise)"""
    return unwrap(services.moderation.mute_user(
        db, room_id, user_id, target_id, request.duration_minutes, request.reason
    ))


@router.post("/users/{target_id}/unmute")
def unmute_user(
    room_id: int,
    target_id: int,
    request: LiftRestrictionRequest,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.moderation.unmute_user(db, room_id, user_id, target_id, request.reason))


@router.post("/users/{target_id}/ban")
def ban_user(
    room_id: int,
    target_id: int,
    request: RestrictionRequest,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    """Ban a member; omit duration_minutes for a permanent ban (max 1 year otherwise)"""
    return unwrap(services.moderation.ban_user(
        db, room_id, user_id, target_id, request.duration_minutes, request.reason
    ))


@router.post("/users/{target_id}/unban")
def unban_user(
    room_id: int,
    target_id: int,
    request: LiftRestrictionRequest,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.moderation.unban_user(db, room_id, user_id, target_id, request.reason))


@router.get("/users/{target_id}/status")
def get_user_moderation_status(
    room_id: int,
    target_id: int,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.moderation.get_user_moderation_status(db, room_id, user_id, target_id))


@router.get("/actions")
def get_moderation_actions(
    room_id: int,
    action_type: Optional[str] = Query(None),
    target_user_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.moderation.get_moderation_actions(
        db, room_id, user_id, action_type, target_user_id, page, per_page
    ))


@router.get("/filter-stats")
def get_filter_stats(
    room_id: int,
    days: int = Query(7, ge=1, le=90),
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    unwrap(services.moderation.authorize(db, room_id, user_id))
    return services.content_filter.get_filter_stats(db, room_id, days)
