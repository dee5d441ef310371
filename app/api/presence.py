"""
Presence API

Clients call `heartbeat` about every 30 seconds while a room is open; a
member whose heartbeats stop is taken offline by the presence sweep.
"""

from fastapi import APIRouter
from sqlalchemy.orm import Session

from app.api.dependencies import CurrentUserId, DbSession, Services, unwrap
from app.services.container import ChatServices

router = APIRouter(tags=["Presence"])


@router.post("/rooms/{room_id}/join")
def join_room(room_id: int, user_id: int = CurrentUserId, db: Session = DbSession,
              services: ChatServices = Services):
    return unwrap(services.presence.join(db, room_id, user_id))


@router.post("/rooms/{room_id}/leave")
def leave_room(room_id: int, user_id: int = CurrentUserId, db: Session = DbSession,
               services: ChatServices = Services):
    return unwrap(services.presence.leave(db, room_id, user_id))


@router.post("/rooms/{room_id}/heartbeat")
def heartbeat(room_id: int, user_id: int = CurrentUserId, db: Session = DbSession,
              services: ChatServices = Services):
    return unwrap(services.presence.heartbeat(db, room_id, user_id))


@router.get("/rooms/{room_id}/online")
def get_online_users(room_id: int, db: Session = DbSession, services: ChatServices = Services):
    return unwrap(services.presence.get_online_users(db, room_id))


@router.get("/rooms/{room_id}/presence/{user_id}")
def get_user_presence(room_id: int, user_id: int, db: Session = DbSession,
                      services: ChatServices = Services):
    return unwrap(services.presence.get_user_presence(db, room_id, user_id))


@router.get("/users/{user_id}/activity")
def get_user_activity(user_id: int, db: Session = DbSession, services: ChatServices = Services):
    return unwrap(services.presence.get_user_activity(db, user_id))


@router.get("/presence/stats")
def get_presence_stats(db: Session = DbSession, services: ChatServices = Services):
    return services.presence.get_presence_stats(db)
