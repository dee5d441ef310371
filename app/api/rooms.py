from fastapi import APIRouter, Query, status
from sqlalchemy.orm import Session

from app.api.dependencies import CurrentUserId, DbSession, Services, unwrap
from app.schemas.chat import RoomCreate, RoomUpdate
from app.services.container import ChatServices

router = APIRouter(prefix="/rooms", tags=["Rooms"])


@router.get("")
def list_rooms(db: Session = DbSession, services: ChatServices = Services):
    """Active rooms with their online counts"""
    rooms = services.rooms.list_rooms(db)
    return {"rooms": rooms, "total": len(rooms)}


@router.post("", status_code=status.HTTP_201_CREATED)
def create_room(
    room_data: RoomCreate,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    """
    Create a room

    - **name**: 2 to 20 columns, CJK and emoji count as 2
    - **description**: up to 500 characters
    """
    return unwrap(services.rooms.create_room(db, user_id, room_data.name, room_data.description))


@router.get("/{room_id}")
def get_room(room_id: int, db: Session = DbSession, services: ChatServices = Services):
    return unwrap(services.rooms.get_room(db, room_id))


@router.patch("/{room_id}")
def update_room(
    room_id: int,
    room_data: RoomUpdate,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.rooms.update_room(db, room_id, user_id, room_data.name, room_data.description))


@router.delete("/{room_id}")
def delete_room(
    room_id: int,
    user_id: int = CurrentUserId,
    db: Session = DbSession,
    services: ChatServices = Services,
):
    """Deactivate a room; history is kept"""
    return unwrap(services.rooms.delete_room(db, room_id, user_id))


@router.get("/{room_id}/stats")
def get_room_stats(room_id: int, db: Session = DbSession, services: ChatServices = Services):
    return unwrap(services.rooms.get_room_stats(db, room_id))


@router.get("/{room_id}/activity")
def get_room_activity(
    room_id: int,
    hours: int = Query(24, ge=1, le=24),
    db: Session = DbSession,
    services: ChatServices = Services,
):
    return unwrap(services.messages.get_room_activity(db, room_id, hours))
