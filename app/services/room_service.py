"""
Chat room lifecycle and room-level read models
"""

from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import Settings
from app.core.errors import Result, conflict, not_authorized, not_found, validation_failed
from app.core.logging import get_logger
from app.core.validators import Validator
from app.database.sql import unit_of_work
from app.domain.events import ChatRoomCreated, ChatRoomDeleted, ChatRoomUpdated
from app.models.chat_messages import MESSAGE_TYPE_SYSTEM, MESSAGE_TYPE_TEXT, ChatMessage
from app.models.chat_room_users import ChatRoomUser
from app.models.chat_rooms import ChatRoom
from app.services.broadcast import BroadcastPublisher, publish_to_room
from app.services.cache_service import ROOM_LIST_KEY, ChatCacheService
from app.services.message_service import MessageService
from app.services.moderation_service import ModerationService, find_room, find_user
from app.utils.time_utils import to_iso

logger = get_logger(__name__)


class RoomService:
    def __init__(
        self,
        cache: ChatCacheService,
        messages: MessageService,
        moderation: ModerationService,
        publisher: BroadcastPublisher,
        clock: Clock,
        settings: Settings,
    ):
        self.cache = cache
        self.messages = messages
        self.moderation = moderation
        self.publisher = publisher
        self.clock = clock
        self.settings = settings

    def _validate(self, name: Optional[str], description: Optional[str], require_name: bool):
        errors = []
        if name is not None or require_name:
            errors += Validator.validate_required(name, "name")
            if not errors:
                errors += Validator.validate_display_width(
                    name.strip(), "name",
                    self.settings.room_name_min_length,
                    self.settings.room_name_max_length,
                )
        errors += Validator.validate_optional_text(
            description, "description", self.settings.room_description_max_length
        )
        return errors

    def _name_taken(self, db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
        query = select(ChatRoom.id).where(ChatRoom.name == name, ChatRoom.is_active.is_(True))
        if exclude_id is not None:
            query = query.where(ChatRoom.id != exclude_id)
        return db.execute(query).first() is not None

    def create_room(self, db: Session, creator_id: int, name: str, description: Optional[str] = None) -> Result:
        """Create a room; the creator joins it straight away"""
        creator = find_user(db, creator_id)
        if creator is None:
            return not_found("User")

        errors = self._validate(name, description, require_name=True)
        if errors:
            return validation_failed("Invalid room", errors)

        name = name.strip()
        if self._name_taken(db, name):
            return conflict("room_name_taken", f"A room named '{name}' already exists")

        now = self.clock.now()
        try:
            with unit_of_work(db):
                room = ChatRoom(
                    name=name,
                    active_name=name,
                    description=description,
                    created_by=creator_id,
                    is_active=True,
                    created_at=now,
                    updated_at=now,
                )
                db.add(room)
                db.flush()
                db.add(ChatRoomUser(
                    room_id=room.id, user_id=creator_id, joined_at=now, last_seen_at=now, is_online=True,
                ))
                notice = self.messages.add_system_message(
                    db, room.id, creator_id, f"Room '{name}' has been created"
                )
        except IntegrityError:
            # Lost a race with a concurrent create of the same name
            logger.warning(f"Room name '{name}' was taken concurrently")
            return conflict("room_name_taken", f"A room named '{name}' already exists")

        self.cache.invalidate_room_list()
        publish_to_room(self.publisher, room.id, ChatRoomCreated(
            timestamp=now, room_id=room.id, name=name, created_by=creator_id,
        ))
        self.messages.announce(room.id, notice)

        logger.info(f"Room {room.id} '{name}' created by user {creator_id}",
                    extra={"event_type": "room_created", "room_id": room.id})
        return Result.success({"room": room.to_dict()})

    def update_room(
        self,
        db: Session,
        room_id: int,
        actor_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Result:
        room = find_room(db, room_id)
        if room is None or not room.is_active:
            return not_found("Room")
        if not self.moderation.can_moderate(room, find_user(db, actor_id)):
            return not_authorized("You are not authorized to update this room")

        errors = self._validate(name, description, require_name=False)
        if errors:
            return validation_failed("Invalid room", errors)

        changes: Dict = {}
        new_name = name.strip() if name is not None else None
        if new_name is not None and new_name != room.name:
            if self._name_taken(db, new_name, exclude_id=room_id):
                return conflict("room_name_taken", f"A room named '{new_name}' already exists")
            changes["name"] = {"from": room.name, "to": new_name}
        if description is not None and description != room.description:
            changes["description"] = {"from": room.description, "to": description}

        if not changes:
            return Result.success({"room": room.to_dict(), "changes": {}})

        now = self.clock.now()
        notice = None
        try:
            with unit_of_work(db):
                if "name" in changes:
                    room.rename(new_name)
                    notice = self.messages.add_system_message(
                        db, room_id, actor_id, f"Room renamed from '{changes['name']['from']}' to '{new_name}'"
                    )
                if "description" in changes:
                    room.description = description
                room.updated_at = now
        except IntegrityError:
            logger.warning(f"Room name '{new_name}' was taken concurrently")
            return conflict("room_name_taken", f"A room named '{new_name}' already exists")

        self.cache.invalidate_room_list()
        self.cache.invalidate_room_stats(room_id)
        if notice is not None:
            self.cache.invalidate_message_history(room_id)
            self.messages.announce(room_id, notice)
        publish_to_room(self.publisher, room_id, ChatRoomUpdated(timestamp=now, room_id=room_id, changes=changes))

        return Result.success({"room": room.to_dict(), "changes": changes})

    def delete_room(self, db: Session, room_id: int, actor_id: int) -> Result:
        """Soft-deactivate a room; refused while anyone else is online in it"""
        room = find_room(db, room_id)
        if room is None or not room.is_active:
            return not_found("Room")
        actor = find_user(db, actor_id)
        if not self.moderation.can_moderate(room, actor):
            return not_authorized("You are not authorized to delete this room")

        cutoff = self.clock.now() - timedelta(minutes=self.settings.presence_timeout_minutes)
        others_online = db.execute(
            select(func.count(ChatRoomUser.id)).where(
                ChatRoomUser.room_id == room_id,
                ChatRoomUser.user_id != actor_id,
                ChatRoomUser.is_online.is_(True),
                ChatRoomUser.last_seen_at >= cutoff,
            )
        ).scalar_one()
        if others_online:
            return conflict(
                "room_has_online_users",
                "Cannot delete a room while other users are online",
                online_users=others_online,
            )

        now = self.clock.now()
        with unit_of_work(db):
            self.messages.add_system_message(db, room_id, actor_id, f"Room '{room.name}' has been deleted")
            room.deactivate()
            room.updated_at = now
            for membership in room.members:
                membership.is_online = False

        self.cache.invalidate_room(room_id)
        publish_to_room(self.publisher, room_id, ChatRoomDeleted(timestamp=now, room_id=room_id, deleted_by=actor_id))

        logger.info(f"Room {room_id} deactivated by user {actor_id}",
                    extra={"event_type": "room_deleted", "room_id": room_id})
        return Result.success({"room_id": room_id, "deleted": True})

    # =========================================================================
    # Read models
    # =========================================================================

    def list_rooms(self, db: Session):
        def compute():
            cutoff = self.clock.now() - timedelta(minutes=self.settings.presence_timeout_minutes)
            online = dict(db.execute(
                select(ChatRoomUser.room_id, func.count(ChatRoomUser.id))
                .where(ChatRoomUser.is_online.is_(True), ChatRoomUser.last_seen_at >= cutoff)
                .group_by(ChatRoomUser.room_id)
            ).all())
            last_activity = dict(db.execute(
                select(ChatMessage.room_id, func.max(ChatMessage.created_at)).group_by(ChatMessage.room_id)
            ).all())
            rooms = db.execute(
                select(ChatRoom).where(ChatRoom.is_active.is_(True)).order_by(ChatRoom.created_at.desc(), ChatRoom.id.desc())
            ).scalars().all()
            return [
                dict(room.to_dict(),
                     online_users=online.get(room.id, 0),
                     last_activity=to_iso(last_activity.get(room.id)))
                for room in rooms
            ]

        return self.cache.remember(ROOM_LIST_KEY, self.settings.cache_room_list_ttl, compute)

    def get_room(self, db: Session, room_id: int) -> Result:
        room = find_room(db, room_id)
        if room is None or not room.is_active:
            return not_found("Room")
        return Result.success({"room": room.to_dict()})

    def get_room_stats(self, db: Session, room_id: int) -> Result:
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")

        def compute() -> Dict:
            now = self.clock.now()
            cutoff = now - timedelta(minutes=self.settings.presence_timeout_minutes)
            total_users = db.execute(
                select(func.count(ChatRoomUser.id)).where(ChatRoomUser.room_id == room_id)
            ).scalar_one()
            online_users = db.execute(
                select(func.count(ChatRoomUser.id)).where(
                    ChatRoomUser.room_id == room_id,
                    ChatRoomUser.is_online.is_(True),
                    ChatRoomUser.last_seen_at >= cutoff,
                )
            ).scalar_one()
            by_type = dict(db.execute(
                select(ChatMessage.message_type, func.count(ChatMessage.id))
                .where(ChatMessage.room_id == room_id)
                .group_by(ChatMessage.message_type)
            ).all())
            recent = db.execute(
                select(func.count(ChatMessage.id)).where(
                    ChatMessage.room_id == room_id,
                    ChatMessage.created_at >= now - timedelta(hours=24),
                )
            ).scalar_one()
            last_activity = db.execute(
                select(func.max(ChatMessage.created_at)).where(ChatMessage.room_id == room_id)
            ).scalar_one()
            return {
                "room_id": room_id,
                "total_users": total_users,
                "online_users": online_users,
                "total_messages": sum(by_type.values()),
                "text_messages": by_type.get(MESSAGE_TYPE_TEXT, 0),
                "system_messages": by_type.get(MESSAGE_TYPE_SYSTEM, 0),
                "recent_activity_24h": recent,
                "last_activity": to_iso(last_activity),
            }

        return Result.success(self.cache.remember(
            self.cache.room_stats_key(room_id), self.settings.cache_room_stats_ttl, compute
        ))
