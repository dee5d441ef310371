"""
Scheduled and operator maintenance tasks

Run from the CLI (`python -m app.cli ...`) or an external scheduler.
"""

from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.models.chat_rooms import ChatRoom
from app.services.cache_service import ChatCacheService
from app.services.moderation_service import ModerationService
from app.services.presence_service import PresenceService
from app.services.room_service import RoomService

logger = get_logger(__name__)


class MaintenanceService:
    def __init__(
        self,
        cache: ChatCacheService,
        rooms: RoomService,
        presence: PresenceService,
        moderation: ModerationService,
    ):
        self.cache = cache
        self.rooms = rooms
        self.presence = presence
        self.moderation = moderation

    def warm_cache(self, db: Session, room_id: Optional[int] = None) -> Dict:
        """Precompute the room list, room stats and online lists"""
        query = select(ChatRoom.id).where(ChatRoom.is_active.is_(True))
        if room_id:
            query = query.where(ChatRoom.id == room_id)
        room_ids = db.execute(query.order_by(ChatRoom.id)).scalars().all()

        self.cache.invalidate_room_list()
        self.rooms.list_rooms(db)
        for rid in room_ids:
            self.cache.invalidate_room_stats(rid)
            self.cache.invalidate_online_users(rid)
            self.rooms.get_room_stats(db, rid)
            self.presence.get_online_users(db, rid)

        logger.info(f"Chat cache warmed for {len(room_ids)} rooms")
        return {"rooms_warmed": len(room_ids)}

    def clear_cache(self, room_id: Optional[int] = None) -> Dict:
        """Drop one room's derived entries, or everything under the chat namespace"""
        if room_id:
            self.cache.invalidate_room(room_id)
            logger.info(f"Chat cache cleared for room {room_id}")
            return {"room_id": room_id, "cleared": True}

        deleted = self.cache.clear_all()
        logger.info(f"Chat cache cleared ({deleted} keys)")
        return {"deleted_keys": deleted}

    def sweep_presence(self, db: Session) -> Dict:
        return self.presence.sweep(db)

    def cleanup_moderations(self, db: Session, room_id: Optional[int] = None) -> Dict:
        return self.moderation.cleanup_expired(db, room_id)
