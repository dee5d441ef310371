"""
Presence tracker

Membership presence per (room, user):

    absent -> online -> online (refreshed) -> offline (timeout) -> online

A member counts as online while `is_online` is set and `last_seen_at` is
inside the presence timeout. `sweep` flips stale members offline; it is
idempotent and may run concurrently with joins and heartbeats.
"""

from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import Settings
from app.core.errors import Result, conflict, not_found, policy_rejected
from app.core.logging import get_logger
from app.database.sql import unit_of_work
from app.domain.events import UserJoined, UserLeft
from app.models.chat_messages import ChatMessage
from app.models.chat_room_users import ChatRoomUser
from app.models.chat_rooms import ChatRoom
from app.models.users import User
from app.services.broadcast import BroadcastPublisher, publish_to_room
from app.services.cache_service import ChatCacheService
from app.services.message_service import MessageService
from app.services.moderation_service import find_membership, find_room, find_user
from app.utils.time_utils import to_iso

logger = get_logger(__name__)


class PresenceService:
    def __init__(
        self,
        cache: ChatCacheService,
        messages: MessageService,
        publisher: BroadcastPublisher,
        clock: Clock,
        settings: Settings,
    ):
        self.cache = cache
        self.messages = messages
        self.publisher = publisher
        self.clock = clock
        self.settings = settings

    @property
    def timeout(self) -> timedelta:
        return timedelta(minutes=self.settings.presence_timeout_minutes)

    def is_present(self, membership: ChatRoomUser) -> bool:
        if not membership.is_online or membership.last_seen_at is None:
            return False
        return membership.last_seen_at >= self.clock.now() - self.timeout

    # =========================================================================
    # State transitions
    # =========================================================================

    def join(self, db: Session, room_id: int, user_id: int) -> Result:
        """
        Join (or re-join) a room.

        Creates the membership on first join, otherwise marks it online again.
        A join that brings the user online posts a system message and a
        UserJoined notification; a member who is already present only has
        `last_seen_at` refreshed.
        """
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")
        if not room.is_active:
            return conflict("room_inactive", "Chat room is not active")

        user = find_user(db, user_id)
        if user is None:
            return not_found("User")

        now = self.clock.now()
        membership = find_membership(db, room_id, user_id)
        if membership is not None and membership.is_banned_at(now):
            return policy_rejected(
                "user_banned", "You are banned from this room",
                banned_until=to_iso(membership.banned_until),
            )

        if membership is not None and self.is_present(membership):
            with unit_of_work(db):
                membership.touch(now)
            self.cache.invalidate_user_presence(user_id, room_id)
            return Result.success({
                "room_id": room_id,
                "user": user.to_summary(),
                "joined_at": to_iso(membership.joined_at),
                "rejoined": True,
                "already_online": True,
            })

        rejoined = membership is not None
        with unit_of_work(db):
            if membership is None:
                membership = ChatRoomUser(
                    room_id=room_id,
                    user_id=user_id,
                    joined_at=now,
                    last_seen_at=now,
                    is_online=True,
                )
                db.add(membership)
            else:
                membership.touch(now)
            notice = self.messages.add_system_message(db, room_id, user_id, f"{user.username} joined the room")

        self.cache.invalidate_presence(room_id, user_id)
        self.cache.invalidate_messages(room_id)
        self.cache.track_room_activity(room_id, "user_joined", {"user_id": user_id})

        publish_to_room(self.publisher, room_id, UserJoined(timestamp=now, room_id=room_id, user=user.to_summary()))
        self.messages.announce(room_id, notice)

        logger.info(f"User {user_id} joined room {room_id}",
                    extra={"event_type": "user_joined", "room_id": room_id, "user_id": user_id})

        return Result.success({
            "room_id": room_id,
            "user": user.to_summary(),
            "joined_at": to_iso(membership.joined_at),
            "rejoined": rejoined,
            "already_online": False,
        })

    def heartbeat(self, db: Session, room_id: int, user_id: int) -> Result:
        membership = find_membership(db, room_id, user_id)
        if membership is None:
            return not_found("Membership", "User is not in this room")

        now = self.clock.now()
        if membership.is_banned_at(now):
            return policy_rejected(
                "user_banned", "You are banned from this room",
                banned_until=to_iso(membership.banned_until),
            )

        came_back = not self.is_present(membership)
        with unit_of_work(db):
            membership.touch(now)

        if came_back:
            self.cache.invalidate_presence(room_id, user_id)
        else:
            self.cache.invalidate_user_presence(user_id, room_id)

        return Result.success({
            "room_id": room_id,
            "user_id": user_id,
            "last_seen_at": to_iso(now),
            "next_heartbeat_seconds": self.settings.heartbeat_interval_seconds,
        })

    def leave(self, db: Session, room_id: int, user_id: int) -> Result:
        membership = find_membership(db, room_id, user_id)
        if membership is None:
            return not_found("Membership", "User is not in this room")

        user = find_user(db, user_id)
        now = self.clock.now()
        if not membership.is_online:
            return Result.success({"room_id": room_id, "user_id": user_id, "left_at": None, "already_offline": True})

        with unit_of_work(db):
            membership.go_offline(now)
            notice = self.messages.add_system_message(db, room_id, user_id, f"{user.username} left the room")

        self.cache.invalidate_presence(room_id, user_id)
        self.cache.invalidate_messages(room_id)
        self.cache.track_room_activity(room_id, "user_left", {"user_id": user_id})

        publish_to_room(self.publisher, room_id, UserLeft(timestamp=now, room_id=room_id, user=user.to_summary()))
        self.messages.announce(room_id, notice)

        return Result.success({"room_id": room_id, "user_id": user_id, "left_at": to_iso(now), "already_offline": False})

    def sweep(self, db: Session, room_id: Optional[int] = None) -> Dict:
        """
        Flip members whose last heartbeat is older than the presence timeout
        offline, posting one system message per member.

        Returns:
            {"swept": count, "members": [{"room_id", "user_id"}, ...]}
        """
        now = self.clock.now()
        cutoff = now - self.timeout
        query = (
            select(ChatRoomUser)
            .join(ChatRoom, ChatRoom.id == ChatRoomUser.room_id)
            .where(
                ChatRoomUser.is_online.is_(True),
                ChatRoomUser.last_seen_at < cutoff,
                ChatRoom.is_active.is_(True),
            )
            .order_by(ChatRoomUser.room_id, ChatRoomUser.user_id)
        )
        if room_id:
            query = query.where(ChatRoomUser.room_id == room_id)

        swept = []
        with unit_of_work(db):
            for membership in db.execute(query).scalars().all():
                user = membership.user
                # last_seen_at keeps the last heartbeat
                membership.is_online = False
                notice = self.messages.add_system_message(
                    db, membership.room_id, membership.user_id,
                    f"{user.username} went offline due to inactivity",
                )
                swept.append((membership.room_id, user, notice))

        for swept_room, user, notice in swept:
            self.cache.invalidate_presence(swept_room, user.id)
            self.cache.invalidate_messages(swept_room)
            publish_to_room(self.publisher, swept_room, UserLeft(
                timestamp=now, room_id=swept_room, user=user.to_summary(), reason="timeout",
            ))
            self.messages.announce(swept_room, notice)

        if swept:
            logger.info(f"Presence sweep marked {len(swept)} members offline",
                        extra={"event_type": "presence_sweep", "swept": len(swept)})

        return {
            "swept": len(swept),
            "members": [{"room_id": swept_room, "user_id": user.id} for swept_room, user, _ in swept],
        }

    # =========================================================================
    # Queries
    # =========================================================================

    def get_online_users(self, db: Session, room_id: int) -> Result:
        if find_room(db, room_id) is None:
            return not_found("Room")

        def compute() -> List[Dict]:
            cutoff = self.clock.now() - self.timeout
            rows = db.execute(
                select(ChatRoomUser, User)
                .join(User, User.id == ChatRoomUser.user_id)
                .where(
                    ChatRoomUser.room_id == room_id,
                    ChatRoomUser.is_online.is_(True),
                    ChatRoomUser.last_seen_at >= cutoff,
                )
                .order_by(User.username)
            ).all()
            return [
                {
                    "user_id": user.id,
                    "username": user.username,
                    "last_seen_at": to_iso(membership.last_seen_at),
                    "joined_at": to_iso(membership.joined_at),
                }
                for membership, user in rows
            ]

        users = self.cache.remember(
            self.cache.online_users_key(room_id), self.settings.cache_online_users_ttl, compute
        )
        return Result.success({"room_id": room_id, "online_users": users, "count": len(users)})

    def get_user_presence(self, db: Session, room_id: int, user_id: int) -> Result:
        membership = find_membership(db, room_id, user_id)
        if membership is None:
            return not_found("Membership", "User is not in this room")

        def compute() -> Dict:
            now = self.clock.now()
            return {
                "room_id": room_id,
                "user_id": user_id,
                "is_online": self.is_present(membership),
                "last_seen_at": to_iso(membership.last_seen_at),
                "joined_at": to_iso(membership.joined_at),
                "is_muted": membership.is_muted_at(now),
                "is_banned": membership.is_banned_at(now),
            }

        return Result.success(self.cache.remember(
            self.cache.user_presence_key(user_id, room_id), self.settings.cache_presence_ttl, compute
        ))

    def get_user_activity(self, db: Session, user_id: int) -> Result:
        """Rooms the user belongs to, with presence and message counts"""
        if find_user(db, user_id) is None:
            return not_found("User")

        message_counts = dict(db.execute(
            select(ChatMessage.room_id, func.count(ChatMessage.id))
            .where(ChatMessage.user_id == user_id)
            .group_by(ChatMessage.room_id)
        ).all())

        rows = db.execute(
            select(ChatRoomUser, ChatRoom)
            .join(ChatRoom, ChatRoom.id == ChatRoomUser.room_id)
            .where(ChatRoomUser.user_id == user_id, ChatRoom.is_active.is_(True))
            .order_by(ChatRoomUser.last_seen_at.desc())
        ).all()

        rooms = [
            {
                "room_id": room.id,
                "room_name": room.name,
                "is_online": self.is_present(membership),
                "last_seen_at": to_iso(membership.last_seen_at),
                "joined_at": to_iso(membership.joined_at),
                "message_count": message_counts.get(room.id, 0),
            }
            for membership, room in rows
        ]
        return Result.success({
            "user_id": user_id,
            "rooms": rooms,
            "online_rooms": sum(1 for room in rooms if room["is_online"]),
            "total_messages": sum(message_counts.values()),
        })

    def get_presence_stats(self, db: Session) -> Dict:
        cutoff = self.clock.now() - self.timeout
        rows = db.execute(
            select(ChatRoom.id, ChatRoom.name, func.count(ChatRoomUser.id))
            .outerjoin(
                ChatRoomUser,
                (ChatRoomUser.room_id == ChatRoom.id)
                & (ChatRoomUser.is_online.is_(True))
                & (ChatRoomUser.last_seen_at >= cutoff),
            )
            .where(ChatRoom.is_active.is_(True))
            .group_by(ChatRoom.id, ChatRoom.name)
            .order_by(ChatRoom.id)
        ).all()

        rooms = [{"room_id": rid, "name": name, "online_count": count} for rid, name, count in rows]
        return {
            "total_rooms": len(rooms),
            "total_online": sum(room["online_count"] for room in rooms),
            "active_rooms": sum(1 for room in rooms if room["online_count"] > 0),
            "rooms": rooms,
            "timeout_minutes": self.settings.presence_timeout_minutes,
        }
