"""
Moderation engine

Mute/ban lifecycle, message deletion and the append-only audit log. Every
state change and its audit record are written in one unit of work; caches
are invalidated and notifications published only after the commit.
"""

from typing import Dict, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import Settings
from app.core.errors import (
    Result,
    not_authorized,
    not_found,
    policy_rejected,
    validation_failed,
)
from app.core.logging import get_logger, log_database_operation, log_moderation_event
from app.core.validators import Validator
from app.database.sql import unit_of_work
from app.domain.events import MessageDeleted, UserBanned, UserMuted, UserUnbanned, UserUnmuted
from app.models.chat_messages import ChatMessage
from app.models.chat_reports import ChatReport
from app.models.chat_room_users import ChatRoomUser
from app.models.chat_rooms import ChatRoom
from app.models.moderation_actions import (
    ACTION_BAN_USER,
    ACTION_DELETE_MESSAGE,
    ACTION_MUTE_USER,
    ACTION_TYPES,
    ACTION_UNBAN_USER,
    ACTION_UNMUTE_USER,
    ACTOR_SYSTEM,
    ACTOR_USER,
    ModerationAction,
)
from app.models.users import User
from app.services.broadcast import BroadcastPublisher, publish_to_room
from app.services.cache_service import ChatCacheService
from app.utils.time_utils import minutes_from, to_iso

logger = get_logger(__name__)


# =============================================================================
# Lookups shared by the chat services
# =============================================================================

def find_room(db: Session, room_id: int) -> Optional[ChatRoom]:
    return db.get(ChatRoom, room_id)


def find_user(db: Session, user_id: int) -> Optional[User]:
    return db.get(User, user_id)


def find_membership(db: Session, room_id: int, user_id: int) -> Optional[ChatRoomUser]:
    return db.execute(
        select(ChatRoomUser).where(
            ChatRoomUser.room_id == room_id,
            ChatRoomUser.user_id == user_id,
        )
    ).scalar_one_or_none()


class ModerationService:
    def __init__(
        self,
        cache: ChatCacheService,
        publisher: BroadcastPublisher,
        clock: Clock,
        settings: Settings,
    ):
        self.cache = cache
        self.publisher = publisher
        self.clock = clock
        self.settings = settings

    # =========================================================================
    # Capability
    # =========================================================================

    def can_moderate(self, room: ChatRoom, actor: Optional[User]) -> bool:
        """Room creator or a user holding an elevated role"""
        if actor is None or room is None:
            return False
        return room.created_by == actor.id or actor.has_role(self.settings.moderator_roles)

    def authorize(self, db: Session, room_id: int, actor_id: int) -> Result:
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")
        actor = find_user(db, actor_id)
        if not self.can_moderate(room, actor):
            return not_authorized("You are not authorized to moderate this room")
        return Result.success((room, actor))

    # =========================================================================
    # Audit log
    # =========================================================================

    def record_action(
        self,
        db: Session,
        room_id: int,
        action_type: str,
        target_user_id: Optional[int],
        moderator_id: Optional[int] = None,
        message_id: Optional[int] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> ModerationAction:
        """
        Append an audit record inside the caller's unit of work.

        `moderator_id=None` records the system actor.
        """
        automated = moderator_id is None
        action = ModerationAction(
            room_id=room_id,
            actor_type=ACTOR_SYSTEM if automated else ACTOR_USER,
            moderator_id=moderator_id,
            target_user_id=target_user_id,
            message_id=message_id,
            action_type=action_type,
            reason=reason,
            details=metadata or {},
            created_at=self.clock.now(),
        )
        db.add(action)
        db.flush()

        log_moderation_event(
            logger,
            action_type,
            room_id=room_id,
            target_user_id=target_user_id,
            moderator_id=moderator_id,
            automated=automated,
            audit_id=action.id,
        )
        return action

    # =========================================================================
    # Mute / unmute
    # =========================================================================

    def mute_user(
        self,
        db: Session,
        room_id: int,
        actor_id: int,
        target_id: int,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Result:
        """Mute `target_id`; no duration means permanent"""
        return self._restrict(
            db, room_id, actor_id, target_id, duration_minutes, reason,
            kind="mute", max_minutes=self.settings.mute_max_minutes,
        )

    def ban_user(
        self,
        db: Session,
        room_id: int,
        actor_id: int,
        target_id: int,
        duration_minutes: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> Result:
        """Ban `target_id`; no duration means permanent. A ban also takes the user offline."""
        return self._restrict(
            db, room_id, actor_id, target_id, duration_minutes, reason,
            kind="ban", max_minutes=self.settings.ban_max_minutes,
        )

    def _restrict(
        self,
        db: Session,
        room_id: int,
        actor_id: int,
        target_id: int,
        duration_minutes: Optional[int],
        reason: Optional[str],
        kind: str,
        max_minutes: int,
    ) -> Result:
        if actor_id == target_id:
            return not_authorized(f"You cannot {kind} yourself", code=f"self_{kind}")

        authorized = self.authorize(db, room_id, actor_id)
        if not authorized.ok:
            return authorized

        errors = (
            Validator.validate_duration(duration_minutes, "duration", max_minutes)
            + Validator.validate_optional_text(reason, "reason", self.settings.reason_max_length)
        )
        if errors:
            return validation_failed(f"Invalid {kind} request", errors)

        membership = find_membership(db, room_id, target_id)
        if membership is None:
            return not_found("Membership", "User is not in this room")

        now = self.clock.now()
        until = minutes_from(now, duration_minutes)
        until_field = "muted_until" if kind == "mute" else "banned_until"
        metadata = {"duration_minutes": duration_minutes, until_field: to_iso(until)}

        with unit_of_work(db):
            if kind == "mute":
                membership.mute(until, actor_id)
                action_type = ACTION_MUTE_USER
            else:
                membership.ban(until, actor_id)
                action_type = ACTION_BAN_USER
            action = self.record_action(
                db, room_id, action_type, target_id,
                moderator_id=actor_id, reason=reason, metadata=metadata,
            )

        self.cache.invalidate_presence(room_id, target_id)

        event_cls = UserMuted if kind == "mute" else UserBanned
        publish_to_room(self.publisher, room_id, event_cls(
            timestamp=now,
            room_id=room_id,
            target_id=target_id,
            actor_id=actor_id,
            duration_minutes=duration_minutes,
            reason=reason,
            until=to_iso(until),
        ))

        return Result.success({
            "room_id": room_id,
            "user_id": target_id,
            until_field: to_iso(until),
            "duration_minutes": duration_minutes,
            "permanent": until is None,
            "action_id": action.id,
        })

    def unmute_user(self, db: Session, room_id: int, actor_id: int, target_id: int,
                    reason: Optional[str] = None) -> Result:
        return self._lift(db, room_id, actor_id, target_id, reason, kind="mute")

    def unban_user(self, db: Session, room_id: int, actor_id: int, target_id: int,
                   reason: Optional[str] = None) -> Result:
        return self._lift(db, room_id, actor_id, target_id, reason, kind="ban")

    def _lift(self, db: Session, room_id: int, actor_id: int, target_id: int,
              reason: Optional[str], kind: str) -> Result:
        authorized = self.authorize(db, room_id, actor_id)
        if not authorized.ok:
            return authorized

        errors = Validator.validate_optional_text(reason, "reason", self.settings.reason_max_length)
        if errors:
            return validation_failed(f"Invalid un{kind} request", errors)

        membership = find_membership(db, room_id, target_id)
        if membership is None:
            return not_found("Membership", "User is not in this room")

        now = self.clock.now()
        if kind == "mute" and not membership.is_muted_at(now):
            return policy_rejected("not_muted", "User is not muted")
        if kind == "ban" and not membership.is_banned_at(now):
            return policy_rejected("not_banned", "User is not banned")

        with unit_of_work(db):
            if kind == "mute":
                membership.unmute()
                action_type = ACTION_UNMUTE_USER
            else:
                membership.unban()
                action_type = ACTION_UNBAN_USER
            action = self.record_action(
                db, room_id, action_type, target_id, moderator_id=actor_id, reason=reason,
            )

        self.cache.invalidate_presence(room_id, target_id)

        event_cls = UserUnmuted if kind == "mute" else UserUnbanned
        publish_to_room(self.publisher, room_id, event_cls(
            timestamp=now, room_id=room_id, target_id=target_id, actor_id=actor_id, reason=reason,
        ))

        return Result.success({"room_id": room_id, "user_id": target_id, "action_id": action.id})

    def auto_mute(self, db: Session, room_id: int, user_id: int, reason: str,
                  duration_minutes: Optional[int] = None) -> Optional[UserMuted]:
        """
        System-actor mute inside the caller's unit of work.

        Returns the notification to publish once the caller commits, or None
        if the user has no membership in the room.
        """
        membership = find_membership(db, room_id, user_id)
        if membership is None:
            return None

        minutes = duration_minutes or self.settings.spam_auto_mute_minutes
        now = self.clock.now()
        until = minutes_from(now, minutes)
        membership.mute(until, None)
        self.record_action(
            db, room_id, ACTION_MUTE_USER, user_id,
            reason=reason,
            metadata={
                "duration_minutes": minutes,
                "muted_until": to_iso(until),
                "auto_action": True,
                "reason": reason,
            },
        )
        return UserMuted(
            timestamp=now,
            room_id=room_id,
            target_id=user_id,
            actor_id=None,
            duration_minutes=minutes,
            reason=reason,
            until=to_iso(until),
            automated=True,
        )

    # =========================================================================
    # Message deletion
    # =========================================================================

    def delete_message(self, db: Session, room_id: int, actor_id: int, message_id: int,
                       reason: Optional[str] = None) -> Result:
        """Delete a message; allowed to its author and to room moderators"""
        message = db.get(ChatMessage, message_id)
        if message is None or message.room_id != room_id:
            return not_found("Message")

        room = find_room(db, room_id)
        actor = find_user(db, actor_id)
        if message.user_id != actor_id and not self.can_moderate(room, actor):
            return not_authorized("You are not authorized to delete this message")

        errors = Validator.validate_optional_text(reason, "reason", self.settings.reason_max_length)
        if errors:
            return validation_failed("Invalid delete request", errors)

        with unit_of_work(db):
            action = self.remove_message(db, message, actor_id, reason)

        self.after_message_removed(room_id, message_id, actor_id, reason)
        return Result.success({"message_id": message_id, "room_id": room_id, "action_id": action.id})

    def remove_message(self, db: Session, message: ChatMessage, actor_id: Optional[int],
                       reason: Optional[str], extra_metadata: Optional[Dict] = None) -> ModerationAction:
        """Audit then delete, inside the caller's unit of work"""
        metadata = {
            "message_id": message.id,
            "original_message": message.message,
            "message_type": message.message_type,
            "author_id": message.user_id,
            "message_created_at": to_iso(message.created_at),
        }
        metadata.update(extra_metadata or {})
        action = self.record_action(
            db, message.room_id, ACTION_DELETE_MESSAGE, message.user_id,
            moderator_id=actor_id, message_id=message.id, reason=reason, metadata=metadata,
        )
        self.delete_message_row(db, message)
        return action

    def delete_message_row(self, db: Session, message: ChatMessage):
        """Detach every reference to the message, then delete the row"""
        db.execute(
            update(ChatReport)
            .where(ChatReport.message_id == message.id)
            .values(message_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.execute(
            update(ModerationAction)
            .where(ModerationAction.message_id == message.id)
            .values(message_id=None)
            .execution_options(synchronize_session="fetch")
        )
        db.delete(message)
        db.flush()

    def after_message_removed(self, room_id: int, message_id: int, actor_id: Optional[int],
                              reason: Optional[str]):
        self.cache.invalidate_messages(room_id)
        publish_to_room(self.publisher, room_id, MessageDeleted(
            timestamp=self.clock.now(),
            room_id=room_id,
            message_id=message_id,
            actor_id=actor_id,
            reason=reason,
            automated=actor_id is None,
        ))

    # =========================================================================
    # Queries
    # =========================================================================

    def get_moderation_actions(
        self,
        db: Session,
        room_id: int,
        actor_id: int,
        action_type: Optional[str] = None,
        target_user_id: Optional[int] = None,
        page: int = 1,
        per_page: int = 20,
    ) -> Result:
        """Paginated audit history; filters are independent and composable"""
        authorized = self.authorize(db, room_id, actor_id)
        if not authorized.ok:
            return authorized

        if action_type is not None:
            errors = Validator.validate_enum(action_type, ACTION_TYPES, "action_type")
            if errors:
                return validation_failed("Invalid action type", errors)

        page = max(1, page)
        per_page = max(1, min(per_page, 100))

        conditions = [ModerationAction.room_id == room_id]
        if action_type:
            conditions.append(ModerationAction.action_type == action_type)
        if target_user_id:
            conditions.append(ModerationAction.target_user_id == target_user_id)

        total = db.execute(
            select(func.count(ModerationAction.id)).where(*conditions)
        ).scalar_one()
        actions = db.execute(
            select(ModerationAction)
            .where(*conditions)
            .order_by(ModerationAction.created_at.desc(), ModerationAction.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars().all()

        return Result.success({
            "actions": [action.to_dict() for action in actions],
            "pagination": page_info(total, page, per_page),
        })

    def get_user_moderation_status(self, db: Session, room_id: int, actor_id: int, target_id: int) -> Result:
        """Mute/ban state of a member; visible to moderators and to the member"""
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")
        if actor_id != target_id and not self.can_moderate(room, find_user(db, actor_id)):
            return not_authorized("You are not authorized to view this user's moderation status")

        membership = find_membership(db, room_id, target_id)
        if membership is None:
            return not_found("Membership", "User is not in this room")

        now = self.clock.now()
        recent = db.execute(
            select(ModerationAction)
            .where(ModerationAction.room_id == room_id, ModerationAction.target_user_id == target_id)
            .order_by(ModerationAction.created_at.desc(), ModerationAction.id.desc())
            .limit(10)
        ).scalars().all()

        return Result.success({
            "user_id": target_id,
            "room_id": room_id,
            "is_muted": membership.is_muted_at(now),
            "muted_until": to_iso(membership.muted_until) if membership.is_muted_at(now) else None,
            "is_banned": membership.is_banned_at(now),
            "banned_until": to_iso(membership.banned_until) if membership.is_banned_at(now) else None,
            "can_send_messages": membership.can_send_messages(now),
            "recent_actions": [action.to_dict() for action in recent],
        })

    def list_active_restrictions(self, db: Session, room_id: Optional[int] = None) -> List[Dict]:
        now = self.clock.now()
        query = select(ChatRoomUser).where(
            (ChatRoomUser.is_muted.is_(True)) | (ChatRoomUser.is_banned.is_(True))
        )
        if room_id:
            query = query.where(ChatRoomUser.room_id == room_id)

        rows = []
        for membership in db.execute(query).scalars().all():
            rows.append({
                "room_id": membership.room_id,
                "user_id": membership.user_id,
                "is_muted": membership.is_muted_at(now),
                "muted_until": to_iso(membership.muted_until),
                "is_banned": membership.is_banned_at(now),
                "banned_until": to_iso(membership.banned_until),
            })
        return rows

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_expired(self, db: Session, room_id: Optional[int] = None) -> Dict:
        """Clear mutes and bans whose `_until` has passed"""
        now = self.clock.now()
        query = select(ChatRoomUser).where(
            ((ChatRoomUser.is_muted.is_(True)) & (ChatRoomUser.muted_until.is_not(None))
             & (ChatRoomUser.muted_until <= now))
            | ((ChatRoomUser.is_banned.is_(True)) & (ChatRoomUser.banned_until.is_not(None))
               & (ChatRoomUser.banned_until <= now))
        )
        if room_id:
            query = query.where(ChatRoomUser.room_id == room_id)

        unmuted = 0
        unbanned = 0
        touched = set()
        with unit_of_work(db):
            for membership in db.execute(query).scalars().all():
                was_muted = membership.is_muted
                was_banned = membership.is_banned
                membership.clear_expired(now)
                unmuted += int(was_muted and not membership.is_muted)
                unbanned += int(was_banned and not membership.is_banned)
                touched.add((membership.room_id, membership.user_id))

        for touched_room, touched_user in touched:
            self.cache.invalidate_presence(touched_room, touched_user)

        log_database_operation(
            logger, "cleanup_expired", "chat_room_users",
            affected_rows=len(touched), unmuted=unmuted, unbanned=unbanned,
        )
        return {"unmuted": unmuted, "unbanned": unbanned}


def page_info(total: int, page: int, per_page: int) -> Dict:
    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "last_page": max(1, -(-total // per_page)),
        "has_more": page * per_page < total,
    }
