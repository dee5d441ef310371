"""
Message pipeline

`send_message` takes an inbound body through validation, sanitising,
filtering and rate limiting, persists it together with the sender's
presence refresh, invalidates the room's derived caches and finally
publishes the notification. Every rejection short-circuits with a typed
`Result` failure; nothing after the failing step runs.
"""

import re
from typing import Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.clock import Clock
from app.core.config import Settings
from app.core.errors import (
    Result,
    conflict,
    not_authorized,
    not_found,
    policy_rejected,
    validation_failed,
)
from app.core.logging import get_logger
from app.core.validators import Validator
from app.database.sql import unit_of_work
from app.domain.events import MessageSent
from app.models.chat_messages import MESSAGE_TYPE_SYSTEM, MESSAGE_TYPE_TEXT, MESSAGE_TYPES, ChatMessage
from app.models.users import User
from app.services.broadcast import BroadcastPublisher, publish_to_room
from app.services.cache_service import ChatCacheService
from app.services.content_filter import ContentFilter
from app.services.moderation_service import ModerationService, find_membership, find_room, find_user
from app.services.rate_limiter import RateLimiter
from app.utils.text_utils import sanitize_text
from app.utils.time_utils import to_iso

logger = get_logger(__name__)

MENTION_PATTERN = re.compile(r'@([A-Za-z0-9_.-]+)')
USERNAME_TAIL = r'(?![A-Za-z0-9_.-])'

EMOTICONS = {
    ':)': '😊',
    ':(': '😢',
    ':D': '😃',
    ':P': '😛',
    ':o': '😮',
    ';)': '😉',
    '<3': '❤️',
    '</3': '💔',
    ':thumbsup:': '👍',
    ':thumbsdown:': '👎',
    ':fire:': '🔥',
    ':star:': '⭐',
    ':check:': '✅',
    ':x:': '❌',
}

# Longest token first so '</3' wins over '<3'; tokens must stand alone so
# URLs and words like "http://o" are left untouched
EMOTICON_PATTERN = re.compile(
    r'(?<!\S)(' + '|'.join(re.escape(token) for token in sorted(EMOTICONS, key=len, reverse=True)) + r')(?=\s|$|[.,!?])'
)


def extract_mentions(db: Session, body: str) -> List[Dict]:
    """Resolve @name tokens against known users; unknown names are dropped"""
    names = {name.rstrip('.').lower() for name in MENTION_PATTERN.findall(body)}
    names.discard('')
    if not names:
        return []

    users = db.execute(
        select(User).where(func.lower(User.username).in_(names)).order_by(User.id)
    ).scalars().all()
    return [{"user_id": user.id, "username": user.username} for user in users]


def render_mentions(body: str, mentions: List[Dict]) -> str:
    for mention in mentions:
        pattern = re.compile('@' + re.escape(mention["username"]) + USERNAME_TAIL, re.IGNORECASE)
        markup = f'<mention data-user-id="{mention["user_id"]}">@{mention["username"]}</mention>'
        body = pattern.sub(lambda _: markup, body)
    return body


def render_emoticons(body: str) -> str:
    return EMOTICON_PATTERN.sub(lambda match: EMOTICONS[match.group(1)], body)


class MessageService:
    def __init__(
        self,
        cache: ChatCacheService,
        content_filter: ContentFilter,
        rate_limiter: RateLimiter,
        moderation: ModerationService,
        publisher: BroadcastPublisher,
        clock: Clock,
        settings: Settings,
    ):
        self.cache = cache
        self.content_filter = content_filter
        self.rate_limiter = rate_limiter
        self.moderation = moderation
        self.publisher = publisher
        self.clock = clock
        self.settings = settings

    def send_message(
        self,
        db: Session,
        room_id: int,
        user_id: int,
        body: str,
        message_type: str = MESSAGE_TYPE_TEXT,
    ) -> Result:
        """
        Validate, filter, rate limit, persist and broadcast a message.

        Args:
            db: session; the write is committed here
            room_id: target room
            user_id: sender
            body: raw message body
            message_type: 'text', or 'system' for room moderators

        Returns:
            Result with the stored message, resolved mentions and the filter
            verdict, or a failure of kind validation, authorization, policy,
            not_found or conflict
        """
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")
        if not room.is_active:
            return conflict("room_inactive", "Chat room is not active")

        user = find_user(db, user_id)
        if user is None:
            return not_found("User")

        membership = find_membership(db, room_id, user_id)
        if membership is None or not membership.is_online:
            return not_authorized("You must join the room first", code="not_a_member")

        now = self.clock.now()
        is_moderator = self.moderation.can_moderate(room, user)
        if not is_moderator:
            if membership.is_banned_at(now):
                return policy_rejected(
                    "user_banned", "You are banned from this room",
                    banned_until=to_iso(membership.banned_until),
                )
            if membership.is_muted_at(now):
                return policy_rejected(
                    "user_muted", "You are muted in this room",
                    muted_until=to_iso(membership.muted_until),
                )

        errors = Validator.validate_enum(message_type, MESSAGE_TYPES, "message_type")
        if errors:
            return validation_failed("Invalid message type", errors)
        if message_type == MESSAGE_TYPE_SYSTEM and not is_moderator:
            return not_authorized("Only room moderators can send system messages")

        # 1. length
        errors = Validator.validate_message_content(
            body, self.settings.message_min_length, self.settings.message_max_length
        )
        if errors:
            code = "empty_message" if not (body or "").strip() else "message_too_long"
            return validation_failed(errors[0].message, errors, code=code)

        # 2. sanitise
        clean_body = sanitize_text(body)
        if not clean_body:
            return validation_failed(
                "Message cannot be empty",
                Validator.validate_message_content(clean_body, 1, self.settings.message_max_length),
                code="empty_message",
            )

        # 3. content and spam filter
        verdict = None
        filtered_body = clean_body
        if message_type == MESSAGE_TYPE_TEXT:
            verdict = self.content_filter.screen(db, clean_body, user_id, room_id)
            if not verdict.allowed:
                return policy_rejected(
                    "message_blocked",
                    verdict.reason,
                    violations=verdict.violations,
                    severity=verdict.severity,
                    actions_taken=verdict.actions_taken,
                )
            filtered_body = verdict.filtered_body

        # Rate limit counts only messages that passed the filter
        limit = self.rate_limiter.check(
            f"send_message:{user_id}:{room_id}",
            self.settings.message_rate_limit,
            self.settings.message_rate_window_seconds,
        )
        if not limit.allowed:
            return policy_rejected(
                "rate_limited",
                f"Too many messages. Please wait {limit.retry_after} seconds before sending another message.",
                attempts=limit.attempts,
                max_attempts=limit.max_attempts,
                remaining=limit.remaining,
                retry_after=limit.retry_after,
                reset_time=to_iso(limit.reset_time),
            )

        # 4/5. mentions and emoticons
        mentions = extract_mentions(db, filtered_body)
        stored_body = render_emoticons(render_mentions(filtered_body, mentions))

        # 6/7. persist with the sender's presence refresh
        with unit_of_work(db):
            message = ChatMessage(
                room_id=room_id,
                user_id=user_id,
                message=stored_body,
                message_type=message_type,
                created_at=now,
            )
            db.add(message)
            membership.touch(now)

        # 8. invalidate
        self.cache.invalidate_messages(room_id)
        self.cache.invalidate_user_presence(user_id, room_id)
        self.cache.track_room_activity(room_id, "message_sent", {
            "message_id": message.id,
            "user_id": user_id,
            "message_type": message_type,
        })

        # 9. publish
        payload = message.to_dict()
        publish_to_room(self.publisher, room_id, MessageSent(
            timestamp=now, room_id=room_id, message=payload, mentions=mentions,
        ))

        logger.info(
            f"Message {message.id} sent to room {room_id} by user {user_id}",
            extra={"event_type": "message_sent", "room_id": room_id, "user_id": user_id,
                   "message_id": message.id, "mention_count": len(mentions)}
        )

        return Result.success({
            "message": payload,
            "mentions": mentions,
            "original_message": clean_body,
            "filter": verdict.to_dict() if verdict else None,
            "rate_limit": {"remaining": limit.remaining, "reset_time": to_iso(limit.reset_time)},
        })

    # =========================================================================
    # System messages
    # =========================================================================

    def add_system_message(self, db: Session, room_id: int, user_id: int, text: str) -> ChatMessage:
        """Stage a system message inside the caller's unit of work"""
        message = ChatMessage(
            room_id=room_id,
            user_id=user_id,
            message=sanitize_text(text),
            message_type=MESSAGE_TYPE_SYSTEM,
            created_at=self.clock.now(),
        )
        db.add(message)
        db.flush()
        return message

    def announce(self, room_id: int, message: ChatMessage):
        """Publish a committed system message"""
        publish_to_room(self.publisher, room_id, MessageSent(
            timestamp=self.clock.now(), room_id=room_id, message=message.to_dict(),
        ))

    def send_system_message(self, db: Session, room_id: int, user_id: int, text: str) -> Result:
        """Post a room moderator's system message without filtering or rate limiting"""
        room = find_room(db, room_id)
        if room is None:
            return not_found("Room")
        if not room.is_active:
            return conflict("room_inactive", "Chat room is not active")
        if not self.moderation.can_moderate(room, find_user(db, user_id)):
            return not_authorized("Only room moderators can send system messages")

        errors = Validator.validate_message_content(
            text, self.settings.message_min_length, self.settings.message_max_length
        )
        if errors:
            return validation_failed(errors[0].message, errors)

        with unit_of_work(db):
            message = self.add_system_message(db, room_id, user_id, text)

        self.cache.invalidate_messages(room_id)
        self.announce(room_id, message)
        return Result.success({"message": message.to_dict()})

    def get_room_activity(self, db: Session, room_id: int, hours: int = 24) -> Result:
        if find_room(db, room_id) is None:
            return not_found("Room")
        hours = max(1, min(hours, 24))
        return Result.success({"room_id": room_id, "hours": hours,
                               "activity": self.cache.get_room_activity(room_id, hours)})
