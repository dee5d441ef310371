"""
Cursor pagination and search over the message store

Messages are totally ordered by (created_at, id). A cursor names one message
in that order:

    base64(json({"id": 42, "timestamp": "2024-05-01T13:00:00.123456"}))

and a page is every row strictly before or after it. A malformed cursor is
treated as no cursor at all.

Each returned page carries `prev_cursor` (its oldest row) and `next_cursor`
(its newest row): page backwards with `direction="before", cursor=prev_cursor`
and forwards with `direction="after", cursor=next_cursor`.
"""

import base64
import binascii
import json
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional

from sqlalchemy import and_, func, or_, select, text
from sqlalchemy.orm import Session, selectinload

from app.core.clock import Clock
from app.core.config import Settings
from app.core.errors import Result, not_found, validation_failed
from app.core.logging import get_logger, log_performance_metric
from app.core.validators import Validator
from app.models.chat_messages import MESSAGE_TYPE_SYSTEM, MESSAGE_TYPE_TEXT, ChatMessage
from app.models.users import User
from app.services.cache_service import ChatCacheService
from app.services.moderation_service import find_room
from app.utils.time_utils import parse_iso

logger = get_logger(__name__)

DIRECTION_BEFORE = "before"
DIRECTION_AFTER = "after"
DIRECTIONS = [DIRECTION_BEFORE, DIRECTION_AFTER]


class Cursor(NamedTuple):
    id: int
    timestamp: datetime


def encode_cursor(message_id: int, timestamp: datetime) -> str:
    payload = json.dumps({"id": message_id, "timestamp": timestamp.isoformat()})
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> Optional[Cursor]:
    """Decode a cursor; anything malformed decodes to None"""
    if not cursor:
        return None
    try:
        data = json.loads(base64.b64decode(cursor.encode("ascii"), validate=True).decode("utf-8"))
        message_id = data["id"]
        if isinstance(message_id, bool) or not isinstance(message_id, int):
            return None
        return Cursor(id=message_id, timestamp=parse_iso(data["timestamp"]))
    except (binascii.Error, UnicodeError, ValueError, TypeError, KeyError, AttributeError):
        return None


def cursor_for(message: ChatMessage) -> str:
    return encode_cursor(message.id, message.created_at)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PaginationService:
    def __init__(self, cache: ChatCacheService, clock: Clock, settings: Settings):
        self.cache = cache
        self.clock = clock
        self.settings = settings

    def _base_query(self, room_id: int):
        return (
            select(ChatMessage)
            .options(selectinload(ChatMessage.user))
            .where(ChatMessage.room_id == room_id)
        )

    @staticmethod
    def _before(position: Cursor):
        return or_(
            ChatMessage.created_at < position.timestamp,
            and_(ChatMessage.created_at == position.timestamp, ChatMessage.id < position.id),
        )

    @staticmethod
    def _after(position: Cursor):
        return or_(
            ChatMessage.created_at > position.timestamp,
            and_(ChatMessage.created_at == position.timestamp, ChatMessage.id > position.id),
        )

    # =========================================================================
    # History
    # =========================================================================

    def page(
        self,
        db: Session,
        room_id: int,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
        direction: str = DIRECTION_BEFORE,
    ) -> Result:
        """
        One page of room history.

        Args:
            cursor: reference message; None (or malformed) means the newest end
            limit: page size, capped at max_page_size
            direction: 'before' for older rows, 'after' for newer rows

        Returns:
            Result with `messages` and `pagination` (has_more in the requested
            direction, next/prev cursors, direction, limit, count)
        """
        errors = Validator.validate_enum(direction, DIRECTIONS, "direction")
        if errors:
            return validation_failed("Invalid pagination direction", errors)
        if find_room(db, room_id) is None:
            return not_found("Room")

        limit = self._clamp(limit, self.settings.default_page_size, self.settings.max_page_size)
        position = decode_cursor(cursor)
        params = {
            "cursor": [position.id, position.timestamp.isoformat()] if position else None,
            "limit": limit,
            "direction": direction,
        }

        def compute() -> Dict:
            return self._fetch_page(db, room_id, position, limit, direction)

        return Result.success(self.cache.remember(
            self.cache.message_page_key(room_id, params),
            self.settings.cache_message_history_ttl,
            compute,
        ))

    def _fetch_page(self, db: Session, room_id: int, position: Optional[Cursor], limit: int,
                    direction: str) -> Dict:
        started = time.perf_counter()
        query = self._base_query(room_id)
        if position is not None and direction == DIRECTION_AFTER:
            query = query.where(self._after(position)).order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        else:
            if position is not None:
                query = query.where(self._before(position))
            query = query.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())

        rows = list(db.execute(query.limit(limit + 1)).scalars().all())
        has_more = len(rows) > limit
        rows = rows[:limit]

        # Initial load reads newest first but is shown oldest first
        if position is None:
            rows.reverse()

        prev_cursor = next_cursor = None
        if rows:
            oldest = min(rows, key=lambda row: (row.created_at, row.id))
            newest = max(rows, key=lambda row: (row.created_at, row.id))
            prev_cursor = cursor_for(oldest)
            next_cursor = cursor_for(newest)

        log_performance_metric(
            logger, "message_page_query",
            round((time.perf_counter() - started) * 1000, 2), "ms",
            room_id=room_id, direction=direction, rows=len(rows),
        )

        return {
            "messages": [row.to_dict() for row in rows],
            "pagination": {
                "has_more": has_more,
                "next_cursor": next_cursor,
                "prev_cursor": prev_cursor,
                "direction": direction,
                "limit": limit,
                "count": len(rows),
            },
        }

    def recent(self, db: Session, room_id: int, limit: Optional[int] = None) -> Result:
        """Most recent messages, oldest first"""
        return self.page(db, room_id, None, limit, DIRECTION_BEFORE)

    def after(self, db: Session, room_id: int, after_message_id: int, limit: Optional[int] = None) -> Result:
        """Messages newer than `after_message_id`, for incremental updates"""
        message = db.get(ChatMessage, after_message_id)
        if message is None or message.room_id != room_id:
            return not_found("Message")
        return self.page(db, room_id, cursor_for(message), limit, DIRECTION_AFTER)

    # =========================================================================
    # Search
    # =========================================================================

    def search(
        self,
        db: Session,
        room_id: int,
        query: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Result:
        """Text messages matching `query`, newest first; page on with `next_cursor`"""
        term = (query or "").strip()
        errors = Validator.validate_required(term, "query") or Validator.validate_string_length(
            term, "query", max_length=self.settings.search_query_max_length
        )
        if errors:
            return validation_failed("Invalid search query", errors)
        if find_room(db, room_id) is None:
            return not_found("Room")

        limit = self._clamp(limit, self.settings.search_default_page_size, self.settings.search_max_page_size)
        statement = self._base_query(room_id).where(ChatMessage.message_type == MESSAGE_TYPE_TEXT)

        if self._supports_full_text(db):
            statement = statement.where(
                text("MATCH(chat_messages.message) AGAINST(:term IN NATURAL LANGUAGE MODE)").bindparams(term=term)
            )
        else:
            statement = statement.where(ChatMessage.message.ilike(f"%{_escape_like(term)}%", escape="\\"))

        position = decode_cursor(cursor)
        if position is not None:
            statement = statement.where(self._before(position))

        statement = statement.order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc()).limit(limit + 1)
        rows = list(db.execute(statement).scalars().all())
        has_more = len(rows) > limit
        rows = rows[:limit]

        return Result.success({
            "messages": [row.to_dict() for row in rows],
            "search_query": term,
            "pagination": {
                "has_more": has_more,
                "next_cursor": cursor_for(rows[-1]) if has_more and rows else None,
                "limit": limit,
                "count": len(rows),
            },
        })

    def _supports_full_text(self, db: Session) -> bool:
        if not self.settings.full_text_search_enabled:
            return False
        return db.get_bind().dialect.name == "mysql"

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_message_statistics(self, db: Session, room_id: int, days: int = 7) -> Result:
        """Daily counts, hourly distribution over the last 24h and top senders"""
        if find_room(db, room_id) is None:
            return not_found("Room")

        days = max(1, min(days, 90))
        now = self.clock.now()
        since = now - timedelta(days=days)
        day_ago = now - timedelta(days=1)

        rows = db.execute(
            select(ChatMessage.created_at, ChatMessage.user_id, ChatMessage.message_type)
            .where(ChatMessage.room_id == room_id, ChatMessage.created_at >= since)
        ).all()

        daily: Dict[str, Dict] = defaultdict(lambda: {
            "total_messages": 0, "text_messages": 0, "system_messages": 0, "users": set(),
        })
        hourly: Dict[int, int] = defaultdict(int)
        for created_at, user_id, message_type in rows:
            bucket = daily[created_at.date().isoformat()]
            bucket["total_messages"] += 1
            bucket["users"].add(user_id)
            if message_type == MESSAGE_TYPE_TEXT:
                bucket["text_messages"] += 1
            elif message_type == MESSAGE_TYPE_SYSTEM:
                bucket["system_messages"] += 1
            if created_at >= day_ago:
                hourly[created_at.hour] += 1

        daily_stats: List[Dict] = []
        for date in sorted(daily, reverse=True):
            bucket = daily[date]
            daily_stats.append({
                "date": date,
                "total_messages": bucket["total_messages"],
                "active_users": len(bucket["users"]),
                "text_messages": bucket["text_messages"],
                "system_messages": bucket["system_messages"],
            })

        top_users = db.execute(
            select(User.id, User.username, func.count(ChatMessage.id).label("message_count"))
            .join(ChatMessage, ChatMessage.user_id == User.id)
            .where(
                ChatMessage.room_id == room_id,
                ChatMessage.created_at >= since,
                ChatMessage.message_type == MESSAGE_TYPE_TEXT,
            )
            .group_by(User.id, User.username)
            .order_by(func.count(ChatMessage.id).desc(), User.id)
            .limit(10)
        ).all()

        return Result.success({
            "room_id": room_id,
            "period_days": days,
            "daily_stats": daily_stats,
            "hourly_stats": [{"hour": hour, "message_count": hourly[hour]} for hour in sorted(hourly)],
            "top_users": [
                {"id": uid, "username": username, "message_count": count}
                for uid, username, count in top_users
            ],
            "generated_at": now.isoformat(),
        })

    @staticmethod
    def _clamp(limit: Optional[int], default: int, maximum: int) -> int:
        if limit is None:
            return default
        return max(1, min(limit, maximum))
