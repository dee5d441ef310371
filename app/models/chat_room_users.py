from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, DateTime, Boolean, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from app.database.sql import Base
from app.utils.time_utils import utcnow


class ChatRoomUser(Base):
    """
    Membership of a user in a room.

    Holds presence (online flag, last seen) and moderation state. A `None`
    `muted_until` / `banned_until` on an active mute/ban means permanent.
    `muted_by` / `banned_by` are `None` when the system actor applied it.
    """
    __tablename__ = "chat_room_users"
    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="uq_chat_room_user"),
        Index("ix_chat_room_users_presence", "is_online", "last_seen_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=utcnow)
    last_seen_at = Column(DateTime, default=utcnow)
    is_online = Column(Boolean, default=True, nullable=False)

    is_muted = Column(Boolean, default=False, nullable=False)
    muted_until = Column(DateTime, nullable=True)
    muted_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    is_banned = Column(Boolean, default=False, nullable=False)
    banned_until = Column(DateTime, nullable=True)
    banned_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Relationships
    room = relationship("ChatRoom", back_populates="members")
    user = relationship("User", foreign_keys=[user_id], back_populates="memberships")

    # -------------------------------------------------------------------------
    # Moderation state
    # -------------------------------------------------------------------------

    def is_muted_at(self, now: datetime) -> bool:
        return bool(self.is_muted) and (self.muted_until is None or now < self.muted_until)

    def is_banned_at(self, now: datetime) -> bool:
        return bool(self.is_banned) and (self.banned_until is None or now < self.banned_until)

    def can_send_messages(self, now: datetime) -> bool:
        return not self.is_muted_at(now) and not self.is_banned_at(now)

    def mute(self, until: Optional[datetime], by: Optional[int]):
        self.is_muted = True
        self.muted_until = until
        self.muted_by = by

    def unmute(self):
        self.is_muted = False
        self.muted_until = None
        self.muted_by = None

    def ban(self, until: Optional[datetime], by: Optional[int]):
        self.is_banned = True
        self.banned_until = until
        self.banned_by = by
        self.is_online = False

    def unban(self):
        self.is_banned = False
        self.banned_until = None
        self.banned_by = None

    def clear_expired(self, now: datetime) -> bool:
        """Drop mute/ban flags whose `_until` has passed. Returns True if anything changed."""
        changed = False
        if self.is_muted and not self.is_muted_at(now):
            self.unmute()
            changed = True
        if self.is_banned and not self.is_banned_at(now):
            self.unban()
            changed = True
        return changed

    # -------------------------------------------------------------------------
    # Presence
    # -------------------------------------------------------------------------

    def touch(self, now: datetime):
        self.last_seen_at = now
        self.is_online = True

    def go_offline(self, now: datetime):
        self.last_seen_at = now
        self.is_online = False

    def __repr__(self):
        return f"<ChatRoomUser(room_id={self.room_id}, user_id={self.user_id}, online={self.is_online})>"
