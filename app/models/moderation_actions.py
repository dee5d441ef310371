from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index
from app.database.sql import Base
from app.utils.time_utils import utcnow

# Action types
ACTION_DELETE_MESSAGE = "delete_message"
ACTION_MUTE_USER = "mute_user"
ACTION_UNMUTE_USER = "unmute_user"
ACTION_BAN_USER = "ban_user"
ACTION_UNBAN_USER = "unban_user"
ACTION_CONTENT_FILTER = "content_filter"
ACTION_SPAM_DETECTION = "spam_detection"

ACTION_TYPES = [
    ACTION_DELETE_MESSAGE,
    ACTION_MUTE_USER,
    ACTION_UNMUTE_USER,
    ACTION_BAN_USER,
    ACTION_UNBAN_USER,
    ACTION_CONTENT_FILTER,
    ACTION_SPAM_DETECTION,
]

# Who performed the action. The system actor never maps to a row in `users`.
ACTOR_USER = "user"
ACTOR_SYSTEM = "system"


class ModerationAction(Base):
    """Append-only moderation audit record"""
    __tablename__ = "chat_moderation_actions"
    __table_args__ = (
        Index("ix_moderation_room_created", "room_id", "created_at"),
        Index("ix_moderation_target", "room_id", "target_user_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id"), nullable=False)
    actor_type = Column(String(10), default=ACTOR_USER, nullable=False)
    moderator_id = Column(Integer, ForeignKey("users.id"), nullable=True)  # None for the system actor
    target_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True)
    action_type = Column(String(30), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def is_automated(self) -> bool:
        return self.actor_type == ACTOR_SYSTEM

    @property
    def severity(self) -> str:
        return (self.details or {}).get("severity", "low")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "actor_type": self.actor_type,
            "moderator_id": self.moderator_id,
            "target_user_id": self.target_user_id,
            "message_id": self.message_id,
            "action_type": self.action_type,
            "reason": self.reason,
            "metadata": self.details or {},
            "is_automated": self.is_automated,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<ModerationAction(id={self.id}, action_type={self.action_type}, room_id={self.room_id})>"
