from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from app.database.sql import Base, PreciseDateTime
from app.utils.time_utils import utcnow

MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_SYSTEM = "system"
MESSAGE_TYPES = [MESSAGE_TYPE_TEXT, MESSAGE_TYPE_SYSTEM]


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    __table_args__ = (
        # Keyset pagination: (room_id, created_at, id)
        Index("ix_chat_messages_room_cursor", "room_id", "created_at", "id"),
        Index("ix_chat_messages_user_room", "user_id", "room_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    message = Column(Text, nullable=False)
    message_type = Column(String(20), default=MESSAGE_TYPE_TEXT, nullable=False)
    created_at = Column(PreciseDateTime, default=utcnow, nullable=False)

    # Relationships
    user = relationship("User")

    @property
    def is_system(self) -> bool:
        return self.message_type == MESSAGE_TYPE_SYSTEM

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "room_id": self.room_id,
            "user_id": self.user_id,
            "username": self.user.username if self.user else None,
            "message": self.message,
            "message_type": self.message_type,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<ChatMessage(id={self.id}, room_id={self.room_id}, user_id={self.user_id}, type={self.message_type})>"
