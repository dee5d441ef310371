from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from app.database.sql import Base
from app.utils.time_utils import utcnow


class ChatRoom(Base):
    __tablename__ = "chat_rooms"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    # Mirrors `name` while active, NULL once deactivated; unique among active rooms
    active_name = Column(String(100), nullable=True, unique=True)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, index=True)  # False = deleted, history kept
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)

    # Relationships
    creator = relationship("User", back_populates="created_rooms")
    members = relationship("ChatRoomUser", back_populates="room")

    def rename(self, name: str):
        self.name = name
        if self.is_active:
            self.active_name = name

    def deactivate(self):
        self.is_active = False
        self.active_name = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ChatRoom(id={self.id}, name={self.name}, is_active={self.is_active})>"
