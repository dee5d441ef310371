from sqlalchemy import Column, Integer, String, DateTime, Boolean
from sqlalchemy.orm import relationship
from app.database.sql import Base
from app.utils.time_utils import utcnow


class User(Base):
    """Chat participant. Accounts are owned by the external auth collaborator."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    role = Column(String(20), default="user", nullable=False)  # user, moderator, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    created_rooms = relationship("ChatRoom", back_populates="creator")
    memberships = relationship("ChatRoomUser", foreign_keys="ChatRoomUser.user_id", back_populates="user")

    def has_role(self, roles) -> bool:
        return self.role in roles

    def to_summary(self) -> dict:
        return {"id": self.id, "username": self.username}

    def __repr__(self):
        return f"<User(id={self.id}, username={self.username}, role={self.role})>"
