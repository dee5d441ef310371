from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, Index
from app.database.sql import Base
from app.models.moderation_actions import ACTOR_USER, ACTOR_SYSTEM
from app.utils.time_utils import utcnow

REPORT_TYPES = [
    "inappropriate_content",
    "spam",
    "harassment",
    "hate_speech",
    "violence",
    "sexual_content",
    "misinformation",
    "other",
]

STATUS_PENDING = "pending"
STATUS_REVIEWED = "reviewed"
STATUS_RESOLVED = "resolved"
STATUS_DISMISSED = "dismissed"
REPORT_STATUSES = [STATUS_PENDING, STATUS_REVIEWED, STATUS_RESOLVED, STATUS_DISMISSED]


class ChatReport(Base):
    """
    User report against a message.

    `message_id` is detached (set to None) by the moderation engine before the
    message row is deleted; `details` keeps the reported content.
    """
    __tablename__ = "chat_reports"
    __table_args__ = (
        Index("ix_chat_reports_message_status", "message_id", "status"),
        Index("ix_chat_reports_room_status", "room_id", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("chat_messages.id", ondelete="SET NULL"), nullable=True)
    reporter_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    reported_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    room_id = Column(Integer, ForeignKey("chat_rooms.id"), nullable=False)
    report_type = Column(String(30), nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String(20), default=STATUS_PENDING, nullable=False)
    reviewer_type = Column(String(10), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id"), nullable=True)  # None for the system actor
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def is_pending(self) -> bool:
        return self.status == STATUS_PENDING

    def mark(self, status: str, reviewer_id: Optional[int], notes: Optional[str], now: datetime):
        """Record a review outcome; reviewer_id None means the system actor"""
        self.status = status
        self.reviewer_type = ACTOR_SYSTEM if reviewer_id is None else ACTOR_USER
        self.reviewed_by = reviewer_id
        self.reviewed_at = now
        self.review_notes = notes
        self.updated_at = now

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "message_id": self.message_id,
            "reporter_id": self.reporter_id,
            "reported_user_id": self.reported_user_id,
            "room_id": self.room_id,
            "report_type": self.report_type,
            "reason": self.reason,
            "status": self.status,
            "reviewer_type": self.reviewer_type,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "review_notes": self.review_notes,
            "metadata": self.details or {},
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<ChatReport(id={self.id}, message_id={self.message_id}, status={self.status})>"
