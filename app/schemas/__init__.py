# Chat request schemas
from .chat import (
    RoomCreate,
    RoomUpdate,
    MessageCreate,
    SystemMessageCreate,
    RestrictionRequest,
    LiftRestrictionRequest,
    ReportCreate,
    ReportReview,
)

__all__ = [
    # Rooms
    "RoomCreate",
    "RoomUpdate",

    # Messages
    "MessageCreate",
    "SystemMessageCreate",

    # Moderation
    "RestrictionRequest",
    "LiftRestrictionRequest",

    # Reports
    "ReportCreate",
    "ReportReview",
]
