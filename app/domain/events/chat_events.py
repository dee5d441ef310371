"""
Room Domain Events
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict
from .base import DomainEvent


@dataclass
class ChatRoomCreated(DomainEvent):
    room_id: int
    name: str
    created_by: int
    timestamp: datetime


@dataclass
class ChatRoomUpdated(DomainEvent):
    room_id: int
    changes: Dict = field(default_factory=dict)
    timestamp: datetime


@dataclass
class ChatRoomDeleted(DomainEvent):
    room_id: int
    deleted_by: int
    timestamp: datetime
