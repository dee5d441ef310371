"""
Message Domain Events
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from .base import DomainEvent


@dataclass
class MessageSent(DomainEvent):
    """A message was persisted in a room"""
    room_id: int
    message: Dict
    mentions: List[Dict] = field(default_factory=list)
    timestamp: datetime


@dataclass
class MessageDeleted(DomainEvent):
    room_id: int
    message_id: int
    actor_id: Optional[int]  # None when deleted by the system actor
    reason: Optional[str] = None
    automated: bool = False
    timestamp: datetime
