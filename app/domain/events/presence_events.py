"""
Presence Domain Events
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict
from .base import DomainEvent


@dataclass
class UserJoined(DomainEvent):
    room_id: int
    user: Dict
    timestamp: datetime


@dataclass
class UserLeft(DomainEvent):
    room_id: int
    user: Dict
    reason: str = "left"  # left | timeout
    timestamp: datetime
