"""
Moderation Domain Events
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from .base import DomainEvent


@dataclass
class MembershipModerated(DomainEvent):
    """Common payload for mute/ban state changes"""
    room_id: int
    target_id: int
    actor_id: Optional[int]  # None for the system actor
    duration_minutes: Optional[int] = None
    reason: Optional[str] = None
    until: Optional[str] = None
    automated: bool = False
    timestamp: datetime


@dataclass
class UserMuted(MembershipModerated):
    pass


@dataclass
class UserUnmuted(MembershipModerated):
    pass


@dataclass
class UserBanned(MembershipModerated):
    pass


@dataclass
class UserUnbanned(MembershipModerated):
    pass
