"""
Domain Events

Notifications produced by the chat core and handed to the broadcast publisher.
"""

from .base import DomainEvent
from .message_events import MessageSent, MessageDeleted
from .presence_events import UserJoined, UserLeft
from .moderation_events import UserMuted, UserUnmuted, UserBanned, UserUnbanned
from .chat_events import ChatRoomCreated, ChatRoomUpdated, ChatRoomDeleted

__all__ = [
    'DomainEvent',
    'MessageSent',
    'MessageDeleted',
    'UserJoined',
    'UserLeft',
    'UserMuted',
    'UserUnmuted',
    'UserBanned',
    'UserUnbanned',
    'ChatRoomCreated',
    'ChatRoomUpdated',
    'ChatRoomDeleted',
]
