from .users import User
from .chat_rooms import ChatRoom
from .chat_room_users import ChatRoomUser
from .chat_messages import ChatMessage
from .moderation_actions import ModerationAction
from .chat_reports import ChatReport

__all__ = [
    "User",
    "ChatRoom",
    "ChatRoomUser",
    "ChatMessage",
    "ModerationAction",
    "ChatReport",
]
