"""
Services layer for the chat core.

This layer handles:
- The message pipeline and its content/spam filter
- Presence, moderation and reports
- Cursor pagination and search
- Cache access and invalidation
"""

from .container import ChatServices, build_services

__all__ = [
    "ChatServices",
    "build_services",
]
