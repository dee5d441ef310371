"""
Service wiring

Every chat component gets its cache, clock and publisher through its
constructor; `build_services` is the one place that assembles them.
"""

from dataclasses import dataclass
from typing import Optional

from app.core.clock import Clock, SystemClock
from app.core.config import Settings, settings as default_settings
from app.database.cache_store import CacheStore
from app.services.broadcast import BroadcastPublisher
from app.services.cache_service import ChatCacheService
from app.services.content_filter import ContentFilter
from app.services.maintenance import MaintenanceService
from app.services.message_service import MessageService
from app.services.moderation_service import ModerationService
from app.services.pagination_service import PaginationService
from app.services.presence_service import PresenceService
from app.services.rate_limiter import RateLimiter
from app.services.report_service import ReportService
from app.services.room_service import RoomService
from app.services.word_policy import WordPolicy, load_word_policy


@dataclass
class ChatServices:
    settings: Settings
    clock: Clock
    publisher: BroadcastPublisher
    cache: ChatCacheService
    rate_limiter: RateLimiter
    moderation: ModerationService
    content_filter: ContentFilter
    messages: MessageService
    presence: PresenceService
    pagination: PaginationService
    reports: ReportService
    rooms: RoomService
    maintenance: MaintenanceService


def build_services(
    store: CacheStore,
    publisher: BroadcastPublisher,
    clock: Optional[Clock] = None,
    settings: Optional[Settings] = None,
    policy: Optional[WordPolicy] = None,
) -> ChatServices:
    settings = settings or default_settings
    clock = clock or SystemClock()
    policy = policy or load_word_policy(settings.word_policy_path)

    cache = ChatCacheService(store, clock, settings)
    rate_limiter = RateLimiter(store, clock)
    moderation = ModerationService(cache, publisher, clock, settings)
    content_filter = ContentFilter(cache, moderation, clock, settings, policy)
    messages = MessageService(cache, content_filter, rate_limiter, moderation, publisher, clock, settings)
    presence = PresenceService(cache, messages, publisher, clock, settings)
    pagination = PaginationService(cache, clock, settings)
    reports = ReportService(cache, moderation, content_filter, publisher, clock, settings)
    rooms = RoomService(cache, messages, moderation, publisher, clock, settings)
    maintenance = MaintenanceService(cache, rooms, presence, moderation)

    return ChatServices(
        settings=settings,
        clock=clock,
        publisher=publisher,
        cache=cache,
        rate_limiter=rate_limiter,
        moderation=moderation,
        content_filter=content_filter,
        messages=messages,
        presence=presence,
        pagination=pagination,
        reports=reports,
        rooms=rooms,
        maintenance=maintenance,
    )
