"""
Broadcast publisher

Hands domain events to connected clients through Redis Pub/Sub. Delivery is
at-most-once and fire-and-forget: a failed publish is logged, never raised.
"""

from typing import Optional, Protocol

import redis

from app.core.logging import get_logger
from app.domain.events import DomainEvent

logger = get_logger(__name__)

ROOM_CHANNEL = "chat.room.{room_id}"


def room_channel(room_id: int) -> str:
    return ROOM_CHANNEL.format(room_id=room_id)


class BroadcastPublisher(Protocol):
    def publish(self, channel: str, event: DomainEvent) -> bool: ...


class RedisBroadcastPublisher:
    def __init__(self, client: redis.Redis):
        self.client = client

    def publish(self, channel: str, event: DomainEvent) -> bool:
        try:
            receivers = self.client.publish(channel, event.to_json())
            logger.debug(f"Published {event.event_name} to {channel} ({receivers} receivers)")
            return True
        except Exception as e:
            logger.warning(
                f"Failed to publish {event.event_name} to {channel}: {e}",
                extra={"event_type": "broadcast_failure", "channel": channel}
            )
            return False


class NullBroadcastPublisher:
    """Publisher used when no transport is configured (CLI maintenance runs)"""

    def __init__(self, log_events: bool = False):
        self.log_events = log_events

    def publish(self, channel: str, event: DomainEvent) -> bool:
        if self.log_events:
            logger.info(f"Broadcast {event.event_name} on {channel} dropped (no transport)")
        return True


def publish_to_room(publisher: Optional[BroadcastPublisher], room_id: int, event: DomainEvent) -> bool:
    """Publish on the room channel; never raises"""
    if publisher is None:
        return False
    try:
        return publisher.publish(room_channel(room_id), event)
    except Exception as e:
        logger.warning(f"Broadcast of {event.event_name} to room {room_id} failed: {e}")
        return False
