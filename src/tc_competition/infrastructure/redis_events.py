"""RedisEventBus — publishes competition events on Redis pub/sub.

Channel per event: ``{prefix}:{event_name}``, e.g. ``tc:events:room_closed``.
Payloads are JSON; datetimes are serialised as ISO strings.
"""

import json
import logging
from datetime import date, datetime
from typing import Any

import redis.asyncio as aioredis

from src.tc_competition.domain.events import DomainEvent

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def encode_event(event: DomainEvent) -> str:
    return json.dumps(
        {"event": event.name.value, "data": event.to_payload()},
        default=_json_default,
    )


class RedisEventBus:
    def __init__(self, redis: aioredis.Redis, channel_prefix: str) -> None:
        self._redis = redis
        self._prefix = channel_prefix

    def channel_for(self, event: DomainEvent) -> str:
        return f"{self._prefix}:{event.name.value}"

    async def publish(self, event: DomainEvent) -> None:
        channel = self.channel_for(event)
        receivers = await self._redis.publish(channel, encode_event(event))
        logger.debug("Published %s to %s (%d receivers)", event.name.value, channel, receivers)
