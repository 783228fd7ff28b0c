"""Competition events and the publish interface.

The scheduler only publishes. Fan-out to clients (WebSocket, push, ...) is
done by whatever subscribes: in-process via ``InMemoryEventBus.subscribe`` or
out-of-process via the Redis adapter in
``src.tc_competition.infrastructure.redis_events``.
"""

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Protocol

from src.tc_common.enums import EventName
from src.tc_market.domain.models import Candle
from src.tc_room.domain.models import Winner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    name: ClassVar[EventName]

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RoomActivated(DomainEvent):
    name: ClassVar[EventName] = EventName.ROOM_ACTIVATED
    room_id: str
    room_name: str
    status: str
    message: str


@dataclass(frozen=True)
class RoomClosing(DomainEvent):
    name: ClassVar[EventName] = EventName.ROOM_CLOSING
    room_id: str
    room_name: str
    status: str
    message: str


@dataclass(frozen=True)
class RoomClosed(DomainEvent):
    name: ClassVar[EventName] = EventName.ROOM_CLOSED
    room_id: str
    room_name: str
    status: str
    message: str
    winners: list[Winner] = field(default_factory=list)


@dataclass(frozen=True)
class CandleCompleted(DomainEvent):
    name: ClassVar[EventName] = EventName.CANDLE_COMPLETED
    candle: Candle
    active_room_ids: list[str]
    market_open: bool


@dataclass(frozen=True)
class PriceUpdate(DomainEvent):
    name: ClassVar[EventName] = EventName.PRICE_UPDATE
    price: float
    candle: Candle
    is_new_candle: bool
    server_time: int


EventHandler = Callable[[DomainEvent], Awaitable[None] | None]


class EventBus(Protocol):
    async def publish(self, event: DomainEvent) -> None: ...


class InMemoryEventBus:
    """Dispatches events to in-process subscribers, in subscription order.

    A failing subscriber is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventName, list[EventHandler]] = defaultdict(list)

    def subscribe(self, name: EventName, handler: EventHandler) -> None:
        self._handlers[name].append(handler)

    def unsubscribe(self, name: EventName, handler: EventHandler) -> None:
        handlers = self._handlers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers.get(event.name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Subscriber failed for event %s", event.name.value)
