"""Global enums — values are persisted as-is and must match DB CHECK constraints."""

from enum import Enum


class RoomStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


class PositionType(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class PositionStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class EventName(str, Enum):
    """Names published on the event bus; transport channels are derived from these."""
    ROOM_ACTIVATED = "room_activated"
    ROOM_CLOSING = "room_closing"
    ROOM_CLOSED = "room_closed"
    CANDLE_COMPLETED = "candle_completed"
    PRICE_UPDATE = "price_update"
