"""Scheduler state and operation results."""

from dataclasses import dataclass, field
from datetime import datetime

from src.tc_market.domain.models import FormingCandle
from src.tc_room.domain.models import Room, Winner


@dataclass
class MarketSession:
    """Process-wide view of which rooms are live.

    ``market_open`` is true while at least one room is ACTIVE; it gates
    stop-level evaluation and candle events.
    """

    market_open: bool = False
    active_room_ids: set[str] = field(default_factory=set)
    started_at: datetime | None = None


@dataclass
class CompetitionResult:
    """Outcome of a start/end request. Failures carry ``error`` instead of raising."""

    success: bool
    message: str = ""
    room: Room | None = None
    winners: list[Winner] = field(default_factory=list)
    error: str | None = None


@dataclass
class CheckResult:
    active_room_ids: list[str] = field(default_factory=list)
    activated_count: int = 0
    closed_count: int = 0
    error: str | None = None


@dataclass
class SyncSnapshot:
    price: float
    forming_candle: FormingCandle
    market_open: bool
    active_room_ids: list[str]
    session_started_at: datetime | None
