"""Domain models for tc_room (plain dataclasses).

A Room embeds its participants, their positions and the final winners, and is
read and written back as one document by the repository.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

from src.tc_common.enums import PositionStatus, RoomStatus

DEFAULT_INITIAL_CAPITAL = 100_000.0
DEFAULT_CAPACITY = 25
MAX_CAPACITY = 100
FREE_ROOM_PRIZE_POOL = 30


@dataclass
class PrizeSlot:
    position: int
    percentage: int


DEFAULT_PRIZE_DISTRIBUTION: tuple[PrizeSlot, ...] = (
    PrizeSlot(1, 35),
    PrizeSlot(2, 25),
    PrizeSlot(3, 15),
    PrizeSlot(4, 10),
    PrizeSlot(5, 15),
)


@dataclass
class Position:
    id: str
    type: str                       # PositionType
    entry_price: float
    size: float
    stop_loss: float | None = None
    take_profit: float | None = None
    opened_at: datetime | None = None
    status: str | None = PositionStatus.OPEN.value  # None: legacy record, treated as OPEN
    close_price: float | None = None
    closed_at: datetime | None = None
    pnl: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.status is None or self.status == PositionStatus.OPEN.value


@dataclass
class Participant:
    user_id: str
    username: str
    initial_capital: float = DEFAULT_INITIAL_CAPITAL
    current_capital: float = DEFAULT_INITIAL_CAPITAL
    open_positions: list[Position] = field(default_factory=list)
    joined_at: datetime | None = None


@dataclass
class Winner:
    position: int
    user_id: str
    username: str
    final_capital: float
    prize: int
    paid: bool = False
    payment_date: datetime | None = None
    payment_receipt: str | None = None


@dataclass
class RankingEntry:
    position: int
    user_id: str
    username: str
    capital: float
    profit_percentage: float


@dataclass
class Room:
    id: str
    name: str
    entry_fee: int
    competition_date: date
    start_time: str = "08:00"
    end_time: str = "17:00"
    capacity: int = DEFAULT_CAPACITY
    status: str = RoomStatus.PENDING.value
    total_prize_pool: int = 0
    prize_distribution: list[PrizeSlot] = field(
        default_factory=lambda: [
            PrizeSlot(s.position, s.percentage) for s in DEFAULT_PRIZE_DISTRIBUTION
        ]
    )
    participants: list[Participant] = field(default_factory=list)
    winners: list[Winner] = field(default_factory=list)
    created_at: datetime | None = None
    version: int = 0

    def is_full(self) -> bool:
        return len(self.participants) >= self.capacity

    def find_participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None
