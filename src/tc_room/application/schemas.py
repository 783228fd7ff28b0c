"""Pydantic schemas for tc_room API responses."""

from pydantic import BaseModel

from src.tc_room.domain.models import PrizeSlot, RankingEntry, Room, Winner

# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------


class PrizeSlotOut(BaseModel):
    position: int
    percentage: int

    @classmethod
    def from_domain(cls, s: PrizeSlot) -> "PrizeSlotOut":
        return cls(position=s.position, percentage=s.percentage)


class RankingEntryOut(BaseModel):
    position: int
    user_id: str
    username: str
    capital: float
    profit_percentage: float

    @classmethod
    def from_domain(cls, e: RankingEntry) -> "RankingEntryOut":
        return cls(
            position=e.position,
            user_id=e.user_id,
            username=e.username,
            capital=e.capital,
            profit_percentage=round(e.profit_percentage, 4),
        )


class WinnerOut(BaseModel):
    position: int
    user_id: str
    username: str
    final_capital: float
    prize: int
    paid: bool

    @classmethod
    def from_domain(cls, w: Winner) -> "WinnerOut":
        return cls(
            position=w.position,
            user_id=w.user_id,
            username=w.username,
            final_capital=w.final_capital,
            prize=w.prize,
            paid=w.paid,
        )


# ---------------------------------------------------------------------------
# Room detail (live pool, top ranking, winners once CLOSED)
# ---------------------------------------------------------------------------


class RoomDetail(BaseModel):
    id: str
    name: str
    entry_fee: int
    capacity: int
    participant_count: int
    available_spots: int
    competition_date: str
    start_time: str
    end_time: str
    status: str
    total_prize_pool: int
    prize_distribution: list[PrizeSlotOut]
    adjusted_distribution: list[PrizeSlotOut]
    ranking: list[RankingEntryOut]
    winners: list[WinnerOut]


class JoinRoomRequest(BaseModel):
    user_id: str
    username: str


class JoinRoomResponse(BaseModel):
    room_id: str
    room_name: str
    initial_capital: float
    competition_date: str
    start_time: str
    end_time: str
    already_joined: bool

    @classmethod
    def from_domain(
        cls, room: Room, initial_capital: float, already_joined: bool
    ) -> "JoinRoomResponse":
        return cls(
            room_id=room.id,
            room_name=room.name,
            initial_capital=initial_capital,
            competition_date=room.competition_date.isoformat(),
            start_time=room.start_time,
            end_time=room.end_time,
            already_joined=already_joined,
        )


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


class RoomSummary(BaseModel):
    id: str
    name: str
    entry_fee: int
    capacity: int
    participant_count: int
    available_spots: int
    competition_date: str
    start_time: str
    end_time: str
    status: str
    total_prize_pool: int

    @classmethod
    def from_domain(cls, room: Room, live_pool: int) -> "RoomSummary":
        count = len(room.participants)
        return cls(
            id=room.id,
            name=room.name,
            entry_fee=room.entry_fee,
            capacity=room.capacity,
            participant_count=count,
            available_spots=max(room.capacity - count, 0),
            competition_date=room.competition_date.isoformat(),
            start_time=room.start_time,
            end_time=room.end_time,
            status=room.status,
            total_prize_pool=live_pool,
        )


class ParticipationOut(BaseModel):
    joined_at: str | None
    initial_capital: float
    current_capital: float
    open_positions: int
    profit_percentage: float


class UserPrizeOut(BaseModel):
    position: int
    prize: int
    paid: bool


class UserParticipationOut(BaseModel):
    room: RoomSummary
    participation: ParticipationOut
    prize: UserPrizeOut | None = None
