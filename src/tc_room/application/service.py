"""RoomApplicationService: room creation, joining and the read views.

Lifecycle transitions are not here; they belong to the competition scheduler.
Balance debits for entry fees are the payments collaborator's concern.
"""

import logging
import uuid
from collections.abc import Sequence
from datetime import date

from src.tc_clearing.domain.prize import adjusted_distribution, prize_pool, rank
from src.tc_common.datetime_utils import clock_to_minutes, utc_now
from src.tc_common.enums import RoomStatus
from src.tc_common.errors import (
    InvalidRoomConfigError,
    InvalidRoomStateError,
    RoomFullError,
    RoomNotFoundError,
)
from src.tc_room.application.schemas import (
    JoinRoomResponse,
    ParticipationOut,
    PrizeSlotOut,
    RankingEntryOut,
    RoomDetail,
    RoomSummary,
    UserParticipationOut,
    UserPrizeOut,
    WinnerOut,
)
from src.tc_room.domain.models import (
    DEFAULT_CAPACITY,
    DEFAULT_INITIAL_CAPITAL,
    DEFAULT_PRIZE_DISTRIBUTION,
    FREE_ROOM_PRIZE_POOL,
    MAX_CAPACITY,
    Participant,
    PrizeSlot,
    Room,
)
from src.tc_room.domain.repository import RoomRepositoryProtocol

logger = logging.getLogger(__name__)

RANKING_PREVIEW_SIZE = 10
UPCOMING_FALLBACK_SIZE = 10

_LISTED_STATUSES = (RoomStatus.PENDING.value, RoomStatus.ACTIVE.value)

# Participations are ordered live first, finished last
_PARTICIPATION_ORDER = {
    RoomStatus.ACTIVE.value: 0,
    RoomStatus.CLOSING.value: 1,
    RoomStatus.PENDING.value: 2,
    RoomStatus.CLOSED.value: 3,
}

_SEVEN_SLOT_PAID = (35, 25, 15, 10, 7, 5, 3)
_SEVEN_SLOT_FREE = (40, 25, 15, 8, 5, 4, 3)

# Standard daily line-up: (name, entry_fee, distribution)
DAILY_ROOM_TEMPLATES: tuple[tuple[str, int, tuple[int, ...]], ...] = (
    ("Free Room - Training", 0, _SEVEN_SLOT_FREE),
    ("Basic Room - 13", 13, _SEVEN_SLOT_PAID),
    ("Intermediate Room - 65", 65, _SEVEN_SLOT_PAID),
    ("Advanced Room - 130", 130, _SEVEN_SLOT_PAID),
)


def _live_pool(room: Room) -> int:
    """Paid rooms show 70% of the fees collected so far; free rooms their fixed pool."""
    if room.entry_fee > 0 and room.participants:
        return prize_pool(room.entry_fee, len(room.participants))
    return room.total_prize_pool


def _slots(percentages: Sequence[int]) -> list[PrizeSlot]:
    return [PrizeSlot(position=i + 1, percentage=p) for i, p in enumerate(percentages)]


def validate_room_config(
    entry_fee: int,
    capacity: int,
    start_time: str,
    end_time: str,
    distribution: Sequence[PrizeSlot],
) -> None:
    if entry_fee < 0:
        raise InvalidRoomConfigError(f"entry_fee must be >= 0, got {entry_fee}")
    if not (1 <= capacity <= MAX_CAPACITY):
        raise InvalidRoomConfigError(f"capacity must be 1..{MAX_CAPACITY}, got {capacity}")
    try:
        start, end = clock_to_minutes(start_time), clock_to_minutes(end_time)
    except ValueError as exc:
        raise InvalidRoomConfigError(str(exc)) from exc
    if start >= end:
        raise InvalidRoomConfigError(f"start_time {start_time} must be before end_time {end_time}")
    if not distribution:
        raise InvalidRoomConfigError("prize distribution is empty")
    positions = [s.position for s in distribution]
    if len(set(positions)) != len(positions) or min(positions) < 1:
        raise InvalidRoomConfigError("prize positions must be unique and >= 1")
    if any(s.percentage < 0 for s in distribution):
        raise InvalidRoomConfigError("prize percentages must be >= 0")
    total = sum(s.percentage for s in distribution)
    if total != 100:
        raise InvalidRoomConfigError(f"prize percentages must sum to 100, got {total}")


def build_daily_rooms(day: date) -> list[Room]:
    """The standard line-up for one day: a free room and three paid tiers."""
    rooms = []
    for name, fee, percentages in DAILY_ROOM_TEMPLATES:
        rooms.append(
            Room(
                id=uuid.uuid4().hex,
                name=name,
                entry_fee=fee,
                competition_date=day,
                start_time="08:00",
                end_time="17:00",
                capacity=DEFAULT_CAPACITY,
                total_prize_pool=FREE_ROOM_PRIZE_POOL if fee == 0 else 0,
                prize_distribution=_slots(percentages),
                created_at=utc_now(),
            )
        )
    return rooms


class RoomApplicationService:
    def __init__(self, repo: RoomRepositoryProtocol) -> None:
        self._repo = repo

    async def create_room(
        self,
        name: str,
        entry_fee: int,
        competition_date: date,
        start_time: str = "00:00",
        end_time: str = "23:59",
        capacity: int = DEFAULT_CAPACITY,
        prize_distribution: Sequence[PrizeSlot] | None = None,
    ) -> Room:
        distribution = [
            PrizeSlot(position=s.position, percentage=s.percentage)
            for s in (prize_distribution or DEFAULT_PRIZE_DISTRIBUTION)
        ]
        validate_room_config(entry_fee, capacity, start_time, end_time, distribution)
        room = Room(
            id=uuid.uuid4().hex,
            name=name,
            entry_fee=entry_fee,
            competition_date=competition_date,
            start_time=start_time,
            end_time=end_time,
            capacity=capacity,
            total_prize_pool=FREE_ROOM_PRIZE_POOL if entry_fee == 0 else 0,
            prize_distribution=distribution,
            created_at=utc_now(),
        )
        await self._repo.create(room)
        logger.info("Room %s (%s) created for %s", room.name, room.id, competition_date)
        return room

    async def create_daily_rooms(self, day: date) -> list[Room]:
        """Create the daily line-up unless PENDING rooms already exist for ``day``."""
        pending = await self._repo.find_by_status([RoomStatus.PENDING.value])
        if any(r.competition_date == day for r in pending):
            logger.info("Rooms for %s already exist, skipping daily setup", day)
            return []
        rooms = build_daily_rooms(day)
        for room in rooms:
            await self._repo.create(room)
        logger.info("Created %d daily rooms for %s", len(rooms), day)
        return rooms

    async def join_room(self, room_id: str, user_id: str, username: str) -> JoinRoomResponse:
        room = await self._repo.find_by_id(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)

        existing = room.find_participant(user_id)
        if existing is not None:
            return JoinRoomResponse.from_domain(
                room, existing.initial_capital, already_joined=True
            )
        if room.is_full():
            raise RoomFullError(room_id)
        if room.status != RoomStatus.PENDING.value:
            raise InvalidRoomStateError(room_id, room.status, RoomStatus.PENDING.value)

        room.participants.append(
            Participant(
                user_id=user_id,
                username=username,
                initial_capital=DEFAULT_INITIAL_CAPITAL,
                current_capital=DEFAULT_INITIAL_CAPITAL,
                joined_at=utc_now(),
            )
        )
        if room.entry_fee > 0:
            room.total_prize_pool = prize_pool(room.entry_fee, len(room.participants))
        await self._repo.save(room)
        logger.info("User %s joined room %s", user_id, room_id)
        return JoinRoomResponse.from_domain(
            room, DEFAULT_INITIAL_CAPITAL, already_joined=False
        )

    async def get_room_detail(self, room_id: str) -> RoomDetail:
        room = await self._repo.find_by_id(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)

        count = len(room.participants)
        pool = _live_pool(room)

        ranking = rank(room.participants)[:RANKING_PREVIEW_SIZE]
        winners = room.winners if room.status == RoomStatus.CLOSED.value else []
        return RoomDetail(
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
            total_prize_pool=pool,
            prize_distribution=[PrizeSlotOut.from_domain(s) for s in room.prize_distribution],
            adjusted_distribution=[
                PrizeSlotOut.from_domain(s)
                for s in adjusted_distribution(room.prize_distribution, count)
            ],
            ranking=[RankingEntryOut.from_domain(e) for e in ranking],
            winners=[WinnerOut.from_domain(w) for w in winners],
        )

    async def list_rooms(self, day: date, status: str | None = None) -> list[RoomSummary]:
        """Open rooms (PENDING/ACTIVE) scheduled on ``day``.

        ``status`` narrows the listing to one of those two states; any other
        value is ignored. When nothing is scheduled on ``day`` the next
        upcoming rooms are listed instead.
        """
        statuses = [status] if status in _LISTED_STATUSES else list(_LISTED_STATUSES)
        rooms = sorted(
            await self._repo.find_by_status(statuses),
            key=lambda r: (r.competition_date, r.start_time, r.id),
        )
        listed = [r for r in rooms if r.competition_date == day]
        if not listed:
            listed = [r for r in rooms if r.competition_date >= day][:UPCOMING_FALLBACK_SIZE]
            logger.debug("No rooms on %s, listing %d upcoming room(s)", day, len(listed))
        return [RoomSummary.from_domain(r, _live_pool(r)) for r in listed]

    async def get_user_participations(self, user_id: str) -> list[UserParticipationOut]:
        rooms = await self._repo.find_by_participant(user_id)
        rows: list[tuple[Room, UserParticipationOut]] = []
        for room in rooms:
            participant = room.find_participant(user_id)
            if participant is None:
                continue
            profit = 0.0
            if participant.initial_capital > 0:
                profit = (participant.current_capital / participant.initial_capital - 1) * 100
            prize = None
            if room.status == RoomStatus.CLOSED.value:
                for w in room.winners:
                    if w.user_id == user_id:
                        prize = UserPrizeOut(position=w.position, prize=w.prize, paid=w.paid)
                        break
            rows.append(
                (
                    room,
                    UserParticipationOut(
                        room=RoomSummary.from_domain(room, _live_pool(room)),
                        participation=ParticipationOut(
                            joined_at=(
                                participant.joined_at.isoformat() if participant.joined_at else None
                            ),
                            initial_capital=participant.initial_capital,
                            current_capital=participant.current_capital,
                            open_positions=sum(
                                1 for pos in participant.open_positions if pos.is_open
                            ),
                            profit_percentage=round(profit, 4),
                        ),
                        prize=prize,
                    ),
                )
            )
        # Status priority first, most recent competition day first within a status
        rows.sort(key=lambda row: row[0].competition_date, reverse=True)
        rows.sort(key=lambda row: _PARTICIPATION_ORDER.get(row[0].status, len(_PARTICIPATION_ORDER)))
        return [out for _, out in rows]
