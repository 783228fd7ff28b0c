"""RoomRepository — concrete implementation of RoomRepositoryProtocol.

All queries use raw text() SQL (no ORM). Participants, prize distribution and
winners are embedded JSONB documents on the rooms row; ``version`` provides
per-document optimistic concurrency so two writers never silently overwrite
each other.
"""

import json
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.tc_common.errors import StaleRoomError
from src.tc_room.domain.models import (
    Participant,
    Position,
    PrizeSlot,
    Room,
    Winner,
)

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

_ROOM_COLUMNS = """
    id, name, entry_fee, capacity, competition_date, start_time, end_time,
    status, total_prize_pool, prize_distribution, participants, winners,
    version, created_at
"""

_GET_ROOM_SQL = text(f"SELECT {_ROOM_COLUMNS} FROM rooms WHERE id = :room_id")

_LIST_BY_STATUS_SQL = text(f"""
    SELECT {_ROOM_COLUMNS}
    FROM rooms
    WHERE status = ANY(CAST(:statuses AS TEXT[]))
    ORDER BY competition_date ASC, start_time ASC, id ASC
""")

_LIST_BY_PARTICIPANT_SQL = text(f"""
    SELECT {_ROOM_COLUMNS}
    FROM rooms
    WHERE participants @> CAST(:match AS JSONB)
    ORDER BY competition_date DESC, start_time ASC, id ASC
""")

_INSERT_ROOM_SQL = text("""
    INSERT INTO rooms (
        id, name, entry_fee, capacity, competition_date, start_time, end_time,
        status, total_prize_pool, prize_distribution, participants, winners,
        version, created_at, updated_at
    ) VALUES (
        :id, :name, :entry_fee, :capacity, :competition_date, :start_time, :end_time,
        :status, :total_prize_pool,
        CAST(:prize_distribution AS JSONB),
        CAST(:participants AS JSONB),
        CAST(:winners AS JSONB),
        0, NOW(), NOW()
    )
""")

_UPDATE_ROOM_SQL = text("""
    UPDATE rooms
    SET name = :name,
        entry_fee = :entry_fee,
        capacity = :capacity,
        competition_date = :competition_date,
        start_time = :start_time,
        end_time = :end_time,
        status = :status,
        total_prize_pool = :total_prize_pool,
        prize_distribution = CAST(:prize_distribution AS JSONB),
        participants = CAST(:participants AS JSONB),
        winners = CAST(:winners AS JSONB),
        version = version + 1,
        updated_at = NOW()
    WHERE id = :id AND version = :version
""")

# ---------------------------------------------------------------------------
# Document mappers
# ---------------------------------------------------------------------------


def _dt_out(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt_in(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _position_to_doc(p: Position) -> dict[str, Any]:
    return {
        "id": p.id,
        "type": p.type,
        "entry_price": p.entry_price,
        "size": p.size,
        "stop_loss": p.stop_loss,
        "take_profit": p.take_profit,
        "opened_at": _dt_out(p.opened_at),
        "status": p.status,
        "close_price": p.close_price,
        "closed_at": _dt_out(p.closed_at),
        "pnl": p.pnl,
    }


def _position_from_doc(d: dict[str, Any]) -> Position:
    return Position(
        id=d["id"],
        type=d["type"],
        entry_price=d["entry_price"],
        size=d.get("size", 1),
        stop_loss=d.get("stop_loss"),
        take_profit=d.get("take_profit"),
        opened_at=_dt_in(d.get("opened_at")),
        status=d.get("status"),
        close_price=d.get("close_price"),
        closed_at=_dt_in(d.get("closed_at")),
        pnl=d.get("pnl") or 0.0,
    )


def _participant_to_doc(p: Participant) -> dict[str, Any]:
    return {
        "user_id": p.user_id,
        "username": p.username,
        "initial_capital": p.initial_capital,
        "current_capital": p.current_capital,
        "open_positions": [_position_to_doc(pos) for pos in p.open_positions],
        "joined_at": _dt_out(p.joined_at),
    }


def _participant_from_doc(d: dict[str, Any]) -> Participant:
    return Participant(
        user_id=d["user_id"],
        username=d.get("username", ""),
        initial_capital=d["initial_capital"],
        current_capital=d["current_capital"],
        open_positions=[_position_from_doc(pos) for pos in d.get("open_positions", [])],
        joined_at=_dt_in(d.get("joined_at")),
    )


def _winner_to_doc(w: Winner) -> dict[str, Any]:
    return {
        "position": w.position,
        "user_id": w.user_id,
        "username": w.username,
        "final_capital": w.final_capital,
        "prize": w.prize,
        "paid": w.paid,
        "payment_date": _dt_out(w.payment_date),
        "payment_receipt": w.payment_receipt,
    }


def _winner_from_doc(d: dict[str, Any]) -> Winner:
    return Winner(
        position=d["position"],
        user_id=d["user_id"],
        username=d.get("username", ""),
        final_capital=d["final_capital"],
        prize=d["prize"],
        paid=d.get("paid", False),
        payment_date=_dt_in(d.get("payment_date")),
        payment_receipt=d.get("payment_receipt"),
    )


def _load_json(value: Any) -> Any:
    # asyncpg returns JSONB as str unless a type codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value if value is not None else []


def _row_to_room(row: Any) -> Room:
    competition_date = row.competition_date
    if isinstance(competition_date, datetime):
        competition_date = competition_date.date()
    return Room(
        id=row.id,
        name=row.name,
        entry_fee=row.entry_fee,
        capacity=row.capacity,
        competition_date=competition_date,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        total_prize_pool=row.total_prize_pool,
        prize_distribution=[
            PrizeSlot(position=s["position"], percentage=s["percentage"])
            for s in _load_json(row.prize_distribution)
        ],
        participants=[_participant_from_doc(p) for p in _load_json(row.participants)],
        winners=[_winner_from_doc(w) for w in _load_json(row.winners)],
        created_at=row.created_at,
        version=row.version,
    )


def room_to_params(room: Room) -> dict[str, Any]:
    return {
        "id": room.id,
        "name": room.name,
        "entry_fee": room.entry_fee,
        "capacity": room.capacity,
        "competition_date": room.competition_date,
        "start_time": room.start_time,
        "end_time": room.end_time,
        "status": room.status,
        "total_prize_pool": room.total_prize_pool,
        "prize_distribution": json.dumps(
            [{"position": s.position, "percentage": s.percentage} for s in room.prize_distribution]
        ),
        "participants": json.dumps([_participant_to_doc(p) for p in room.participants]),
        "winners": json.dumps([_winner_to_doc(w) for w in room.winners]),
        "version": room.version,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class RoomRepository:
    """Opens one short-lived session per call; the scheduler holds no session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def find_by_status(self, statuses: Iterable[str]) -> list[Room]:
        async with self._session_factory() as db:
            result = await db.execute(_LIST_BY_STATUS_SQL, {"statuses": list(statuses)})
            return [_row_to_room(row) for row in result.fetchall()]

    async def find_by_participant(self, user_id: str) -> list[Room]:
        match = json.dumps([{"user_id": user_id}])
        async with self._session_factory() as db:
            result = await db.execute(_LIST_BY_PARTICIPANT_SQL, {"match": match})
            return [_row_to_room(row) for row in result.fetchall()]

    async def find_by_id(self, room_id: str) -> Room | None:
        async with self._session_factory() as db:
            result = await db.execute(_GET_ROOM_SQL, {"room_id": room_id})
            row = result.fetchone()
            return _row_to_room(row) if row else None

    async def save(self, room: Room) -> None:
        async with self._session_factory() as db:
            result = await db.execute(_UPDATE_ROOM_SQL, room_to_params(room))
            if result.rowcount == 0:  # type: ignore[attr-defined]
                await db.rollback()
                raise StaleRoomError(room.id, room.version)
            await db.commit()
        room.version += 1

    async def create(self, room: Room) -> None:
        async with self._session_factory() as db:
            await db.execute(_INSERT_ROOM_SQL, room_to_params(room))
            await db.commit()
        room.version = 0
