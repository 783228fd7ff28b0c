"""Position settlement — close positions and book their PnL into capital.

Mutates the in-memory room only; persisting it is the caller's job.
"""

import logging
from datetime import datetime

from src.tc_common.datetime_utils import utc_now
from src.tc_common.enums import PositionStatus, PositionType
from src.tc_room.domain.models import Participant, Position, Room

logger = logging.getLogger(__name__)


def calc_position_pnl(
    position_type: str, entry_price: float, close_price: float, size: float
) -> float:
    """LONG: (close - entry) * size. SHORT: (entry - close) * size."""
    if position_type == PositionType.LONG.value:
        return (close_price - entry_price) * size
    if position_type == PositionType.SHORT.value:
        return (entry_price - close_price) * size
    raise ValueError(f"Unknown position type: {position_type}")


def _close_position(
    participant: Participant, position: Position, price: float, now: datetime
) -> float:
    position.close_price = price
    position.closed_at = now
    position.status = PositionStatus.CLOSED.value
    position.pnl = calc_position_pnl(position.type, position.entry_price, price, position.size)
    participant.current_capital += position.pnl
    return position.pnl


def close_all_positions(
    room: Room, settlement_price: float, now: datetime | None = None
) -> bool:
    """Force-close every open position of every participant at one price.

    Positions with no recorded status are legacy OPEN records. Already closed
    positions are left untouched, so a second call changes nothing.
    Returns True if any position was closed.
    """
    now = now or utc_now()
    modified = False
    for participant in room.participants:
        total_pnl = 0.0
        closed = 0
        for position in participant.open_positions:
            if not position.is_open:
                continue
            total_pnl += _close_position(participant, position, settlement_price, now)
            closed += 1
        if closed:
            modified = True
            logger.info(
                "Settled %d position(s) for %s in room %s: pnl=%.2f capital=%.2f",
                closed,
                participant.user_id,
                room.id,
                total_pnl,
                participant.current_capital,
            )
    return modified


def _stop_level_hit(position: Position, price: float) -> bool:
    if position.type == PositionType.LONG.value:
        return (position.stop_loss is not None and price <= position.stop_loss) or (
            position.take_profit is not None and price >= position.take_profit
        )
    return (position.stop_loss is not None and price >= position.stop_loss) or (
        position.take_profit is not None and price <= position.take_profit
    )


def close_triggered_positions(
    room: Room, price: float, now: datetime | None = None
) -> int:
    """Close open positions whose stop-loss or take-profit the price has crossed.

    Returns the number of positions closed.
    """
    now = now or utc_now()
    closed = 0
    for participant in room.participants:
        for position in participant.open_positions:
            if position.is_open and _stop_level_hit(position, price):
                _close_position(participant, position, price, now)
                closed += 1
    return closed
