"""Prize pool, prize distribution and ranking.

All money amounts are whole currency units (int). Prize amounts always round
down so the house never pays out more than the pool.
"""

import math
from collections.abc import Sequence

from src.tc_common.errors import ComputationError
from src.tc_room.domain.models import (
    Participant,
    PrizeSlot,
    RankingEntry,
    Room,
    Winner,
)

PRIZE_POOL_PERCENT = 70  # remaining 30% is the house fee


def prize_pool(entry_fee: int, participant_count: int) -> int:
    """floor(entry_fee * n * 0.7), in exact integer arithmetic."""
    if entry_fee <= 0 or participant_count <= 0:
        return 0
    return entry_fee * participant_count * PRIZE_POOL_PERCENT // 100


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def adjusted_distribution(
    default_table: Sequence[PrizeSlot], participant_count: int
) -> list[PrizeSlot]:
    """Trim the prize table to the participant count and rescale it to 100%.

    - 0 participants: no prizes.
    - 1 participant: takes 100%.
    - otherwise: the first min(len(table), n) slots by position; when they sum
      to less than 100 every slot is scaled by 100/sum (rounded half up) and
      any rounding drift is folded into the first slot.
    """
    if participant_count <= 0:
        return []
    if participant_count == 1:
        return [PrizeSlot(position=1, percentage=100)]

    ordered = sorted(default_table, key=lambda s: s.position)
    slots = [
        PrizeSlot(position=s.position, percentage=s.percentage)
        for s in ordered[:participant_count]
    ]
    if not slots:
        raise ComputationError("prize distribution table is empty")

    total = sum(s.percentage for s in slots)
    if total <= 0:
        raise ComputationError("prize distribution percentages sum to zero")
    if total < 100:
        multiplier = 100 / total
        for s in slots:
            s.percentage = _round_half_up(s.percentage * multiplier)
        drift = 100 - sum(s.percentage for s in slots)
        slots[0].percentage += drift
    return slots


def rank(participants: Sequence[Participant]) -> list[RankingEntry]:
    """Order by current capital, highest first; ties keep join order."""
    ordered = sorted(participants, key=lambda p: p.current_capital, reverse=True)
    ranking: list[RankingEntry] = []
    for index, p in enumerate(ordered):
        if p.initial_capital <= 0:
            raise ComputationError(
                f"participant {p.user_id} has non-positive initial capital"
            )
        ranking.append(
            RankingEntry(
                position=index + 1,
                user_id=p.user_id,
                username=p.username,
                capital=p.current_capital,
                profit_percentage=(p.current_capital / p.initial_capital - 1) * 100,
            )
        )
    return ranking


def compute_winners(room: Room, ranking: Sequence[RankingEntry]) -> list[Winner]:
    """Pair the adjusted distribution with the ranking, index for index.

    Slot i pays rank i. The slot's stored ``position`` is copied onto the
    winner as a label only.
    """
    if not ranking:
        return []
    distribution = adjusted_distribution(room.prize_distribution, len(room.participants))
    winners: list[Winner] = []
    for slot, entry in zip(distribution, ranking):
        winners.append(
            Winner(
                position=slot.position,
                user_id=entry.user_id,
                username=entry.username,
                final_capital=entry.capital,
                prize=room.total_prize_pool * slot.percentage // 100,
                paid=False,
            )
        )
    return winners
