"""Room schedule predicates. Minute precision, local competition clock.

``now`` must already be expressed in the competition timezone; the room's
``start_time``/``end_time`` are wall-clock strings in that zone.
"""

from datetime import datetime

from src.tc_common.datetime_utils import clock_to_minutes, minutes_of_day
from src.tc_common.enums import RoomStatus
from src.tc_room.domain.models import Room


def is_within_window(room: Room, now: datetime) -> bool:
    """competition_date is today and start <= now < end."""
    if room.competition_date != now.date():
        return False
    current = minutes_of_day(now)
    return clock_to_minutes(room.start_time) <= current < clock_to_minutes(room.end_time)


def is_past_window(room: Room, now: datetime) -> bool:
    """End time reached today, or the scheduled day is already gone."""
    today = now.date()
    if room.competition_date < today:
        return True
    return (
        room.competition_date == today
        and minutes_of_day(now) >= clock_to_minutes(room.end_time)
    )


def should_activate(room: Room, now: datetime) -> bool:
    return room.status == RoomStatus.PENDING.value and is_within_window(room, now)


def should_close(room: Room, now: datetime) -> bool:
    return room.status == RoomStatus.ACTIVE.value and is_past_window(room, now)
