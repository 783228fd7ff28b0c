from src.tc_common.enums import RoomStatus
from src.tc_common.errors import RoomNotActiveError
from src.tc_room.domain.models import Room


def check_room_accepting_orders(room: Room) -> None:
    """Order entry gate for the trading side.

    CLOSING rejects as well as CLOSED: positions are about to be force-settled.
    """
    if room.status != RoomStatus.ACTIVE.value:
        raise RoomNotActiveError(room.id, room.status)
