# src/tc_room/domain/repository.py
"""Room persistence contract.

Rooms are read and written as whole documents. ``save`` must reject a write
whose ``version`` no longer matches the stored one.
"""

from collections.abc import Iterable
from typing import Protocol

from src.tc_room.domain.models import Room


class RoomRepositoryProtocol(Protocol):
    async def find_by_status(self, statuses: Iterable[str]) -> list[Room]: ...

    async def find_by_id(self, room_id: str) -> Room | None: ...

    async def find_by_participant(self, user_id: str) -> list[Room]: ...

    async def save(self, room: Room) -> None:
        """Write back the full room document. Bumps ``room.version``."""
        ...

    async def create(self, room: Room) -> None: ...
