"""tc_room REST endpoints.

GET  /rooms                    — open rooms for a day (PENDING/ACTIVE)
GET  /rooms/{room_id}          — detail with live prize pool and top-10 ranking
POST /rooms                    — create a room
POST /rooms/daily              — create the standard line-up for a day
POST /rooms/{room_id}/join     — join a PENDING room
GET  /users/{user_id}/participations — rooms a user has joined
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from config.settings import settings
from src.tc_common.datetime_utils import local_now
from src.tc_common.response import ApiResponse, success_response
from src.tc_room.application.schemas import JoinRoomRequest, PrizeSlotOut
from src.tc_room.application.service import RoomApplicationService
from src.tc_room.domain.models import DEFAULT_CAPACITY, PrizeSlot

router = APIRouter(prefix="/rooms", tags=["rooms"])
user_router = APIRouter(prefix="/users", tags=["users"])


def get_room_service(request: Request) -> RoomApplicationService:
    return RoomApplicationService(repo=request.app.state.room_repo)


class CreateRoomRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    entry_fee: int = Field(ge=0)
    competition_date: date
    start_time: str = "00:00"
    end_time: str = "23:59"
    capacity: int = DEFAULT_CAPACITY
    prize_distribution: list[PrizeSlotOut] | None = None


class DailyRoomsRequest(BaseModel):
    day: date


@router.get("")
async def list_rooms(
    service: Annotated[RoomApplicationService, Depends(get_room_service)],
    status: str | None = None,
    day: Annotated[date | None, Query()] = None,
) -> ApiResponse:
    """Rooms open on ``day`` (competition-local today by default)."""
    day = day or local_now(settings.COMPETITION_TIMEZONE).date()
    rooms = await service.list_rooms(day, status)
    return success_response([r.model_dump() for r in rooms])


@router.get("/{room_id}")
async def get_room(
    room_id: str,
    service: Annotated[RoomApplicationService, Depends(get_room_service)],
) -> ApiResponse:
    result = await service.get_room_detail(room_id)
    return success_response(result.model_dump())


@router.post("")
async def create_room(
    body: CreateRoomRequest,
    service: Annotated[RoomApplicationService, Depends(get_room_service)],
) -> ApiResponse:
    distribution = (
        [PrizeSlot(position=s.position, percentage=s.percentage) for s in body.prize_distribution]
        if body.prize_distribution
        else None
    )
    room = await service.create_room(
        name=body.name,
        entry_fee=body.entry_fee,
        competition_date=body.competition_date,
        start_time=body.start_time,
        end_time=body.end_time,
        capacity=body.capacity,
        prize_distribution=distribution,
    )
    return success_response({"room_id": room.id, "status": room.status})


@router.post("/daily")
async def create_daily_rooms(
    body: DailyRoomsRequest,
    service: Annotated[RoomApplicationService, Depends(get_room_service)],
) -> ApiResponse:
    rooms = await service.create_daily_rooms(body.day)
    return success_response({"created": [r.id for r in rooms]})


@router.post("/{room_id}/join")
async def join_room(
    room_id: str,
    body: JoinRoomRequest,
    service: Annotated[RoomApplicationService, Depends(get_room_service)],
) -> ApiResponse:
    result = await service.join_room(room_id, body.user_id, body.username)
    message = "Already joined this room" if result.already_joined else "Joined room"
    return success_response(result.model_dump(), message=message)


@user_router.get("/{user_id}/participations")
async def get_user_participations(
    user_id: str,
    service: Annotated[RoomApplicationService, Depends(get_room_service)],
) -> ApiResponse:
    rows = await service.get_user_participations(user_id)
    return success_response([r.model_dump() for r in rows])
