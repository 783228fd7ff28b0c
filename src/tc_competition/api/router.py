"""tc_competition REST endpoints.

GET  /competition/sync                   — price, forming candle, live rooms
POST /competition/check                  — run one schedule pass now
POST /competition/rooms/{room_id}/start  — force PENDING → ACTIVE
POST /competition/rooms/{room_id}/end    — force ACTIVE → CLOSED
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.tc_common.response import ApiResponse, error_response, success_response
from src.tc_competition.application.schemas import (
    CheckResultOut,
    CompetitionResultOut,
    SyncSnapshotOut,
)
from src.tc_competition.domain.models import CompetitionResult
from src.tc_competition.engine.scheduler import CompetitionScheduler

router = APIRouter(prefix="/competition", tags=["competition"])

# Code carried in the envelope when a start/end request is refused
_TRANSITION_REFUSED = 6002


def get_scheduler(request: Request) -> CompetitionScheduler:
    return request.app.state.scheduler


def _transition_response(result: CompetitionResult) -> ApiResponse:
    if not result.success:
        resp = error_response(_TRANSITION_REFUSED, result.error or "Transition refused")
        resp.data = CompetitionResultOut.from_domain(result).model_dump()
        return resp
    return success_response(CompetitionResultOut.from_domain(result).model_dump(), result.message)


@router.get("/sync")
async def get_sync_snapshot(
    scheduler: Annotated[CompetitionScheduler, Depends(get_scheduler)],
) -> ApiResponse:
    snapshot = scheduler.current_sync_snapshot()
    return success_response(SyncSnapshotOut.from_domain(snapshot).model_dump())


@router.post("/check")
async def run_schedule_check(
    scheduler: Annotated[CompetitionScheduler, Depends(get_scheduler)],
) -> ApiResponse:
    result = await scheduler.check_competition_times()
    return success_response(CheckResultOut.from_domain(result).model_dump())


@router.post("/rooms/{room_id}/start")
async def start_competition(
    room_id: str,
    scheduler: Annotated[CompetitionScheduler, Depends(get_scheduler)],
) -> ApiResponse:
    return _transition_response(await scheduler.start_competition(room_id))


@router.post("/rooms/{room_id}/end")
async def end_competition(
    room_id: str,
    scheduler: Annotated[CompetitionScheduler, Depends(get_scheduler)],
) -> ApiResponse:
    return _transition_response(await scheduler.end_competition(room_id))
