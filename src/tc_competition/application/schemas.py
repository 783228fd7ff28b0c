"""Pydantic schemas for tc_competition API responses."""

from pydantic import BaseModel

from src.tc_competition.domain.models import CheckResult, CompetitionResult, SyncSnapshot
from src.tc_room.application.schemas import WinnerOut


class FormingCandleOut(BaseModel):
    open: float
    high: float
    low: float
    close: float
    volume: int
    started_at_ms: int


class SyncSnapshotOut(BaseModel):
    price: float
    forming_candle: FormingCandleOut
    market_open: bool
    active_room_ids: list[str]
    session_started_at: str | None

    @classmethod
    def from_domain(cls, s: SyncSnapshot) -> "SyncSnapshotOut":
        c = s.forming_candle
        return cls(
            price=s.price,
            forming_candle=FormingCandleOut(
                open=c.open,
                high=c.high,
                low=c.low,
                close=c.close,
                volume=c.volume,
                started_at_ms=c.started_at_ms,
            ),
            market_open=s.market_open,
            active_room_ids=s.active_room_ids,
            session_started_at=s.session_started_at.isoformat() if s.session_started_at else None,
        )


class CheckResultOut(BaseModel):
    active_room_ids: list[str]
    activated_count: int
    closed_count: int
    error: str | None

    @classmethod
    def from_domain(cls, r: CheckResult) -> "CheckResultOut":
        return cls(
            active_room_ids=r.active_room_ids,
            activated_count=r.activated_count,
            closed_count=r.closed_count,
            error=r.error,
        )


class CompetitionResultOut(BaseModel):
    success: bool
    message: str
    room_id: str | None
    status: str | None
    winners: list[WinnerOut]
    error: str | None

    @classmethod
    def from_domain(cls, r: CompetitionResult) -> "CompetitionResultOut":
        return cls(
            success=r.success,
            message=r.message,
            room_id=r.room.id if r.room else None,
            status=r.room.status if r.room else None,
            winners=[WinnerOut.from_domain(w) for w in r.winners],
            error=r.error,
        )
