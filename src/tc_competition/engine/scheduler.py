"""CompetitionScheduler — drives rooms through PENDING → ACTIVE → CLOSING → CLOSED.

One ``check_competition_times`` pass reads every live room, activates the ones
whose window has opened and closes the ones whose window has ended. Closing is
two-phase: the room is persisted as CLOSING first (the trading side rejects
orders from then on), and only after a grace delay are positions force-settled
and prizes assigned.

The scheduler also fronts the price feed for the tick/candle cadences so that
candle events are only emitted while at least one room is live.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime

from src.tc_clearing.domain.prize import compute_winners, prize_pool, rank
from src.tc_clearing.domain.settlement import (
    close_all_positions,
    close_triggered_positions,
)
from src.tc_common.datetime_utils import epoch_ms, utc_now
from src.tc_common.enums import RoomStatus
from src.tc_common.errors import AppError, InvalidRoomStateError, RoomNotFoundError
from src.tc_competition.domain.events import (
    CandleCompleted,
    DomainEvent,
    EventBus,
    PriceUpdate,
    RoomActivated,
    RoomClosed,
    RoomClosing,
)
from src.tc_competition.domain.models import (
    CheckResult,
    CompetitionResult,
    MarketSession,
    SyncSnapshot,
)
from src.tc_competition.engine.closing_guard import ClosingGuard
from src.tc_market.domain.models import Candle
from src.tc_market.engine.price_feed import PriceFeed
from src.tc_room.domain.models import Room, Winner
from src.tc_room.domain.repository import RoomRepositoryProtocol
from src.tc_room.domain.schedule import should_activate, should_close

logger = logging.getLogger(__name__)

_LIVE_STATUSES = (
    RoomStatus.PENDING.value,
    RoomStatus.ACTIVE.value,
    RoomStatus.CLOSING.value,
)


class CompetitionScheduler:
    def __init__(
        self,
        repo: RoomRepositoryProtocol,
        feed: PriceFeed,
        events: EventBus,
        clock: Callable[[], datetime],
        initial_price: float,
        grace_seconds: float = 5.0,
        guard: ClosingGuard | None = None,
    ) -> None:
        self._repo = repo
        self._feed = feed
        self._events = events
        self._clock = clock
        self._initial_price = initial_price
        self._grace_seconds = grace_seconds
        self._guard = guard or ClosingGuard()
        self._session = MarketSession()
        self._pass_watchers: list[set[str]] = []

    @property
    def market_open(self) -> bool:
        return self._session.market_open

    @property
    def active_room_ids(self) -> set[str]:
        return set(self._session.active_room_ids)

    @property
    def guard(self) -> ClosingGuard:
        return self._guard

    # ------------------------------------------------------------------
    # Schedule pass
    # ------------------------------------------------------------------

    async def check_competition_times(self) -> CheckResult:
        """One lifecycle pass.

        The active-room set is only ever updated in place: rooms started or
        settled by a concurrent request while this pass is suspended keep
        their membership.
        """
        settled_meanwhile: set[str] = set()
        self._pass_watchers.append(settled_meanwhile)
        try:
            return await self._run_pass(self._clock(), settled_meanwhile)
        finally:
            self._pass_watchers.remove(settled_meanwhile)

    async def _run_pass(self, now: datetime, settled_meanwhile: set[str]) -> CheckResult:
        known_before_load = set(self._session.active_room_ids)
        try:
            rooms = await self._repo.find_by_status(_LIVE_STATUSES)
        except Exception as exc:
            logger.exception("Schedule check could not load rooms")
            return CheckResult(
                active_room_ids=sorted(self._session.active_room_ids), error=str(exc)
            )

        logger.debug("Schedule check at %s: %d candidate room(s)", now.isoformat(), len(rooms))
        # Live before the load but no longer live in storage: closed elsewhere
        for room_id in known_before_load - {r.id for r in rooms}:
            logger.info("Room %s is no longer live, dropping it from the session", room_id)
            self._discard_active(room_id)

        activated = 0
        closed = 0
        for room in rooms:
            if room.id in self._guard:
                logger.info("Room %s is already being closed, skipping", room.id)
                continue
            try:
                if should_activate(room, now):
                    result = await self.start_competition(room.id)
                    if result.success:
                        activated += 1
                    continue

                resuming = room.status == RoomStatus.CLOSING.value
                if resuming or should_close(room, now):
                    if resuming:
                        logger.warning("Room %s found in CLOSING, resuming closure", room.id)
                        result = await self._close_room(room.id, resume=True)
                    else:
                        result = await self.end_competition(room.id)
                    if result.success:
                        closed += 1
                        continue

                if (
                    room.status == RoomStatus.ACTIVE.value
                    and room.id not in settled_meanwhile
                    and room.id not in self._guard
                ):
                    self._add_active(room.id)
            except Exception:
                logger.exception("Schedule check failed for room %s", room.id)

        if activated or closed:
            logger.info("Schedule check: %d room(s) activated, %d closed", activated, closed)

        return CheckResult(
            active_room_ids=sorted(self._session.active_room_ids),
            activated_count=activated,
            closed_count=closed,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def start_competition(self, room_id: str) -> CompetitionResult:
        """PENDING → ACTIVE. Capitals are reset and any pre-start positions dropped."""
        try:
            room = await self._repo.find_by_id(room_id)
            if room is None:
                raise RoomNotFoundError(room_id)
            if room.status != RoomStatus.PENDING.value:
                raise InvalidRoomStateError(room_id, room.status, RoomStatus.PENDING.value)

            room.status = RoomStatus.ACTIVE.value
            for participant in room.participants:
                participant.current_capital = participant.initial_capital
                participant.open_positions = []
            await self._repo.save(room)
        except AppError as exc:
            logger.warning("Could not start room %s: %s", room_id, exc.message)
            return CompetitionResult(success=False, error=exc.message)
        except Exception as exc:
            logger.exception("Could not start room %s", room_id)
            return CompetitionResult(success=False, error=str(exc))

        self._add_active(room.id)

        await self._publish(
            RoomActivated(
                room_id=room.id,
                room_name=room.name,
                status=room.status,
                message="Room activated by the scheduler",
            )
        )
        logger.info("Room %s (%s) activated", room.name, room.id)
        return CompetitionResult(
            success=True, message=f"Competition started in room {room.name}", room=room
        )

    async def end_competition(self, room_id: str) -> CompetitionResult:
        """ACTIVE → CLOSING → CLOSED."""
        return await self._close_room(room_id, resume=False)

    async def _close_room(self, room_id: str, resume: bool) -> CompetitionResult:
        with self._guard.hold(room_id) as acquired:
            if not acquired:
                logger.info("Room %s is already being closed", room_id)
                return CompetitionResult(
                    success=False, error=f"Room {room_id} is already being closed"
                )
            try:
                room = await self._enter_closing(room_id, resume)
                await asyncio.sleep(self._grace_seconds)
                # Re-read: trades accepted right before CLOSING may have landed meanwhile
                fresh = await self._repo.find_by_id(room_id)
                if fresh is None:
                    raise RoomNotFoundError(room_id)
                winners = await self._settle(fresh)
            except AppError as exc:
                logger.warning("Could not close room %s: %s", room_id, exc.message)
                return CompetitionResult(success=False, error=exc.message)
            except Exception as exc:
                logger.exception("Could not close room %s", room_id)
                return CompetitionResult(success=False, error=str(exc))

        logger.info("Room %s (%s) closed with %d winner(s)", room.name, room_id, len(winners))
        return CompetitionResult(
            success=True,
            message=f"Competition ended in room {fresh.name}",
            room=fresh,
            winners=winners,
        )

    async def _enter_closing(self, room_id: str, resume: bool) -> Room:
        room = await self._repo.find_by_id(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        expected = RoomStatus.CLOSING.value if resume else RoomStatus.ACTIVE.value
        if room.status != expected:
            raise InvalidRoomStateError(room_id, room.status, expected)
        if resume:
            return room

        room.status = RoomStatus.CLOSING.value
        await self._repo.save(room)
        await self._publish(
            RoomClosing(
                room_id=room.id,
                room_name=room.name,
                status=room.status,
                message="Room is closing. New orders are no longer accepted.",
            )
        )
        return room

    async def _settle(self, room: Room) -> list[Winner]:
        settlement_price = self._feed.last_price
        modified = close_all_positions(room, settlement_price, now=utc_now())
        logger.info(
            "Room %s settled at %.2f (positions closed: %s)",
            room.id,
            settlement_price,
            modified,
        )

        if room.entry_fee > 0:
            room.total_prize_pool = prize_pool(room.entry_fee, len(room.participants))
        winners = compute_winners(room, rank(room.participants))

        room.winners = winners
        room.status = RoomStatus.CLOSED.value
        await self._repo.save(room)

        for settled in self._pass_watchers:
            settled.add(room.id)
        self._discard_active(room.id)

        await self._publish(
            RoomClosed(
                room_id=room.id,
                room_name=room.name,
                status=room.status,
                message="Room closed by the scheduler",
                winners=winners,
            )
        )
        return winners

    # ------------------------------------------------------------------
    # Market cadence
    # ------------------------------------------------------------------

    def next_tick(self) -> float:
        return self._feed.next_tick()

    async def check_stop_levels(self, price: float) -> int:
        """Close positions whose stop-loss / take-profit ``price`` crosses.

        Only ACTIVE rooms that are not being closed are evaluated.
        """
        if not self._session.market_open:
            return 0
        total = 0
        for room_id in sorted(self._session.active_room_ids):
            if room_id in self._guard:
                continue
            try:
                room = await self._repo.find_by_id(room_id)
                if room is None or room.status != RoomStatus.ACTIVE.value:
                    continue
                closed = close_triggered_positions(room, price, now=utc_now())
                if closed:
                    await self._repo.save(room)
                    total += closed
                    logger.info(
                        "Room %s: %d position(s) hit stop levels at %.2f", room_id, closed, price
                    )
            except AppError as exc:
                logger.warning("Stop-level check failed for room %s: %s", room_id, exc.message)
            except Exception:
                logger.exception("Stop-level check failed for room %s", room_id)
        return total

    async def finalize_candle(self, timeframe: int = 1) -> Candle:
        candle = self._feed.finalize_candle(timeframe)
        if not self._session.market_open:
            return candle

        await self._publish(
            CandleCompleted(
                candle=candle,
                active_room_ids=sorted(self._session.active_room_ids),
                market_open=True,
            )
        )
        await self._publish(
            PriceUpdate(
                price=candle.close,
                candle=candle,
                is_new_candle=True,
                server_time=epoch_ms(utc_now()),
            )
        )
        return candle

    def current_sync_snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            price=self._feed.last_price,
            forming_candle=dataclasses.replace(self._feed.forming_candle),
            market_open=self._session.market_open,
            active_room_ids=sorted(self._session.active_room_ids),
            session_started_at=self._session.started_at,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _open_market(self) -> None:
        self._feed.reset(self._initial_price)
        self._session.market_open = True
        self._session.started_at = self._clock()
        logger.info("Market opened")

    def _add_active(self, room_id: str) -> None:
        was_empty = not self._session.active_room_ids
        self._session.active_room_ids.add(room_id)
        if was_empty:
            self._open_market()

    def _discard_active(self, room_id: str) -> None:
        if room_id not in self._session.active_room_ids:
            return
        self._session.active_room_ids.discard(room_id)
        if not self._session.active_room_ids and self._session.market_open:
            self._session.market_open = False
            logger.info("Market closed: no active rooms")

    async def _publish(self, event: DomainEvent) -> None:
        try:
            await self._events.publish(event)
        except Exception:
            logger.exception("Failed to publish %s", event.name.value)
