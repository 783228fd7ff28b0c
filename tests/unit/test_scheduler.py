"""Tests for tc_competition.engine.scheduler.CompetitionScheduler.

Uses the in-memory repository from tests.fakes, a fixed local clock and a zero
grace delay so closures run straight through.
"""

import asyncio
import random
from datetime import date
from unittest.mock import AsyncMock

import pytest

from src.tc_common.enums import EventName, PositionStatus, PositionType, RoomStatus
from src.tc_competition.domain.events import RoomClosed
from src.tc_competition.engine.scheduler import CompetitionScheduler
from src.tc_market.engine.price_feed import PriceFeed
from src.tc_room.domain.models import Room
from tests.fakes import (
    INITIAL_PRICE,
    make_participant,
    make_position,
    make_room,
)

ACTIVE = RoomStatus.ACTIVE.value
CLOSING = RoomStatus.CLOSING.value
CLOSED = RoomStatus.CLOSED.value
PENDING = RoomStatus.PENDING.value


def _three_player_room(**kwargs) -> Room:
    return make_room(
        participants=[
            make_participant("u1", 1200.0),
            make_participant("u2", 900.0),
            make_participant("u3", 1500.0),
        ],
        **kwargs,
    )


class TestActivation:
    @pytest.mark.asyncio
    async def test_pending_room_in_window_becomes_active(
        self, scheduler, repo, events, clock
    ) -> None:
        await repo.create(make_room())
        result = await scheduler.check_competition_times()

        assert result.activated_count == 1
        assert result.active_room_ids == ["room-1"]
        assert repo.get("room-1").status == ACTIVE
        assert scheduler.market_open is True
        assert scheduler.active_room_ids == {"room-1"}
        assert events.names() == [EventName.ROOM_ACTIVATED.value]

    @pytest.mark.asyncio
    async def test_pending_room_before_window_stays_pending(
        self, scheduler, repo, clock
    ) -> None:
        clock.set(7, 59)
        await repo.create(make_room())
        result = await scheduler.check_competition_times()

        assert result.activated_count == 0
        assert repo.get("room-1").status == PENDING
        assert scheduler.market_open is False

    @pytest.mark.asyncio
    async def test_pending_room_past_window_never_moves(self, scheduler, repo, clock) -> None:
        """A PENDING room whose window was missed is not skipped to CLOSED."""
        clock.set(18, 0)
        await repo.create(make_room())
        await repo.create(make_room(id="room-old", competition_date=date(2026, 10, 1)))
        result = await scheduler.check_competition_times()

        assert result.activated_count == 0
        assert result.closed_count == 0
        assert repo.get("room-1").status == PENDING
        assert repo.get("room-old").status == PENDING
        assert repo.saved_statuses == []

    @pytest.mark.asyncio
    async def test_start_resets_capital_and_positions(self, scheduler, repo) -> None:
        room = make_room(
            participants=[
                make_participant("u1", 1300.0, open_positions=[make_position("p1")]),
            ]
        )
        await repo.create(room)
        result = await scheduler.start_competition("room-1")

        assert result.success is True
        stored = repo.get("room-1").participants[0]
        assert stored.current_capital == stored.initial_capital
        assert stored.open_positions == []

    @pytest.mark.asyncio
    async def test_first_activation_resets_price_feed(self, repo, events, clock) -> None:
        feed = PriceFeed(initial_price=INITIAL_PRICE, volatility=0.01, rng=random.Random(1))
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0
        )
        for _ in range(5):
            scheduler.next_tick()
        assert feed.last_price != INITIAL_PRICE

        await repo.create(make_room())
        await scheduler.start_competition("room-1")
        assert feed.last_price == INITIAL_PRICE
        assert scheduler.current_sync_snapshot().session_started_at == clock.now

    @pytest.mark.asyncio
    async def test_second_activation_keeps_price_series(self, repo, events, clock) -> None:
        feed = PriceFeed(initial_price=INITIAL_PRICE, volatility=0.01, rng=random.Random(1))
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0
        )
        await repo.create(make_room(id="room-a"))
        await repo.create(make_room(id="room-b"))
        await scheduler.start_competition("room-a")
        for _ in range(5):
            scheduler.next_tick()
        price = feed.last_price

        await scheduler.start_competition("room-b")
        assert feed.last_price == price
        assert scheduler.active_room_ids == {"room-a", "room-b"}

    @pytest.mark.asyncio
    async def test_start_unknown_room_fails(self, scheduler) -> None:
        result = await scheduler.start_competition("missing")
        assert result.success is False
        assert "missing" in result.error

    @pytest.mark.asyncio
    async def test_start_non_pending_room_fails(self, scheduler, repo, events) -> None:
        await repo.create(make_room(status=CLOSED))
        result = await scheduler.start_competition("room-1")

        assert result.success is False
        assert "CLOSED" in result.error
        assert events.events == []
        assert scheduler.market_open is False


class TestClosing:
    @pytest.mark.asyncio
    async def test_active_room_past_window_is_settled(
        self, scheduler, repo, events, clock
    ) -> None:
        clock.set(17, 30)
        await repo.create(_three_player_room(status=ACTIVE))
        result = await scheduler.check_competition_times()

        assert result.closed_count == 1
        assert result.active_room_ids == []
        stored = repo.get("room-1")
        assert stored.status == CLOSED
        assert stored.total_prize_pool == 21
        assert [(w.user_id, w.prize) for w in stored.winners] == [
            ("u3", 9),
            ("u1", 6),
            ("u2", 4),
        ]
        assert repo.saved_statuses == [("room-1", CLOSING), ("room-1", CLOSED)]
        assert events.names() == [EventName.ROOM_CLOSING.value, EventName.ROOM_CLOSED.value]

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, scheduler, repo, clock) -> None:
        await repo.create(_three_player_room())
        await scheduler.check_competition_times()
        assert repo.get("room-1").status == ACTIVE

        clock.set(17, 0)
        await scheduler.check_competition_times()

        assert repo.get("room-1").status == CLOSED
        assert [s for _, s in repo.saved_statuses] == [ACTIVE, CLOSING, CLOSED]
        assert scheduler.market_open is False
        assert scheduler.active_room_ids == set()

    @pytest.mark.asyncio
    async def test_open_positions_closed_at_last_price(self, scheduler, repo) -> None:
        await repo.create(make_room(status=ACTIVE))
        repo.get("room-1").participants.append(
            make_participant(
                "u1",
                1000.0,
                open_positions=[
                    make_position("p1", PositionType.LONG, entry_price=9900.0, size=0.5),
                    make_position("p2", PositionType.SHORT, entry_price=10100.0, size=1.0),
                ],
            )
        )
        result = await scheduler.end_competition("room-1")

        assert result.success is True
        p = repo.get("room-1").participants[0]
        assert all(pos.status == PositionStatus.CLOSED.value for pos in p.open_positions)
        assert all(pos.close_price == INITIAL_PRICE for pos in p.open_positions)
        assert p.current_capital == pytest.approx(1150.0)
        assert result.winners[0].final_capital == pytest.approx(1150.0)

    @pytest.mark.asyncio
    async def test_free_room_keeps_fixed_pool(self, scheduler, repo) -> None:
        await repo.create(
            _three_player_room(status=ACTIVE, entry_fee=0, total_prize_pool=30)
        )
        result = await scheduler.end_competition("room-1")

        assert repo.get("room-1").total_prize_pool == 30
        assert [w.prize for w in result.winners] == [14, 9, 6]

    @pytest.mark.asyncio
    async def test_room_without_participants_closes_without_winners(
        self, scheduler, repo
    ) -> None:
        await repo.create(make_room(status=ACTIVE))
        result = await scheduler.end_competition("room-1")
        assert result.success is True
        assert result.winners == []
        assert repo.get("room-1").total_prize_pool == 0

    @pytest.mark.asyncio
    async def test_end_pending_room_fails(self, scheduler, repo) -> None:
        await repo.create(make_room())
        result = await scheduler.end_competition("room-1")

        assert result.success is False
        assert repo.get("room-1").status == PENDING
        assert "room-1" not in scheduler.guard

    @pytest.mark.asyncio
    async def test_closed_event_carries_winners(self, scheduler, repo, events) -> None:
        await repo.create(_three_player_room(status=ACTIVE))
        await scheduler.end_competition("room-1")

        closed = [e for e in events.events if isinstance(e, RoomClosed)]
        assert len(closed) == 1
        assert [w.user_id for w in closed[0].winners] == ["u3", "u1", "u2"]

    @pytest.mark.asyncio
    async def test_market_closes_with_last_room(self, scheduler, repo) -> None:
        await repo.create(make_room(id="room-a"))
        await repo.create(make_room(id="room-b"))
        await scheduler.start_competition("room-a")
        await scheduler.start_competition("room-b")

        await scheduler.end_competition("room-a")
        assert scheduler.market_open is True
        await scheduler.end_competition("room-b")
        assert scheduler.market_open is False


class TestClosingConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_end_requests_settle_once(self, scheduler, repo, events) -> None:
        await repo.create(_three_player_room(status=ACTIVE))
        first, second = await asyncio.gather(
            scheduler.end_competition("room-1"),
            scheduler.end_competition("room-1"),
        )

        assert sorted([first.success, second.success]) == [False, True]
        assert events.names().count(EventName.ROOM_CLOSED.value) == 1
        assert [s for _, s in repo.saved_statuses] == [CLOSING, CLOSED]
        assert len(repo.get("room-1").winners) == 3

    @pytest.mark.asyncio
    async def test_pass_and_manual_end_race(self, scheduler, repo, clock) -> None:
        clock.set(17, 5)
        await repo.create(_three_player_room(status=ACTIVE))
        manual, check = await asyncio.gather(
            scheduler.end_competition("room-1"),
            scheduler.check_competition_times(),
        )

        assert manual.success is True
        assert check.closed_count == 0
        assert repo.saved_statuses.count(("room-1", CLOSED)) == 1

    @pytest.mark.asyncio
    async def test_guarded_room_is_skipped(self, scheduler, repo, clock) -> None:
        clock.set(17, 30)
        await repo.create(make_room(status=ACTIVE))
        assert scheduler.guard.try_acquire("room-1")

        result = await scheduler.check_competition_times()

        assert result.closed_count == 0
        assert result.active_room_ids == []
        assert repo.get("room-1").status == ACTIVE
        assert repo.saved_statuses == []

    @pytest.mark.asyncio
    async def test_guard_released_after_close(self, scheduler, repo) -> None:
        await repo.create(make_room(status=ACTIVE))
        await scheduler.end_competition("room-1")
        assert len(scheduler.guard) == 0

    @pytest.mark.asyncio
    async def test_grace_delay_before_settlement(self, repo, feed, events, clock) -> None:
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0.05
        )
        await repo.create(make_room(status=ACTIVE))
        task = asyncio.create_task(scheduler.end_competition("room-1"))
        await asyncio.sleep(0.01)

        assert repo.get("room-1").status == CLOSING
        assert "room-1" in scheduler.guard

        result = await task
        assert result.success is True
        assert repo.get("room-1").status == CLOSED

    @pytest.mark.asyncio
    async def test_settlement_sees_positions_written_during_grace(
        self, repo, feed, events, clock
    ) -> None:
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0.05
        )
        await repo.create(make_room(status=ACTIVE, participants=[make_participant("u1")]))
        task = asyncio.create_task(scheduler.end_competition("room-1"))
        await asyncio.sleep(0.01)
        repo.get("room-1").participants[0].open_positions.append(
            make_position("late", PositionType.LONG, entry_price=9990.0, size=1.0)
        )

        await task
        late = repo.get("room-1").participants[0].open_positions[0]
        assert late.status == PositionStatus.CLOSED.value
        assert late.pnl == pytest.approx(10.0)


class TestResilience:
    @pytest.mark.asyncio
    async def test_resumes_room_left_in_closing(self, scheduler, repo, events) -> None:
        await repo.create(_three_player_room(status=CLOSING))
        result = await scheduler.check_competition_times()

        assert result.closed_count == 1
        assert repo.get("room-1").status == CLOSED
        assert repo.saved_statuses == [("room-1", CLOSED)]
        assert events.names() == [EventName.ROOM_CLOSED.value]

    @pytest.mark.asyncio
    async def test_one_failing_room_does_not_block_others(
        self, scheduler, repo, clock
    ) -> None:
        clock.set(17, 30)
        await repo.create(make_room(id="room-bad", status=ACTIVE))
        await repo.create(make_room(id="room-good", status=ACTIVE))
        repo.fail_on_save.add("room-bad")

        result = await scheduler.check_competition_times()

        assert result.closed_count == 1
        assert result.error is None
        assert repo.get("room-good").status == CLOSED
        assert repo.get("room-bad").status == ACTIVE
        assert "room-bad" not in scheduler.guard

    @pytest.mark.asyncio
    async def test_failed_room_retried_next_pass(self, scheduler, repo, clock) -> None:
        clock.set(17, 30)
        await repo.create(make_room(status=ACTIVE))
        repo.fail_on_save.add("room-1")
        await scheduler.check_competition_times()

        repo.fail_on_save.clear()
        result = await scheduler.check_competition_times()
        assert result.closed_count == 1
        assert repo.get("room-1").status == CLOSED

    @pytest.mark.asyncio
    async def test_load_failure_reported(self, feed, events, clock) -> None:
        repo = AsyncMock()
        repo.find_by_status.side_effect = ConnectionError("db down")
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0
        )
        result = await scheduler.check_competition_times()
        assert result.error == "db down"
        assert result.activated_count == 0

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_transition(
        self, repo, feed, clock
    ) -> None:
        events = AsyncMock()
        events.publish.side_effect = RuntimeError("redis down")
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0
        )
        await repo.create(make_room())
        result = await scheduler.start_competition("room-1")
        assert result.success is True
        assert repo.get("room-1").status == ACTIVE

    @pytest.mark.asyncio
    async def test_active_room_in_window_rejoins_session(self, scheduler, repo) -> None:
        """After a restart an ACTIVE room inside its window reopens the market."""
        await repo.create(make_room(status=ACTIVE))
        result = await scheduler.check_competition_times()
        assert result.active_room_ids == ["room-1"]
        assert scheduler.market_open is True


class TestStopLevels:
    @pytest.mark.asyncio
    async def test_closes_triggered_positions(self, scheduler, repo) -> None:
        await repo.create(make_room(participants=[make_participant("u1")]))
        await scheduler.start_competition("room-1")
        repo.get("room-1").participants[0].open_positions.append(
            make_position(
                "p1", PositionType.LONG, entry_price=10000.0, size=1.0, stop_loss=9990.0
            )
        )

        assert await scheduler.check_stop_levels(9980.0) == 1
        p = repo.get("room-1").participants[0]
        assert p.open_positions[0].status == PositionStatus.CLOSED.value
        assert p.current_capital == pytest.approx(980.0)

    @pytest.mark.asyncio
    async def test_untriggered_positions_not_saved(self, scheduler, repo) -> None:
        await repo.create(make_room(participants=[make_participant("u1")]))
        await scheduler.start_competition("room-1")
        saves = len(repo.saved_statuses)
        repo.get("room-1").participants[0].open_positions.append(
            make_position("p1", PositionType.SHORT, entry_price=10000.0, stop_loss=10100.0)
        )

        assert await scheduler.check_stop_levels(10050.0) == 0
        assert len(repo.saved_statuses) == saves

    @pytest.mark.asyncio
    async def test_skipped_while_market_closed(self, scheduler, repo) -> None:
        room = make_room(
            status=ACTIVE,
            participants=[
                make_participant(
                    "u1", open_positions=[make_position("p1", stop_loss=200.0)]
                )
            ],
        )
        await repo.create(room)
        assert await scheduler.check_stop_levels(50.0) == 0
        assert repo.get("room-1").participants[0].open_positions[0].is_open


class TestCandlesAndSnapshot:
    @pytest.mark.asyncio
    async def test_no_events_while_market_closed(self, scheduler, events) -> None:
        scheduler.next_tick()
        candle = await scheduler.finalize_candle(60)
        assert candle.timeframe == 60
        assert events.events == []

    @pytest.mark.asyncio
    async def test_candle_events_while_market_open(self, scheduler, repo, events) -> None:
        await repo.create(make_room())
        await scheduler.start_competition("room-1")
        events.events.clear()

        scheduler.next_tick()
        candle = await scheduler.finalize_candle()

        assert events.names() == [
            EventName.CANDLE_COMPLETED.value,
            EventName.PRICE_UPDATE.value,
        ]
        completed, update = events.events
        assert completed.candle == candle
        assert completed.active_room_ids == ["room-1"]
        assert update.price == candle.close
        assert update.is_new_candle is True

    @pytest.mark.asyncio
    async def test_sync_snapshot(self, scheduler, repo) -> None:
        await repo.create(make_room())
        await scheduler.start_competition("room-1")
        snap = scheduler.current_sync_snapshot()

        assert snap.price == INITIAL_PRICE
        assert snap.market_open is True
        assert snap.active_room_ids == ["room-1"]

    def test_snapshot_candle_is_a_copy(self, scheduler) -> None:
        snap = scheduler.current_sync_snapshot()
        snap.forming_candle.high = 1.0
        assert scheduler.current_sync_snapshot().forming_candle.high == INITIAL_PRICE



class TestActiveSetConsistency:
    @pytest.mark.asyncio
    async def test_start_during_pass_closure_keeps_room_live(
        self, repo, events, clock
    ) -> None:
        """A room started while a pass waits out a closure stays live and the
        feed is not reset on the following pass."""
        feed = PriceFeed(initial_price=INITIAL_PRICE, volatility=0.01, rng=random.Random(5))
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0.05
        )
        clock.set(17, 30)
        await repo.create(make_room(id="room-a", status=ACTIVE))
        await repo.create(make_room(id="room-b", start_time="17:45", end_time="18:30"))

        async def start_b_later():
            await asyncio.sleep(0.01)
            return await scheduler.start_competition("room-b")

        check, started = await asyncio.gather(
            scheduler.check_competition_times(), start_b_later()
        )

        assert started.success is True
        assert check.closed_count == 1
        assert repo.get("room-a").status == CLOSED
        assert scheduler.active_room_ids == {"room-b"}
        assert scheduler.market_open is True

        for _ in range(5):
            scheduler.next_tick()
        price = feed.last_price
        assert price != INITIAL_PRICE

        clock.set(17, 50)
        result = await scheduler.check_competition_times()

        assert result.active_room_ids == ["room-b"]
        assert feed.last_price == price
        assert scheduler.market_open is True

    @pytest.mark.asyncio
    async def test_manual_settlement_during_pass_not_readded(
        self, repo, events, clock
    ) -> None:
        feed = PriceFeed(initial_price=INITIAL_PRICE, volatility=0.0)
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0.05
        )
        clock.set(17, 30)
        await repo.create(make_room(id="room-a", status=ACTIVE))
        # room-z is inside its window, so the pass only keeps it live
        await repo.create(
            make_room(id="room-z", status=ACTIVE, start_time="08:00", end_time="18:00")
        )

        # The manual closure of room-z starts first and finishes while the pass
        # is still waiting on room-a
        await asyncio.gather(
            scheduler.end_competition("room-z"), scheduler.check_competition_times()
        )

        assert repo.get("room-z").status == CLOSED
        assert scheduler.active_room_ids == set()
        assert scheduler.market_open is False

    @pytest.mark.asyncio
    async def test_room_closed_elsewhere_dropped(self, scheduler, repo) -> None:
        await repo.create(make_room())
        await scheduler.start_competition("room-1")
        repo.get("room-1").status = CLOSED

        result = await scheduler.check_competition_times()

        assert result.active_room_ids == []
        assert scheduler.market_open is False

    @pytest.mark.asyncio
    async def test_pass_does_not_reset_feed_of_running_session(
        self, repo, events, clock
    ) -> None:
        feed = PriceFeed(initial_price=INITIAL_PRICE, volatility=0.01, rng=random.Random(9))
        scheduler = CompetitionScheduler(
            repo, feed, events, clock, initial_price=INITIAL_PRICE, grace_seconds=0
        )
        await repo.create(make_room())
        await scheduler.start_competition("room-1")
        for _ in range(3):
            scheduler.next_tick()
        price = feed.last_price

        await scheduler.check_competition_times()
        assert feed.last_price == price
