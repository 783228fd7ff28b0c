"""Shared test fixtures."""

import random

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.tc_competition.engine.scheduler import CompetitionScheduler
from src.tc_market.engine.price_feed import PriceFeed
from tests.fakes import INITIAL_PRICE, FakeClock, InMemoryRoomRepository, RecordingEventBus


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock.at(10, 0)


@pytest.fixture
def repo() -> InMemoryRoomRepository:
    return InMemoryRoomRepository()


@pytest.fixture
def events() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def feed() -> PriceFeed:
    """Flat feed: zero volatility keeps every tick at the initial price."""
    return PriceFeed(initial_price=INITIAL_PRICE, volatility=0.0, rng=random.Random(7))


@pytest.fixture
def scheduler(
    repo: InMemoryRoomRepository,
    feed: PriceFeed,
    events: RecordingEventBus,
    clock: FakeClock,
) -> CompetitionScheduler:
    return CompetitionScheduler(
        repo=repo,
        feed=feed,
        events=events,
        clock=clock,
        initial_price=INITIAL_PRICE,
        grace_seconds=0,
    )


@pytest.fixture
async def client(
    repo: InMemoryRoomRepository, scheduler: CompetitionScheduler
) -> AsyncClient:
    """Async HTTP client for the API. Lifespan does not run under ASGITransport,
    so app state is wired to in-memory doubles here."""
    app.state.room_repo = repo
    app.state.scheduler = scheduler
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

