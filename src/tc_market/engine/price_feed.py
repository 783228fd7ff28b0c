"""PriceFeed — synthetic random-walk ticks aggregated into OHLCV candles.

Independent of competitions: it keeps producing prices whether or not any
room is live. The only way to restart the series is ``reset``.
"""

import logging
import random
import time
from collections.abc import Callable

from src.tc_market.domain.models import Candle, FormingCandle

logger = logging.getLogger(__name__)

MIN_PRICE = 1.0
_MAX_TICK_VOLUME = 10


class PriceFeed:
    def __init__(
        self,
        initial_price: float,
        volatility: float,
        rng: random.Random | None = None,
        clock_ms: Callable[[], int] | None = None,
    ) -> None:
        if initial_price <= 0:
            raise ValueError(f"initial_price must be positive, got {initial_price}")
        self._volatility = volatility
        self._rng = rng or random.Random()
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self._last_price = round(initial_price, 2)
        self._forming = self._new_candle(self._last_price)

    @property
    def last_price(self) -> float:
        return self._last_price

    @property
    def forming_candle(self) -> FormingCandle:
        return self._forming

    def reset(self, initial_price: float) -> None:
        logger.info("Price feed reset to %.2f", initial_price)
        self._last_price = round(initial_price, 2)
        self._forming = self._new_candle(self._last_price)

    def next_tick(self) -> float:
        """Advance the walk one step and fold the tick into the forming candle."""
        step = self._rng.gauss(0.0, self._volatility)
        price = max(MIN_PRICE, round(self._last_price * (1.0 + step), 2))
        self._last_price = price
        self._forming.update(price, self._rng.randint(1, _MAX_TICK_VOLUME))
        return price

    def finalize_candle(self, timeframe: int = 1) -> Candle:
        """Close the forming candle and open a new one at the last close.

        ``timestamp`` is the start of the bucket the candle belongs to, aligned
        to ``timeframe`` seconds.
        """
        if timeframe <= 0:
            raise ValueError(f"timeframe must be positive, got {timeframe}")
        bucket_ms = timeframe * 1000
        started = self._forming.started_at_ms
        closed = Candle(
            open=self._forming.open,
            high=self._forming.high,
            low=self._forming.low,
            close=self._forming.close,
            volume=self._forming.volume,
            timestamp=started - started % bucket_ms,
            timeframe=timeframe,
        )
        self._forming = self._new_candle(closed.close)
        return closed

    def _new_candle(self, price: float) -> FormingCandle:
        return FormingCandle(
            open=price,
            high=price,
            low=price,
            close=price,
            volume=0,
            started_at_ms=self._clock_ms(),
        )
