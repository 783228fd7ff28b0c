"""Domain models for tc_market. Ticks aggregate into candles."""

from dataclasses import dataclass


@dataclass
class FormingCandle:
    """OHLCV accumulator for the in-progress interval."""

    open: float
    high: float
    low: float
    close: float
    volume: int = 0
    started_at_ms: int = 0

    def update(self, price: float, volume: int) -> None:
        self.high = max(self.high, price)
        self.low = min(self.low, price)
        self.close = price
        self.volume += volume


@dataclass(frozen=True)
class Candle:
    open: float
    high: float
    low: float
    close: float
    volume: int
    timestamp: int   # epoch ms, start of the bucket
    timeframe: int   # seconds

