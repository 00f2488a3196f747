"""Bar aggregation — raw ticks into fixed-size time bars.

Two equivalent ways to build a timeframe:

- ``BarAggregator`` buckets raw ticks by ``floor(ts / size) × size``.
- ``BarRollup`` groups closed bars of a shorter timeframe by the same
  parent bucket.

Both close a bar only when a later event falls into a different bucket, so
they produce identical OHLC for the same ticks.
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional

from spikewatch.models.market import Bar


def bucket_start(timestamp: int, bucket_ms: int) -> int:
    """Start of the bucket containing *timestamp* (both in milliseconds)."""
    return (timestamp // bucket_ms) * bucket_ms


@dataclass
class _OpenBar:
    """Mutable bar still accumulating data."""

    open_ts: int
    open: float
    high: float
    low: float
    close: float
    tick_count: int

    def freeze(self, symbol: str, timeframe_sec: int) -> Bar:
        return Bar(
            symbol=symbol,
            timeframe_sec=timeframe_sec,
            open_ts=self.open_ts,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            tick_count=self.tick_count,
        )


class _BarSeries:
    """Open bar plus bounded closed-bar history, per symbol."""

    def __init__(self, timeframe_sec: int, history_size: int = 200) -> None:
        if timeframe_sec <= 0:
            raise ValueError(f"timeframe_sec must be positive, got {timeframe_sec}")
        self.timeframe_sec = timeframe_sec
        self.bucket_ms = timeframe_sec * 1000
        self._history_size = history_size
        self._open: dict[str, _OpenBar] = {}
        self._history: dict[str, deque[Bar]] = {}

    def _close(self, symbol: str) -> Bar:
        bar = self._open.pop(symbol).freeze(symbol, self.timeframe_sec)
        self._history.setdefault(
            symbol, deque(maxlen=self._history_size)
        ).append(bar)
        return bar

    def history(self, symbol: str) -> list[Bar]:
        """Closed bars for *symbol*, oldest first."""
        return list(self._history.get(symbol, ()))

    def open_bar(self, symbol: str) -> Optional[Bar]:
        """Snapshot of the bar still accumulating for *symbol*."""
        bar = self._open.get(symbol)
        return bar.freeze(symbol, self.timeframe_sec) if bar else None

    def drop(self, symbol: str) -> None:
        self._open.pop(symbol, None)
        self._history.pop(symbol, None)

    def reset(self) -> None:
        self._open.clear()
        self._history.clear()


class BarAggregator(_BarSeries):
    """Buckets raw ticks into bars of one timeframe.

    Args:
        timeframe_sec: Bucket size in seconds (60 for 1-minute bars).
        history_size: Closed bars retained per symbol.
    """

    def on_tick(self, symbol: str, price: float, timestamp: int) -> Optional[Bar]:
        """Add a tick; return the bar it closed, if any."""
        bucket = bucket_start(timestamp, self.bucket_ms)
        current = self._open.get(symbol)

        if current is not None and current.open_ts == bucket:
            current.high = max(current.high, price)
            current.low = min(current.low, price)
            current.close = price
            current.tick_count += 1
            return None

        closed = self._close(symbol) if current is not None else None
        self._open[symbol] = _OpenBar(
            open_ts=bucket,
            open=price,
            high=price,
            low=price,
            close=price,
            tick_count=1,
        )
        return closed


class BarRollup(_BarSeries):
    """Derives a longer timeframe from closed bars of a shorter one.

    Args:
        timeframe_sec: Target bucket size; must be a multiple of the
            source bars' timeframe.
        history_size: Closed bars retained per symbol.
    """

    def on_bar(self, bar: Bar, now_ts: Optional[int] = None) -> list[Bar]:
        """Absorb a closed source bar; return the bars it closed.

        *now_ts* is the timestamp of the tick that closed *bar*.  Passing it
        lets the parent close on the same tick a raw-tick aggregator would.
        """
        if bar.timeframe_sec > self.timeframe_sec or self.timeframe_sec % bar.timeframe_sec:
            raise ValueError(
                f"Cannot roll {bar.timeframe_sec}s bars into {self.timeframe_sec}s bars"
            )

        symbol = bar.symbol
        closed: list[Bar] = []
        parent = bucket_start(bar.open_ts, self.bucket_ms)
        current = self._open.get(symbol)

        if current is not None and current.open_ts != parent:
            closed.append(self._close(symbol))
            current = None

        if current is None:
            self._open[symbol] = _OpenBar(
                open_ts=parent,
                open=bar.open,
                high=bar.high,
                low=bar.low,
                close=bar.close,
                tick_count=bar.tick_count,
            )
        else:
            current.high = max(current.high, bar.high)
            current.low = min(current.low, bar.low)
            current.close = bar.close
            current.tick_count += bar.tick_count

        if now_ts is not None and bucket_start(now_ts, self.bucket_ms) != parent:
            closed.append(self._close(symbol))
        return closed
