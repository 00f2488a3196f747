"""Market data models — ticks, bars, and directional enums."""

from dataclasses import dataclass
from enum import Enum


class Direction(str, Enum):
    """Direction of a price move or a multi-timeframe trend."""

    UP = "UP"
    DOWN = "DOWN"


class Side(str, Enum):
    """Side of a virtual position tracked by the trailing stop."""

    LONG = "long"
    SHORT = "short"

    @classmethod
    def for_direction(cls, direction: Direction) -> "Side":
        """An upward spike arms a long, a downward spike arms a short."""
        return cls.LONG if direction is Direction.UP else cls.SHORT


@dataclass(frozen=True)
class Tick:
    """A single last-price observation from the feed."""

    symbol: str
    price: float
    timestamp: int  # epoch milliseconds


@dataclass(frozen=True)
class Bar:
    """A closed OHLC bar for one symbol and timeframe.

    ``tick_count`` doubles as the bar's activity volume: the ticker feed
    carries no per-trade quantity.
    """

    symbol: str
    timeframe_sec: int
    open_ts: int  # epoch milliseconds, aligned to the bucket
    open: float
    high: float
    low: float
    close: float
    tick_count: int

    @property
    def volume(self) -> float:
        return float(self.tick_count)
