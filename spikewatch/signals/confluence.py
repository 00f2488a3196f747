"""Multi-timeframe moving-average confluence.

Each timeframe keeps three moving averages (short/medium/long).  A timeframe
is *aligned* UP when all three slope up beyond the dead zone and are stacked
``short > medium > long``; DOWN is the mirror image.  A signal fires only
when every monitored timeframe is aligned in the same direction, once per
transition into that state, subject to a per-symbol cooldown and the
optional volume and distance gates.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from spikewatch.models.market import Direction
from spikewatch.signals.indicators import MovingAverage, zscore

logger = logging.getLogger("spikewatch.confluence")


@dataclass(frozen=True)
class ConfluenceSignal:
    """A cross-timeframe trend agreement."""

    symbol: str
    direction: Direction
    contributing_timeframes: tuple[int, ...]
    score: float  # mean |MA slope| across all timeframes, in basis points
    timestamp: int
    price: float
    volume_z: Optional[float] = None
    ma_distance_pct: Optional[float] = None


@dataclass
class _TimeframeState:
    averages: list[MovingAverage]
    volumes: deque
    alignment: Optional[Direction] = None
    slopes: list[float] = field(default_factory=list)
    last_close: Optional[float] = None


@dataclass
class _SymbolState:
    timeframes: dict[int, _TimeframeState]
    active_direction: Optional[Direction] = None
    last_signal_ts: Optional[int] = None


class ConfluenceEngine:
    """Per-symbol MA state across several timeframes.

    Args:
        timeframes: Bar sizes in seconds, fastest first.
        lengths: Short, medium and long MA lengths.
        kind: ``"ema"`` or ``"sma"``.
        slope_lookback: Bars between the MA values compared for slope.
        dead_zone_pct: Minimum |relative slope| that counts as trending.
        cooldown_sec: Minimum spacing between signals for one symbol.
        min_volume_z: Optional gate on the fastest timeframe's bar volume.
        max_ma_distance_pct: Optional gate on the distance between the
            latest price and the slowest timeframe's long MA.
        volume_window: Prior bars used for the volume z-score.
    """

    def __init__(
        self,
        timeframes: tuple[int, ...] = (60, 180, 900),
        lengths: tuple[int, int, int] = (5, 10, 30),
        kind: str = "ema",
        slope_lookback: int = 3,
        dead_zone_pct: float = 0.0002,
        cooldown_sec: float = 900.0,
        min_volume_z: Optional[float] = None,
        max_ma_distance_pct: Optional[float] = None,
        volume_window: int = 20,
    ) -> None:
        if not timeframes:
            raise ValueError("At least one timeframe is required")
        if len(lengths) != 3:
            raise ValueError(f"Exactly three MA lengths are required, got {lengths}")
        self.timeframes = tuple(timeframes)
        self.lengths = tuple(lengths)
        self.kind = kind
        self.slope_lookback = slope_lookback
        self.dead_zone_pct = dead_zone_pct
        self.cooldown_ms = int(round(cooldown_sec * 1000))
        self.min_volume_z = min_volume_z
        self.max_ma_distance_pct = max_ma_distance_pct
        self.volume_window = volume_window
        self._symbols: dict[str, _SymbolState] = {}

    # ── State ────────────────────────────────────────────────────────────

    def _new_symbol_state(self) -> _SymbolState:
        return _SymbolState(
            timeframes={
                tf: _TimeframeState(
                    averages=[
                        MovingAverage(n, self.kind, history_size=self.slope_lookback)
                        for n in self.lengths
                    ],
                    volumes=deque(maxlen=self.volume_window + 1),
                )
                for tf in self.timeframes
            }
        )

    def drop(self, symbol: str) -> None:
        self._symbols.pop(symbol, None)

    def reset(self) -> None:
        self._symbols.clear()

    def alignment(self, symbol: str, timeframe: int) -> Optional[Direction]:
        """Current alignment of one timeframe, ``None`` when not aligned."""
        state = self._symbols.get(symbol)
        if state is None or timeframe not in state.timeframes:
            return None
        return state.timeframes[timeframe].alignment

    # ── Evaluation ───────────────────────────────────────────────────────

    def _align(self, tf_state: _TimeframeState) -> Optional[Direction]:
        slopes = [ma.slope_pct(self.slope_lookback) for ma in tf_state.averages]
        if any(s is None for s in slopes):
            tf_state.slopes = []
            return None
        tf_state.slopes = slopes  # type: ignore[assignment]

        short, medium, long_ = (ma.value for ma in tf_state.averages)
        if all(s > self.dead_zone_pct for s in slopes) and short > medium > long_:
            return Direction.UP
        if all(s < -self.dead_zone_pct for s in slopes) and short < medium < long_:
            return Direction.DOWN
        return None

    def _volume_z(self, state: _SymbolState) -> Optional[float]:
        volumes = list(state.timeframes[self.timeframes[0]].volumes)
        if len(volumes) < 3:
            return None
        return zscore(volumes[-1], volumes[:-1])

    def _ma_distance_pct(self, state: _SymbolState) -> Optional[float]:
        slow_long = state.timeframes[self.timeframes[-1]].averages[-1].value
        price = state.timeframes[self.timeframes[0]].last_close
        if slow_long is None or price is None or slow_long == 0:
            return None
        return abs(price - slow_long) / slow_long

    def on_bar_close(
        self,
        symbol: str,
        timeframe: int,
        close_price: float,
        timestamp: int,
        volume: Optional[float] = None,
    ) -> Optional[ConfluenceSignal]:
        """Update one timeframe with a closed bar and evaluate confluence.

        Raises ``ValueError`` for a timeframe the engine does not monitor.
        """
        if timeframe not in self.timeframes:
            raise ValueError(
                f"Unknown timeframe {timeframe}s; monitored: {self.timeframes}"
            )

        state = self._symbols.get(symbol)
        if state is None:
            state = self._new_symbol_state()
            self._symbols[symbol] = state

        tf_state = state.timeframes[timeframe]
        for ma in tf_state.averages:
            ma.update(close_price)
        tf_state.last_close = close_price
        if volume is not None:
            tf_state.volumes.append(volume)
        tf_state.alignment = self._align(tf_state)

        directions = {s.alignment for s in state.timeframes.values()}
        if len(directions) != 1 or None in directions:
            state.active_direction = None
            return None

        direction = directions.pop()
        if direction == state.active_direction:
            return None

        if (
            state.last_signal_ts is not None
            and timestamp - state.last_signal_ts < self.cooldown_ms
        ):
            state.active_direction = direction
            logger.debug("%s confluence %s suppressed by cooldown", symbol, direction.value)
            return None

        volume_z = self._volume_z(state)
        if self.min_volume_z is not None and (
            volume_z is None or volume_z < self.min_volume_z
        ):
            return None

        distance = self._ma_distance_pct(state)
        if self.max_ma_distance_pct is not None and (
            distance is None or distance > self.max_ma_distance_pct
        ):
            return None

        state.active_direction = direction
        state.last_signal_ts = timestamp

        all_slopes = [abs(s) for tf in state.timeframes.values() for s in tf.slopes]
        score = sum(all_slopes) / len(all_slopes) * 10_000 if all_slopes else 0.0
        price = state.timeframes[self.timeframes[0]].last_close or close_price
        return ConfluenceSignal(
            symbol=symbol,
            direction=direction,
            contributing_timeframes=self.timeframes,
            score=score,
            timestamp=timestamp,
            price=price,
            volume_z=volume_z,
            ma_distance_pct=distance,
        )
