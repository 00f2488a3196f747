"""Advisory trailing stop — virtual positions per symbol and side.

Lifecycle per ``(symbol, side)``:

  - A qualifying spike creates the position in ``ARMED`` at the spike price.
  - ``ARMED`` → ``IN_TRAIL`` once price moves ``start_pct`` in favour;
    the stop is set ``distance_pct`` behind the peak.
  - ``IN_TRAIL`` ratchets peak and stop on every new favourable extreme,
    reporting a move only when the stop shifted by ``step_pct × peak``.
  - A price through the stop reports ``EXIT`` and deletes the position.

Nothing here places orders.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from spikewatch.models.market import Direction, Side


class TrailPhase(str, Enum):
    ARMED = "armed"
    IN_TRAIL = "in_trail"


class TrailEventType(str, Enum):
    ARMED = "armed"
    STARTED = "started"
    MOVED = "moved"
    EXIT = "exit"


@dataclass
class TrailState:
    """One virtual position."""

    symbol: str
    side: Side
    phase: TrailPhase
    entry_price: float
    peak_price: float
    stop_price: Optional[float] = None
    last_reported_stop: Optional[float] = None
    opened_ts: int = 0

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "phase": self.phase.value,
            "entry_price": self.entry_price,
            "peak_price": self.peak_price,
            "stop_price": self.stop_price,
            "opened_ts": self.opened_ts,
        }


@dataclass(frozen=True)
class TrailEvent:
    """A state transition worth reporting."""

    type: TrailEventType
    symbol: str
    side: Side
    price: float
    entry_price: float
    peak_price: float
    stop_price: Optional[float]
    timestamp: int

    @property
    def excursion_pct(self) -> float:
        """Favourable excursion of the peak from entry (advisory P&L)."""
        if self.side is Side.LONG:
            return (self.peak_price - self.entry_price) / self.entry_price
        return (self.entry_price - self.peak_price) / self.entry_price


class TrailingStopManager:
    """Tracks advisory trailing stops for every symbol/side.

    Args:
        start_pct: Favourable move from entry that starts trailing.
        distance_pct: Stop distance behind the peak.
        step_pct: Minimum stop shift, relative to peak, worth reporting.
    """

    def __init__(
        self,
        start_pct: float = 0.003,
        distance_pct: float = 0.004,
        step_pct: float = 0.001,
    ) -> None:
        self.start_pct = start_pct
        self.distance_pct = distance_pct
        self.step_pct = step_pct
        self._positions: dict[tuple[str, Side], TrailState] = {}

    # ── Helpers ──────────────────────────────────────────────────────────

    def _stop_for(self, side: Side, peak: float) -> float:
        if side is Side.LONG:
            return peak * (1 - self.distance_pct)
        return peak * (1 + self.distance_pct)

    @staticmethod
    def _is_favourable(side: Side, price: float, reference: float) -> bool:
        return price > reference if side is Side.LONG else price < reference

    @staticmethod
    def _event(kind: TrailEventType, pos: TrailState, price: float, ts: int) -> TrailEvent:
        return TrailEvent(
            type=kind,
            symbol=pos.symbol,
            side=pos.side,
            price=price,
            entry_price=pos.entry_price,
            peak_price=pos.peak_price,
            stop_price=pos.stop_price,
            timestamp=ts,
        )

    # ── Transitions ──────────────────────────────────────────────────────

    def on_spike(
        self, symbol: str, direction: Direction, price: float, timestamp: int = 0,
    ) -> Optional[TrailEvent]:
        """Arm the side matching *direction* unless it is already tracked."""
        side = Side.for_direction(direction)
        key = (symbol, side)
        if key in self._positions:
            return None
        pos = TrailState(
            symbol=symbol,
            side=side,
            phase=TrailPhase.ARMED,
            entry_price=price,
            peak_price=price,
            opened_ts=timestamp,
        )
        self._positions[key] = pos
        return self._event(TrailEventType.ARMED, pos, price, timestamp)

    def _advance(self, pos: TrailState, price: float, ts: int) -> Optional[TrailEvent]:
        side = pos.side

        if pos.phase is TrailPhase.ARMED:
            if self._is_favourable(side, price, pos.peak_price):
                pos.peak_price = price
            if side is Side.LONG:
                gain = (price - pos.entry_price) / pos.entry_price
            else:
                gain = (pos.entry_price - price) / pos.entry_price
            if gain < self.start_pct:
                return None
            pos.phase = TrailPhase.IN_TRAIL
            pos.peak_price = price
            pos.stop_price = self._stop_for(side, price)
            pos.last_reported_stop = pos.stop_price
            return self._event(TrailEventType.STARTED, pos, price, ts)

        if pos.phase is TrailPhase.IN_TRAIL:
            if self._is_favourable(side, price, pos.peak_price):
                pos.peak_price = price
                pos.stop_price = self._stop_for(side, price)
                shift = abs(pos.stop_price - pos.last_reported_stop)
                if shift >= self.step_pct * pos.peak_price:
                    pos.last_reported_stop = pos.stop_price
                    return self._event(TrailEventType.MOVED, pos, price, ts)
                return None

            stop = pos.stop_price
            hit = price <= stop if side is Side.LONG else price >= stop
            if hit:
                del self._positions[(pos.symbol, side)]
                return self._event(TrailEventType.EXIT, pos, price, ts)
            return None

        raise ValueError(f"Unhandled trail phase: {pos.phase!r}")

    def on_price(self, symbol: str, price: float, timestamp: int = 0) -> list[TrailEvent]:
        """Advance both sides of *symbol* with the latest price."""
        events: list[TrailEvent] = []
        for side in (Side.LONG, Side.SHORT):
            pos = self._positions.get((symbol, side))
            if pos is None:
                continue
            event = self._advance(pos, price, timestamp)
            if event is not None:
                events.append(event)
        return events

    # ── Housekeeping ─────────────────────────────────────────────────────

    def get(self, symbol: str, side: Side) -> Optional[TrailState]:
        return self._positions.get((symbol, side))

    def positions(self) -> list[TrailState]:
        return list(self._positions.values())

    def drop(self, symbol: str) -> None:
        for side in (Side.LONG, Side.SHORT):
            self._positions.pop((symbol, side), None)

    def reset(self) -> None:
        self._positions.clear()
