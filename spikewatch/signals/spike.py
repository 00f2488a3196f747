"""Adaptive spike detector — pure math, no I/O.

Tracks an exponentially-weighted average of absolute tick-to-tick moves per
symbol.  A move is a spike when it reaches ``max(min_abs_pct, z × ewma)``,
where the EWMA is the prevailing volatility *before* the current tick, and
the symbol is not cooling down.
"""

from dataclasses import dataclass
from typing import Optional

from spikewatch.models.market import Direction

# Reported score when the baseline volatility is exactly zero.
SCORE_SENTINEL = 999.0


@dataclass
class SpikeState:
    """Per-symbol detector state, created on the first tick."""

    last_price: float
    last_ts: int
    ewma_abs_pct: Optional[float] = None  # None until the first move
    cooldown_until_ts: int = 0


@dataclass(frozen=True)
class SpikeResult:
    """Outcome of one :meth:`SpikeDetector.update` call."""

    is_spike: bool
    direction: Optional[Direction] = None
    magnitude: Optional[float] = None  # |pct|, fractional
    score: Optional[float] = None  # magnitude / baseline ewma
    threshold: Optional[float] = None


_NO_SPIKE = SpikeResult(is_spike=False)


class SpikeDetector:
    """Per-symbol adaptive anomaly detector.

    Args:
        window_sec: Seconds-equivalent EWMA window; ``α = 2 / (window + 1)``.
        min_abs_pct: Absolute floor for the threshold (0.003 = 0.3 %).
        z_multiplier: Multiple of the EWMA a move must reach.
        cooldown_sec: Quiet period after a spike fires for a symbol.
    """

    def __init__(
        self,
        window_sec: float = 5.0,
        min_abs_pct: float = 0.003,
        z_multiplier: float = 3.0,
        cooldown_sec: float = 20.0,
    ) -> None:
        if window_sec <= 0:
            raise ValueError(f"window_sec must be positive, got {window_sec}")
        self.window_sec = window_sec
        self.min_abs_pct = min_abs_pct
        self.z_multiplier = z_multiplier
        self.cooldown_ms = int(round(cooldown_sec * 1000))
        self._alpha = 2.0 / (window_sec + 1.0)
        self._states: dict[str, SpikeState] = {}

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, symbol: str, price: float, timestamp: int) -> SpikeResult:
        """Feed one tick and report whether it is a spike.

        The EWMA is updated on every tick, including ticks that land in the
        cooldown window.  The first tick for a symbol only records the price.
        Non-positive prices are ignored without touching state.
        """
        if price <= 0:
            return _NO_SPIKE

        state = self._states.get(symbol)
        if state is None:
            self._states[symbol] = SpikeState(last_price=price, last_ts=timestamp)
            return _NO_SPIKE

        prev_price = state.last_price
        state.last_price = price
        state.last_ts = timestamp

        pct = (price - prev_price) / prev_price
        abs_pct = abs(pct)

        baseline = state.ewma_abs_pct if state.ewma_abs_pct is not None else abs_pct
        state.ewma_abs_pct = self._alpha * abs_pct + (1.0 - self._alpha) * baseline

        threshold = max(self.min_abs_pct, self.z_multiplier * baseline)
        if abs_pct == 0 or abs_pct < threshold:
            return _NO_SPIKE
        if timestamp < state.cooldown_until_ts:
            return _NO_SPIKE

        state.cooldown_until_ts = timestamp + self.cooldown_ms
        return SpikeResult(
            is_spike=True,
            direction=Direction.UP if pct >= 0 else Direction.DOWN,
            magnitude=abs_pct,
            score=abs_pct / baseline if baseline > 0 else SCORE_SENTINEL,
            threshold=threshold,
        )

    def drop(self, symbol: str) -> None:
        """Forget a symbol (it left the universe)."""
        self._states.pop(symbol, None)

    def reset(self) -> None:
        """Forget every symbol."""
        self._states.clear()

    # ── Queries ──────────────────────────────────────────────────────────

    def state(self, symbol: str) -> Optional[SpikeState]:
        return self._states.get(symbol)

    @property
    def symbols(self) -> set[str]:
        return set(self._states)
