"""Technical indicators — moving averages and z-score. Pure math, no I/O.

``MovingAverage`` is updated once per closed bar.  The EMA is seeded with
the SMA of the first *length* closes.
"""

import math
from collections import deque
from typing import Optional

import numpy as np


def zscore(latest: float, sample: list[float]) -> float:
    """How many standard deviations *latest* sits from the mean of *sample*.

    Returns 0.0 when the sample is too small or has no dispersion.
    """
    if len(sample) < 2:
        return 0.0
    arr = np.asarray(sample, dtype=float)
    std = float(arr.std())
    if std == 0 or math.isnan(std):
        return 0.0
    return (latest - float(arr.mean())) / std


class MovingAverage:
    """Incremental EMA or SMA with a bounded history of past values.

    Args:
        length: Number of periods.
        kind: ``"ema"`` or ``"sma"``.
        history_size: How many previous MA values to keep for slope checks.
    """

    def __init__(self, length: int, kind: str = "ema", history_size: int = 8) -> None:
        if length <= 0:
            raise ValueError(f"length must be positive, got {length}")
        if kind not in ("ema", "sma"):
            raise ValueError(f"kind must be 'ema' or 'sma', got {kind!r}")
        self.length = length
        self.kind = kind
        self._k = 2.0 / (length + 1)
        self._window: deque[float] = deque(maxlen=length)
        self._value: Optional[float] = None
        self._history: deque[float] = deque(maxlen=history_size)

    @property
    def value(self) -> Optional[float]:
        """Current MA, or ``None`` until *length* closes have been seen."""
        return self._value

    @property
    def ready(self) -> bool:
        return self._value is not None

    def update(self, close: float) -> Optional[float]:
        """Add one close and return the new MA value."""
        if self._value is not None:
            self._history.append(self._value)

        self._window.append(close)
        if self.kind == "sma" or self._value is None:
            if len(self._window) == self.length:
                self._value = sum(self._window) / self.length
        else:
            self._value = close * self._k + self._value * (1 - self._k)
        return self._value

    def value_ago(self, bars: int) -> Optional[float]:
        """MA value *bars* closes before the current one, if retained."""
        if bars <= 0:
            return self._value
        if bars > len(self._history):
            return None
        return self._history[-bars]

    def slope_pct(self, lookback: int) -> Optional[float]:
        """Relative change of the MA over *lookback* closes."""
        prior = self.value_ago(lookback)
        if self._value is None or prior is None or prior == 0:
            return None
        return (self._value - prior) / prior
