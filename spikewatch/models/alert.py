"""Alert record handed to every delivery channel."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class Alert:
    """A structured alert emitted by the tick-processing core.

    Attributes:
        kind: ``"spike"``, ``"confluence"`` or ``"trail"``.
        symbol: Instrument identifier, e.g. ``"BTC_USDT"``.
        direction: ``"UP"``/``"DOWN"`` for spikes and confluence,
            ``"long"``/``"short"`` for trailing-stop events.
        magnitude: Fractional size of the move (0.01 = 1 %).
        score: Severity used for ranking (z-score, slope score, or P&L).
        timestamp: Epoch milliseconds of the tick that produced the alert.
        price: Last traded price at that tick.
        details: Kind-specific extras merged into the payload.
    """

    kind: str
    symbol: str
    direction: str
    magnitude: float
    score: float
    timestamp: int
    price: float
    details: dict = field(default_factory=dict)
    source: str = "scanner"

    @property
    def iso_time(self) -> str:
        return datetime.fromtimestamp(
            self.timestamp / 1000.0, tz=timezone.utc
        ).isoformat()

    def to_payload(self) -> dict:
        """JSON-serialisable payload for webhooks, SSE and ``/alerts``."""
        payload = {
            "source": self.source,
            "kind": self.kind,
            "t": self.iso_time,
            "symbol": self.symbol,
            "price": self.price,
            "direction": self.direction,
            "move_pct": round(self.magnitude * 100, 3),
            "z_score": _round_score(self.score),
        }
        payload.update(self.details)
        return payload

    def to_line(self) -> str:
        """One-line human summary used for logs and chat messages."""
        event = self.details.get("event")
        label = f"{self.kind}/{event}" if event else self.kind
        return (
            f"[{label}] {self.symbol} {self.direction} "
            f"{self.magnitude * 100:.3f}% (score {_round_score(self.score)}) "
            f"@ {self.price:g} • {self.iso_time}"
        )


def _round_score(score: Optional[float]) -> Optional[float]:
    if score is None:
        return None
    return round(score, 2)
