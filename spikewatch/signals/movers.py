"""Rolling 1m/5m/15m percentage moves per symbol.

Feeds the live view: spike alerts carry the multi-window moves, and a
periodic broadcast pushes the top movers whose 1-minute move changed
noticeably since the last push.
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

WINDOWS_MS = {
    "move_1m": 60_000,
    "move_5m": 5 * 60_000,
    "move_15m": 15 * 60_000,
}
_RETENTION_MS = WINDOWS_MS["move_15m"] + 2_000


@dataclass
class _Book:
    price: float
    points: deque  # (ts, price), oldest first
    last_pushed_m1: Optional[float] = None


def _pct_since(points: deque, now_ms: int, window_ms: int) -> Optional[float]:
    """Percent move from the earliest point inside the window to the latest."""
    if not points:
        return None
    start = now_ms - window_ms
    base = next((p for t, p in points if t >= start), None)
    last = points[-1][1]
    if base is None or base <= 0:
        return None
    return (last - base) / base * 100.0


class MoveTracker:
    """Per-symbol rolling price window for multi-window move figures."""

    def __init__(self) -> None:
        self._books: dict[str, _Book] = {}

    def push(self, symbol: str, price: float, timestamp: int) -> None:
        book = self._books.get(symbol)
        if book is None:
            book = _Book(price=price, points=deque())
            self._books[symbol] = book
        book.price = price
        book.points.append((timestamp, price))
        cutoff = timestamp - _RETENTION_MS
        while book.points and book.points[0][0] < cutoff:
            book.points.popleft()

    def moves(self, symbol: str, now_ms: int) -> dict[str, Optional[float]]:
        """``{"move_1m": pct, "move_5m": pct, "move_15m": pct}`` (``None`` if unknown)."""
        book = self._books.get(symbol)
        if book is None:
            return {key: None for key in WINDOWS_MS}
        return {
            key: _pct_since(book.points, now_ms, window)
            for key, window in WINDOWS_MS.items()
        }

    def top_movers(
        self, now_ms: int, top_n: int = 80, min_change_pct: float = 0.02,
    ) -> list[dict]:
        """Update rows for the biggest movers whose 1m move changed enough.

        Ranked by |1m| then |5m|.  Marks returned rows as pushed.
        """
        rows = []
        for symbol, book in self._books.items():
            mv = self.moves(symbol, now_ms)
            if all(v is None for v in mv.values()):
                continue
            rows.append((symbol, book, mv))

        def _rank(item):
            mv = item[2]
            m1 = abs(mv["move_1m"]) if mv["move_1m"] is not None else -1.0
            m5 = abs(mv["move_5m"]) if mv["move_5m"] is not None else -1.0
            return (m1, m5)

        rows.sort(key=_rank, reverse=True)

        updates: list[dict] = []
        t = datetime.fromtimestamp(now_ms / 1000.0, tz=timezone.utc).isoformat()
        for symbol, book, mv in rows[:top_n]:
            m1 = mv["move_1m"]
            if m1 is None:
                continue
            if (
                book.last_pushed_m1 is not None
                and abs(m1 - book.last_pushed_m1) < min_change_pct
            ):
                continue
            book.last_pushed_m1 = m1
            updates.append({
                "source": "update",
                "is_update": True,
                "t": t,
                "symbol": symbol,
                "price": book.price,
                "direction": "UP" if m1 >= 0 else "DOWN",
                **{k: (round(v, 3) if v is not None else None) for k, v in mv.items()},
            })
        return updates

    def drop(self, symbol: str) -> None:
        self._books.pop(symbol, None)

    def reset(self) -> None:
        self._books.clear()
