"""MEXC contract ticker feed over WebSocket.

Subscribes to the all-symbol ``push.tickers`` channel and yields batches of
``Tick`` objects.  A heartbeat task keeps the connection alive; reconnection
is the caller's job so it can decide what happens to per-symbol state.
"""

import asyncio
import json
import logging
import math
import time
from contextlib import suppress
from typing import AsyncIterator, Optional

import websockets

from spikewatch.models.market import Tick

logger = logging.getLogger("spikewatch.feed")

_SUBSCRIBE_MSG = {"method": "sub.tickers", "param": {}}
_PING_MSG = {"method": "ping"}
_TICKERS_CHANNEL = "push.tickers"


def parse_tickers_message(raw: str | bytes, now_ms: Optional[int] = None) -> list[Tick]:
    """Parse one feed message into ticks.

    Anything that is not a well-formed ``push.tickers`` frame (pongs,
    subscription acks, malformed JSON) yields an empty list.  Rows with a
    missing symbol or a non-numeric or non-finite ``lastPrice`` are skipped;
    other price sanity is left to the dispatcher.
    """
    try:
        msg = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(msg, dict) or msg.get("channel") != _TICKERS_CHANNEL:
        return []
    rows = msg.get("data")
    if not isinstance(rows, list):
        return []

    try:
        ts = int(msg.get("ts") or 0)
    except (TypeError, ValueError):
        ts = 0
    if ts <= 0:
        ts = now_ms if now_ms is not None else int(time.time() * 1000)

    ticks: list[Tick] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        symbol = row.get("symbol")
        if not symbol:
            continue
        try:
            price = float(row.get("lastPrice"))
        except (TypeError, ValueError):
            continue
        if not math.isfinite(price):
            continue
        ticks.append(Tick(symbol=str(symbol), price=price, timestamp=ts))
    return ticks


class MexcTickerFeed:
    """One live connection to the MEXC contract ticker stream.

    Args:
        url: WebSocket endpoint, e.g. ``"wss://contract.mexc.com/edge"``.
        ping_interval: Seconds between application-level pings.
    """

    def __init__(self, url: str, ping_interval: float = 15.0) -> None:
        self._url = url
        self._ping_interval = ping_interval
        self._ws = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def stream(self) -> AsyncIterator[list[Tick]]:
        """Connect, subscribe, and yield tick batches until the socket closes.

        Raises ``websockets`` / ``OSError`` exceptions on abnormal
        disconnects; returns normally when the server or :meth:`close`
        ends the connection cleanly.
        """
        async with websockets.connect(
            self._url, ping_interval=None, close_timeout=5,
        ) as ws:
            self._ws = ws
            logger.info("Connected to %s", self._url)
            await ws.send(json.dumps(_SUBSCRIBE_MSG))
            heartbeat = asyncio.create_task(self._heartbeat(ws))
            try:
                async for raw in ws:
                    ticks = parse_tickers_message(raw)
                    if ticks:
                        yield ticks
            finally:
                heartbeat.cancel()
                with suppress(asyncio.CancelledError):
                    await heartbeat
                self._ws = None
                logger.info("Disconnected from %s", self._url)

    async def close(self) -> None:
        """Close the live connection, ending :meth:`stream`."""
        ws = self._ws
        if ws is not None:
            await ws.close()

    async def _heartbeat(self, ws) -> None:
        while True:
            await asyncio.sleep(self._ping_interval)
            try:
                await ws.send(json.dumps(_PING_MSG))
            except websockets.ConnectionClosed:
                return
