"""Internal API routers — /alerts, /stream, /status, /universe, /trailing.

No business logic. Reads from the hub, dispatcher and runner injected at
startup via :func:`configure_routers`.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

logger = logging.getLogger("spikewatch")
router = APIRouter()

SSE_HEARTBEAT_SEC = 15.0

# ── Shared state (set during app startup) ────────────────────────────────

_hub = None  # AlertHub
_dispatcher = None  # FeedDispatcher
_runner = None  # MonitorRunner


def configure_routers(hub=None, dispatcher=None, runner=None) -> None:
    """Inject dependencies from the application startup.

    Args:
        hub: ``AlertHub`` serving recent alerts and live subscriptions.
        dispatcher: ``FeedDispatcher`` for universe and trailing state.
        runner: ``MonitorRunner`` for lifecycle status.
    """
    global _hub, _dispatcher, _runner  # noqa: PLW0603
    _hub = hub
    _dispatcher = dispatcher
    _runner = runner


async def sse_events(
    queue: asyncio.Queue,
    heartbeat_sec: float = SSE_HEARTBEAT_SEC,
) -> AsyncIterator[str]:
    """Render queued payloads as Server-Sent Events.

    Starts with an ``:ok`` comment, then one ``data:`` frame per payload and
    an ``:hb`` comment whenever the queue stays quiet for *heartbeat_sec*.
    """
    yield ":ok\n\n"
    while True:
        try:
            payload = await asyncio.wait_for(queue.get(), timeout=heartbeat_sec)
        except asyncio.TimeoutError:
            yield ":hb\n\n"
            continue
        yield f"data: {json.dumps(payload)}\n\n"


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/alerts")
async def get_alerts(limit: int = Query(default=500, ge=1, le=5000)):
    """Return recent alerts, newest first."""
    if _hub is None:
        return []
    return _hub.recent(limit)


@router.get("/stream")
async def stream_alerts():
    """Live alerts and mover updates as Server-Sent Events."""
    if _hub is None:
        return {"error": "Alert stream not configured"}
    queue = _hub.subscribe()

    async def _events():
        try:
            async for chunk in sse_events(queue):
                yield chunk
        finally:
            _hub.unsubscribe(queue)

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"},
    )


@router.get("/status")
async def get_status():
    """Monitor status: universe, counters, feed health."""
    if _runner is not None:
        return _runner.get_status()
    if _dispatcher is not None:
        return _dispatcher.status()
    return {"running": False}


@router.get("/universe")
async def get_universe():
    """Symbols currently monitored, with the last build diagnostics."""
    if _dispatcher is None:
        return {"symbols": [], "size": 0}
    report = _runner.universe_report if _runner is not None else None
    return {
        "symbols": sorted(_dispatcher.universe),
        "size": len(_dispatcher.universe),
        "degraded": report.degraded if report else None,
        "sources": report.source_counts if report else {},
    }


@router.get("/trailing")
async def get_trailing(symbol: Optional[str] = Query(default=None)):
    """Open advisory trailing-stop positions."""
    if _dispatcher is None or _dispatcher.trailing is None:
        return {"positions": []}
    positions = [
        p.to_dict()
        for p in _dispatcher.trailing.positions()
        if symbol is None or p.symbol == symbol
    ]
    return {"positions": positions}
