"""Alert hub — recent-alert buffer, live subscribers, and sink fan-out.

``publish`` is synchronous so the tick path never awaits I/O: subscribers
get a ``put_nowait`` and sinks run as background tasks.
"""

import asyncio
import logging
from collections import deque
from typing import Iterable, Optional

from spikewatch.alerts.sinks import AlertSink
from spikewatch.models.alert import Alert

logger = logging.getLogger("spikewatch.alerts")


class AlertHub:
    """Single fan-out point for alerts and live updates.

    Args:
        sinks: Delivery channels; disabled ones are skipped.
        buffer_size: Number of recent alerts kept for ``/alerts``.
        subscriber_queue_size: Per-subscriber backlog before messages drop.
    """

    def __init__(
        self,
        sinks: Iterable[AlertSink] = (),
        buffer_size: int = 500,
        subscriber_queue_size: int = 1000,
    ) -> None:
        self._sinks = [s for s in sinks if s.enabled]
        self._recent: deque[dict] = deque(maxlen=buffer_size)
        self._subscribers: set[asyncio.Queue] = set()
        self._queue_size = subscriber_queue_size
        self._pending: set[asyncio.Task] = set()
        self.published_count = 0

    # ── Subscribers ──────────────────────────────────────────────────────

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def broadcast(self, payload: dict) -> None:
        """Push a payload to live subscribers without storing it."""
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(payload)
            except asyncio.QueueFull:
                logger.debug("Subscriber backlog full — dropping message")

    # ── Alerts ───────────────────────────────────────────────────────────

    def publish(self, alert: Alert) -> None:
        """Record, broadcast, and schedule delivery of one alert."""
        payload = alert.to_payload()
        self._recent.appendleft(payload)
        self.published_count += 1
        logger.info("[ALERT] %s", alert.to_line())
        self.broadcast(payload)
        self._dispatch(alert)

    def _dispatch(self, alert: Alert) -> None:
        if not self._sinks:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop — skipping sink delivery")
            return
        for sink in self._sinks:
            task = loop.create_task(self._deliver(sink, alert))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _deliver(sink: AlertSink, alert: Alert) -> None:
        try:
            await sink.send(alert)
        except Exception as exc:
            logger.warning("[%s] unexpected delivery error: %s", sink.name, exc)

    def recent(self, limit: Optional[int] = None) -> list[dict]:
        """Recent alert payloads, newest first."""
        items = list(self._recent)
        return items if limit is None else items[:limit]

    async def aclose(self, timeout: float = 5.0) -> None:
        """Give in-flight deliveries *timeout* seconds, then cancel the rest."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.info("Abandoned %d alert deliveries on shutdown", len(pending))
