"""MonitorRunner — lifecycle of the live monitor.

Owns the long-running tasks around the dispatcher:

  - the feed loop (reconnects with backoff on every disconnect),
  - the universe refresh loop (atomic set replacement),
  - the live-movers broadcast loop.

All three run as ``asyncio`` tasks on one event loop, so the dispatcher's
per-symbol maps are never touched concurrently.
"""

import asyncio
import logging
import time
from contextlib import aclosing
from typing import Optional

import websockets

from spikewatch.config import Config
from spikewatch.engine import FeedDispatcher
from spikewatch.universe import UniverseBuilder, UniverseGuardrailError, UniverseReport

logger = logging.getLogger("spikewatch.runner")

_RECONNECT_BASE_DELAY = 1.0  # seconds; doubles each failed attempt


class MonitorRunner:
    """Starts, supervises and stops the monitor.

    Args:
        config: Application configuration.
        dispatcher: The per-tick router.
        builder: Universe builder.
        feed: ``MexcTickerFeed`` (or duck-type with ``stream()``/``close()``).
    """

    def __init__(
        self,
        config: Config,
        dispatcher: FeedDispatcher,
        builder: UniverseBuilder,
        feed,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._builder = builder
        self._feed = feed
        self._running = False
        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._close_task: Optional[asyncio.Task] = None
        self.started_at: Optional[float] = None
        self.reconnects = 0
        self.refreshes = 0

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._running

    @property
    def universe_report(self) -> Optional[UniverseReport]:
        return self._builder.last_report

    async def _sleep(self, seconds: float) -> None:
        """Sleep that wakes early when :meth:`stop` is called."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def _check_guardrail(self) -> None:
        report = self._builder.last_report
        if report is not None and report.degraded and self._config.halt_on_small_universe:
            raise UniverseGuardrailError(
                f"Universe has {report.size} symbol(s), below the minimum of "
                f"{self._config.min_universe_size}"
            )

    async def build_initial_universe(self) -> frozenset[str]:
        """Build until a non-empty universe is found (or the runner stops).

        Raises ``UniverseGuardrailError`` when the universe is below the
        configured minimum and halting is enabled.
        """
        while self._running:
            symbols = await self._builder.build()
            self._check_guardrail()
            if symbols:
                return symbols
            logger.warning(
                "Universe is empty — retrying in %ds", self._config.universe_refresh_sec,
            )
            await self._sleep(self._config.universe_refresh_sec)
        return frozenset()

    async def run(self) -> None:
        """Run until :meth:`stop` is called or the guardrail trips."""
        self._running = True
        self._stop_event.clear()
        self.started_at = time.time()
        logger.info(
            "Starting monitor: window=%ss z=%s floor=%s cooldown=%ss policy=%s",
            self._config.spike_window_sec,
            self._config.spike_z_multiplier,
            self._config.spike_min_abs_pct,
            self._config.spike_cooldown_sec,
            self._config.state_policy,
        )

        try:
            symbols = await self.build_initial_universe()
            if not self._running:
                return
            self._dispatcher.set_universe(symbols)

            self._tasks = [
                asyncio.create_task(self._feed_loop(), name="feed"),
                asyncio.create_task(self._refresh_loop(), name="universe-refresh"),
                asyncio.create_task(self._movers_loop(), name="movers"),
            ]
            done, _ = await asyncio.wait(self._tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        finally:
            self._running = False
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []
            if self._close_task is not None:
                try:
                    await self._close_task
                except Exception as exc:
                    logger.error("Feed close failed: %s", exc)
                self._close_task = None
            await self._dispatcher.hub.aclose()
            logger.info("Monitor stopped.")

    def stop(self) -> None:
        """Signal every loop to stop and close the feed connection."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        self._close_task = asyncio.get_running_loop().create_task(self._feed.close())
        logger.info("Stop signal received — shutting down.")

    # ── Loops ────────────────────────────────────────────────────────────

    async def _feed_loop(self) -> None:
        attempt = 0
        while self._running:
            try:
                async with aclosing(self._feed.stream()) as stream:
                    async for batch in stream:
                        attempt = 0
                        for tick in batch:
                            try:
                                self._dispatcher.on_tick(tick)
                            except Exception as exc:
                                logger.error("Tick %s skipped: %s", tick.symbol, exc)
                        if not self._running:
                            break
            except (websockets.WebSocketException, OSError, asyncio.TimeoutError) as exc:
                logger.warning("Feed error: %r", exc)

            if not self._running:
                break

            delay = min(
                _RECONNECT_BASE_DELAY * (2 ** attempt),
                self._config.feed_reconnect_max_sec,
            )
            attempt += 1
            self.reconnects += 1
            logger.info("Feed disconnected — reconnecting in %.1fs", delay)
            await self._sleep(delay)
            self._dispatcher.on_reconnect()

    async def _refresh_loop(self) -> None:
        while self._running:
            await self._sleep(self._config.universe_refresh_sec)
            if not self._running:
                break
            symbols = await self._builder.build()
            self._check_guardrail()
            self.refreshes += 1
            if not symbols:
                logger.warning("Universe refresh returned nothing — keeping previous set")
                continue
            self._dispatcher.set_universe(symbols)

    async def _movers_loop(self) -> None:
        while self._running:
            await self._sleep(self._config.movers_push_sec)
            if not self._running:
                break
            updates = self._dispatcher.movers.top_movers(
                int(time.time() * 1000),
                top_n=self._config.movers_top_n,
                min_change_pct=self._config.movers_min_change_pct,
            )
            for row in updates:
                self._dispatcher.hub.broadcast(row)
            if updates:
                logger.debug("[push] updates sent=%d", len(updates))

    def get_status(self) -> dict:
        report = self._builder.last_report
        return {
            "running": self._running,
            "release_tag": self._config.release_tag,
            "uptime_seconds": (time.time() - self.started_at) if self.started_at else 0,
            "feed_connected": getattr(self._feed, "connected", False),
            "reconnects": self.reconnects,
            "universe_refreshes": self.refreshes,
            "universe_degraded": report.degraded if report else None,
            "universe_sources": report.source_counts if report else {},
            **self._dispatcher.status(),
        }
