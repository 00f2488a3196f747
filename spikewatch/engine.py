"""SpikeWatch — feed dispatcher (per-tick routing).

Every tick from the live feed passes through :meth:`FeedDispatcher.on_tick`,
one at a time, in arrival order:

  universe filter → move tracker → spike detector → trailing stop →
  bar pipeline → MA confluence → alert hub

All per-symbol state lives in the components owned here and is only touched
from the task that runs the feed loop.
"""

import logging
import math
from typing import Optional

from spikewatch.alerts.hub import AlertHub
from spikewatch.config import Config
from spikewatch.models.alert import Alert
from spikewatch.models.market import Bar, Tick
from spikewatch.risk.trailing_stop import TrailEvent, TrailEventType, TrailingStopManager
from spikewatch.signals.bars import BarAggregator, BarRollup
from spikewatch.signals.confluence import ConfluenceEngine, ConfluenceSignal
from spikewatch.signals.movers import MoveTracker
from spikewatch.signals.spike import SpikeDetector, SpikeResult

logger = logging.getLogger("spikewatch")


class FeedDispatcher:
    """Routes ticks to the detection components and publishes alerts.

    Args:
        config: Application configuration.
        hub: Alert fan-out; a private hub is created when omitted.
    """

    def __init__(self, config: Config, hub: Optional[AlertHub] = None) -> None:
        self._config = config
        self.hub = hub if hub is not None else AlertHub(buffer_size=config.alert_buffer_size)

        self.detector = SpikeDetector(
            window_sec=config.spike_window_sec,
            min_abs_pct=config.spike_min_abs_pct,
            z_multiplier=config.spike_z_multiplier,
            cooldown_sec=config.spike_cooldown_sec,
        )
        self.trailing: Optional[TrailingStopManager] = None
        if config.trailing_enabled:
            self.trailing = TrailingStopManager(
                start_pct=config.trail_start_pct,
                distance_pct=config.trail_distance_pct,
                step_pct=config.trail_step_pct,
            )
        self.confluence = ConfluenceEngine(
            timeframes=config.confluence_timeframes,
            lengths=config.ma_lengths,
            kind=config.ma_kind,
            slope_lookback=config.ma_slope_lookback,
            dead_zone_pct=config.ma_dead_zone_pct,
            cooldown_sec=config.confluence_cooldown_sec,
            min_volume_z=config.confluence_min_volume_z,
            max_ma_distance_pct=config.confluence_max_ma_distance_pct,
            volume_window=config.confluence_volume_window,
        )
        self.movers = MoveTracker()

        timeframes = config.confluence_timeframes
        if config.bar_mode == "derived":
            self._aggregators = [BarAggregator(timeframes[0], config.bar_history)]
            self._rollups = [BarRollup(tf, config.bar_history) for tf in timeframes[1:]]
        else:
            self._aggregators = [BarAggregator(tf, config.bar_history) for tf in timeframes]
            self._rollups = []

        self._universe: frozenset[str] = frozenset()
        self.ticks_processed = 0
        self.ticks_dropped = 0
        self.last_tick_ts: Optional[int] = None

    # ── Universe ─────────────────────────────────────────────────────────

    @property
    def universe(self) -> frozenset[str]:
        return self._universe

    @property
    def state_policy(self) -> str:
        return self._config.state_policy

    def set_universe(self, symbols) -> None:
        """Swap in a new symbol set.

        State of departed symbols is always discarded; with the ``reset``
        policy all per-symbol state starts over.
        """
        new_universe = frozenset(symbols)
        if self.state_policy == "reset":
            self.reset_state()
        else:
            for symbol in self._universe - new_universe:
                self._drop_symbol(symbol)
        self._universe = new_universe
        logger.info("Universe in use = %d symbols", len(new_universe))

    def on_reconnect(self) -> None:
        """Called after the feed reconnects."""
        if self.state_policy == "reset":
            self.reset_state()
            logger.info("Feed reconnected — per-symbol state reset")

    def _drop_symbol(self, symbol: str) -> None:
        self.detector.drop(symbol)
        self.confluence.drop(symbol)
        self.movers.drop(symbol)
        if self.trailing is not None:
            self.trailing.drop(symbol)
        for series in (*self._aggregators, *self._rollups):
            series.drop(symbol)

    def reset_state(self) -> None:
        self.detector.reset()
        self.confluence.reset()
        self.movers.reset()
        if self.trailing is not None:
            self.trailing.reset()
        for series in (*self._aggregators, *self._rollups):
            series.reset()

    # ── Alert builders ───────────────────────────────────────────────────

    def _spike_alert(self, tick: Tick, result: SpikeResult) -> Alert:
        details = {"window_sec": self._config.spike_window_sec}
        details.update(
            {
                k: (round(v, 3) if v is not None else None)
                for k, v in self.movers.moves(tick.symbol, tick.timestamp).items()
            }
        )
        return Alert(
            kind="spike",
            symbol=tick.symbol,
            direction=result.direction.value,
            magnitude=result.magnitude,
            score=result.score,
            timestamp=tick.timestamp,
            price=tick.price,
            details=details,
        )

    @staticmethod
    def _trail_alert(event: TrailEvent) -> Alert:
        details = {
            "event": event.type.value,
            "entry_price": event.entry_price,
            "peak_price": event.peak_price,
            "stop_price": event.stop_price,
        }
        if event.type is TrailEventType.EXIT:
            details["pnl_pct"] = round(event.excursion_pct * 100, 3)
        return Alert(
            kind="trail",
            symbol=event.symbol,
            direction=event.side.value,
            magnitude=event.excursion_pct,
            score=event.excursion_pct * 100,
            timestamp=event.timestamp,
            price=event.price,
            details=details,
            source="trailing",
        )

    @staticmethod
    def _confluence_alert(signal: ConfluenceSignal) -> Alert:
        return Alert(
            kind="confluence",
            symbol=signal.symbol,
            direction=signal.direction.value,
            magnitude=signal.ma_distance_pct or 0.0,
            score=signal.score,
            timestamp=signal.timestamp,
            price=signal.price,
            details={
                "timeframes": list(signal.contributing_timeframes),
                "volume_z": signal.volume_z,
            },
            source="confluence",
        )

    # ── Bars ─────────────────────────────────────────────────────────────

    def _closed_bars(self, tick: Tick) -> list[Bar]:
        closed: list[Bar] = []
        for aggregator in self._aggregators:
            bar = aggregator.on_tick(tick.symbol, tick.price, tick.timestamp)
            if bar is not None:
                closed.append(bar)

        if self._rollups and closed:
            # Derived mode: every rollup reads the fastest timeframe's bars,
            # so each only has to be a multiple of that one.
            base = list(closed)
            for rollup in self._rollups:
                for bar in base:
                    closed.extend(rollup.on_bar(bar, now_ts=tick.timestamp))
        return closed

    # ── Tick path ────────────────────────────────────────────────────────

    def on_tick(self, tick: Tick) -> list[Alert]:
        """Process one tick and return the alerts it produced."""
        if (
            not math.isfinite(tick.price)
            or tick.price <= 0
            or tick.symbol not in self._universe
        ):
            self.ticks_dropped += 1
            logger.debug("Dropped tick %s @ %s", tick.symbol, tick.price)
            return []

        self.ticks_processed += 1
        self.last_tick_ts = tick.timestamp
        alerts: list[Alert] = []

        self.movers.push(tick.symbol, tick.price, tick.timestamp)

        result = self.detector.update(tick.symbol, tick.price, tick.timestamp)
        if result.is_spike:
            alerts.append(self._spike_alert(tick, result))

        if self.trailing is not None:
            for event in self.trailing.on_price(tick.symbol, tick.price, tick.timestamp):
                alerts.append(self._trail_alert(event))
            if result.is_spike:
                armed = self.trailing.on_spike(
                    tick.symbol, result.direction, tick.price, tick.timestamp,
                )
                if armed is not None:
                    alerts.append(self._trail_alert(armed))

        for bar in self._closed_bars(tick):
            signal = self.confluence.on_bar_close(
                bar.symbol, bar.timeframe_sec, bar.close, tick.timestamp, volume=bar.volume,
            )
            if signal is not None:
                alerts.append(self._confluence_alert(signal))

        for alert in alerts:
            self.hub.publish(alert)
        return alerts

    def status(self) -> dict:
        return {
            "universe_size": len(self._universe),
            "state_policy": self.state_policy,
            "bar_mode": self._config.bar_mode,
            "ticks_processed": self.ticks_processed,
            "ticks_dropped": self.ticks_dropped,
            "last_tick_ts": self.last_tick_ts,
            "open_trails": len(self.trailing.positions()) if self.trailing else 0,
            "alerts_published": self.hub.published_count,
        }
