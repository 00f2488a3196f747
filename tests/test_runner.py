"""Tests for spikewatch.runner — startup, reconnects, refresh, and the guardrail."""

import asyncio

import pytest

from spikewatch.engine import FeedDispatcher
from spikewatch.models.market import Tick
from spikewatch.runner import MonitorRunner
from spikewatch.universe import UniverseGuardrailError, UniverseReport


# ── Fakes ────────────────────────────────────────────────────────────────


class FakeBuilder:
    """Returns canned universes in order, repeating the last one."""

    def __init__(self, *results, degraded=()):
        self._results = [frozenset(r) for r in results]
        self._degraded = list(degraded)
        self.calls = 0
        self.last_report = None

    async def build(self):
        index = min(self.calls, len(self._results) - 1)
        symbols = self._results[index]
        degraded = self._degraded[index] if index < len(self._degraded) else False
        self.calls += 1
        self.last_report = UniverseReport(
            symbols=symbols,
            source_counts={"detail": len(symbols)},
            degraded=degraded,
        )
        return symbols


class FakeFeed:
    """Scripted feed: each ``stream()`` call plays the next session.

    A session is a list of tick batches, an exception to raise, or ``None``
    to block until closed.  After the last session the runner is stopped.
    """

    def __init__(self, *sessions, close_error=None):
        self._sessions = list(sessions)
        self._close_error = close_error
        self.runner = None
        self.closed = 0
        self.connected = False
        self._close_event = asyncio.Event()

    async def stream(self):
        if not self._sessions:
            self.runner.stop()
            return
        session = self._sessions.pop(0)
        if isinstance(session, BaseException):
            raise session
        if session is None:
            await self._close_event.wait()
            return
        for batch in session:
            yield batch
        if not self._sessions:
            self.runner.stop()

    async def close(self):
        self.closed += 1
        self._close_event.set()
        if self._close_error is not None:
            raise self._close_error


def _batch(*pairs, ts=0):
    return [Tick(symbol, price, ts) for symbol, price in pairs]


def _runner(make_config, builder, feed, **overrides):
    params = dict(
        universe_refresh_sec=3600,
        movers_push_sec=3600.0,
        feed_reconnect_max_sec=0.01,
    )
    params.update(overrides)
    config = make_config(**params)
    dispatcher = FeedDispatcher(config)
    runner = MonitorRunner(config, dispatcher, builder, feed)
    feed.runner = runner
    return runner, dispatcher


# ── Tests ────────────────────────────────────────────────────────────────


class TestStartup:
    @pytest.mark.asyncio
    async def test_ticks_reach_dispatcher(self, make_config):
        feed = FakeFeed([
            _batch(("A_USDT", 100.0), ("Z_USDT", 1.0)),
            _batch(("A_USDT", 100.1), ts=1000),
        ])
        runner, dispatcher = _runner(make_config, FakeBuilder({"A_USDT"}), feed)

        await asyncio.wait_for(runner.run(), timeout=5)

        assert dispatcher.universe == frozenset({"A_USDT"})
        assert dispatcher.ticks_processed == 2
        assert dispatcher.ticks_dropped == 1
        assert not runner.running
        assert feed.closed == 1

    @pytest.mark.asyncio
    async def test_empty_universe_retried(self, make_config):
        builder = FakeBuilder(set(), set(), {"A_USDT"})
        feed = FakeFeed([_batch(("A_USDT", 100.0))])
        runner, dispatcher = _runner(make_config, builder, feed, universe_refresh_sec=0)

        await asyncio.wait_for(runner.run(), timeout=5)

        assert builder.calls >= 3
        assert dispatcher.ticks_processed == 1

    @pytest.mark.asyncio
    async def test_guardrail_halts_startup(self, make_config):
        builder = FakeBuilder({"A_USDT"}, degraded=[True])
        runner, _ = _runner(
            make_config, builder, FakeFeed(),
            halt_on_small_universe=True, min_universe_size=5,
        )

        with pytest.raises(UniverseGuardrailError):
            await asyncio.wait_for(runner.run(), timeout=5)
        assert not runner.running

    @pytest.mark.asyncio
    async def test_degraded_universe_tolerated_without_halt(self, make_config):
        builder = FakeBuilder({"A_USDT"}, degraded=[True])
        feed = FakeFeed([_batch(("A_USDT", 100.0))])
        runner, dispatcher = _runner(make_config, builder, feed, min_universe_size=5)

        await asyncio.wait_for(runner.run(), timeout=5)

        assert dispatcher.ticks_processed == 1


class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnects_after_feed_error(self, make_config):
        feed = FakeFeed(
            OSError("connection reset"),
            [_batch(("A_USDT", 100.0))],
        )
        runner, dispatcher = _runner(
            make_config, FakeBuilder({"A_USDT"}), feed, state_policy="reset",
        )

        await asyncio.wait_for(runner.run(), timeout=5)

        assert runner.reconnects == 1
        assert dispatcher.ticks_processed == 1

    @pytest.mark.asyncio
    async def test_reconnects_after_connect_timeout(self, make_config):
        feed = FakeFeed(
            asyncio.TimeoutError(),
            [_batch(("A_USDT", 100.0))],
        )
        runner, dispatcher = _runner(make_config, FakeBuilder({"A_USDT"}), feed)

        await asyncio.wait_for(runner.run(), timeout=5)

        assert runner.reconnects == 1
        assert dispatcher.ticks_processed == 1

    @pytest.mark.asyncio
    async def test_failing_tick_skipped(self, make_config, monkeypatch):
        feed = FakeFeed([
            _batch(("A_USDT", 100.0), ("B_USDT", 50.0), ("A_USDT", 100.1), ts=1000),
        ])
        runner, dispatcher = _runner(make_config, FakeBuilder({"A_USDT", "B_USDT"}), feed)

        handle_tick = dispatcher.on_tick

        def _on_tick(tick):
            if tick.symbol == "B_USDT":
                raise RuntimeError("bad tick")
            return handle_tick(tick)

        monkeypatch.setattr(dispatcher, "on_tick", _on_tick)

        await asyncio.wait_for(runner.run(), timeout=5)

        assert dispatcher.ticks_processed == 2
        assert runner.reconnects == 0


class TestShutdown:
    @pytest.mark.asyncio
    async def test_feed_close_awaited(self, make_config):
        feed = FakeFeed(None)
        runner, _ = _runner(make_config, FakeBuilder({"A_USDT"}), feed)

        task = asyncio.create_task(runner.run())
        while not runner._tasks:
            await asyncio.sleep(0.001)
        runner.stop()
        await asyncio.wait_for(task, timeout=5)

        assert feed.closed == 1
        assert runner._close_task is None

    @pytest.mark.asyncio
    async def test_feed_close_error_logged_not_raised(self, make_config):
        feed = FakeFeed([_batch(("A_USDT", 100.0))], close_error=OSError("already closed"))
        runner, dispatcher = _runner(make_config, FakeBuilder({"A_USDT"}), feed)

        await asyncio.wait_for(runner.run(), timeout=5)

        assert feed.closed == 1
        assert dispatcher.ticks_processed == 1


class TestRefresh:
    @pytest.mark.asyncio
    async def test_empty_refresh_keeps_previous_universe(self, make_config):
        builder = FakeBuilder({"A_USDT"}, set())
        feed = FakeFeed(None)
        runner, dispatcher = _runner(make_config, builder, feed, universe_refresh_sec=0)

        task = asyncio.create_task(runner.run())
        while runner.refreshes < 2:
            await asyncio.sleep(0.001)
        runner.stop()
        await asyncio.wait_for(task, timeout=5)

        assert dispatcher.universe == frozenset({"A_USDT"})

    @pytest.mark.asyncio
    async def test_refresh_swaps_universe(self, make_config):
        builder = FakeBuilder({"A_USDT"}, {"B_USDT"})
        feed = FakeFeed(None)
        runner, dispatcher = _runner(make_config, builder, feed, universe_refresh_sec=0)

        task = asyncio.create_task(runner.run())
        while runner.refreshes < 1:
            await asyncio.sleep(0.001)
        runner.stop()
        await asyncio.wait_for(task, timeout=5)

        assert dispatcher.universe == frozenset({"B_USDT"})

    @pytest.mark.asyncio
    async def test_guardrail_on_refresh_stops_runner(self, make_config):
        builder = FakeBuilder({"A_USDT", "B_USDT"}, {"A_USDT"}, degraded=[False, True])
        feed = FakeFeed(None)
        runner, _ = _runner(
            make_config, builder, feed,
            universe_refresh_sec=0, halt_on_small_universe=True, min_universe_size=2,
        )

        with pytest.raises(UniverseGuardrailError):
            await asyncio.wait_for(runner.run(), timeout=5)


class TestStatus:
    @pytest.mark.asyncio
    async def test_status_before_start(self, make_config):
        runner, _ = _runner(make_config, FakeBuilder({"A_USDT"}), FakeFeed())
        runner.stop()  # no-op when not running

        status = runner.get_status()
        assert status["running"] is False
        assert status["release_tag"] == "spikewatch-test"
        assert status["universe_size"] == 0
        assert status["universe_sources"] == {}
