"""Shared test helpers."""

import dataclasses

import pytest

from spikewatch.config import Config

_BASE_CONFIG = Config(
    release_tag="spikewatch-test",
    log_level="INFO",
    port=3000,
    catalog_base_url="https://contract.mexc.com",
    zero_fee_only=False,
    max_taker_fee=0.0,
    zero_fee_whitelist=(),
    universe_override=(),
    fallback_to_all=False,
    universe_refresh_sec=600,
    min_universe_size=1,
    halt_on_small_universe=False,
    feed_ws_url="wss://contract.mexc.com/edge",
    feed_ping_sec=15.0,
    feed_reconnect_max_sec=30.0,
    state_policy="preserve",
    spike_window_sec=5.0,
    spike_min_abs_pct=0.003,
    spike_z_multiplier=3.0,
    spike_cooldown_sec=20.0,
    confluence_timeframes=(60, 180, 900),
    bar_mode="ticks",
    bar_history=200,
    ma_kind="ema",
    ma_lengths=(5, 10, 30),
    ma_slope_lookback=3,
    ma_dead_zone_pct=0.0002,
    confluence_cooldown_sec=900.0,
    confluence_min_volume_z=None,
    confluence_max_ma_distance_pct=None,
    confluence_volume_window=20,
    trailing_enabled=True,
    trail_start_pct=0.003,
    trail_distance_pct=0.004,
    trail_step_pct=0.001,
    webhook_url="",
    telegram_bot_token="",
    telegram_chat_id="",
    alert_buffer_size=500,
    movers_push_sec=2.0,
    movers_top_n=80,
    movers_min_change_pct=0.02,
)


def _make_config(**overrides) -> Config:
    return dataclasses.replace(_BASE_CONFIG, **overrides)


@pytest.fixture
def make_config():
    """Factory for a ``Config`` with test defaults and keyword overrides."""
    return _make_config
