"""Tests for spikewatch.config — environment variable loading and validation."""

import pytest

from spikewatch.config import load_config

_ENV_VARS = [
    "RELEASE_TAG", "LOG_LEVEL", "PORT", "CATALOG_BASE_URL",
    "ZERO_FEE_ONLY", "MAX_TAKER_FEE", "ZERO_FEE_WHITELIST", "UNIVERSE_OVERRIDE",
    "FALLBACK_TO_ALL", "UNIVERSE_REFRESH_SEC", "MIN_UNIVERSE_SIZE",
    "HALT_ON_SMALL_UNIVERSE", "FEED_WS_URL", "FEED_PING_SEC",
    "FEED_RECONNECT_MAX_SEC", "STATE_POLICY", "WINDOW_SEC", "MIN_ABS_PCT",
    "Z_MULTIPLIER", "COOLDOWN_SEC", "CONFLUENCE_TIMEFRAMES", "BAR_MODE",
    "BAR_HISTORY", "MA_KIND", "MA_LENGTHS", "MA_SLOPE_LOOKBACK",
    "MA_DEAD_ZONE_PCT", "CONFLUENCE_COOLDOWN_SEC", "CONFLUENCE_MIN_VOLUME_Z",
    "CONFLUENCE_MAX_MA_DISTANCE_PCT", "CONFLUENCE_VOLUME_WINDOW",
    "TRAILING_ENABLED", "TRAIL_START_PCT", "TRAIL_DISTANCE_PCT", "TRAIL_STEP_PCT",
    "TV_WEBHOOK_URL", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID",
    "ALERT_BUFFER_SIZE", "MOVERS_PUSH_SEC", "MOVERS_TOP_N", "MOVERS_MIN_CHANGE_PCT",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure SpikeWatch env vars are cleared between tests."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def no_dotenv(tmp_path):
    # A non-existent env_path keeps load_dotenv away from any real .env file
    return str(tmp_path / "nonexistent.env")


class TestLoadConfig:
    def test_defaults(self, no_dotenv):
        cfg = load_config(env_path=no_dotenv)
        assert cfg.port == 3000
        assert cfg.log_level == "INFO"
        assert cfg.zero_fee_only is False
        assert cfg.zero_fee_whitelist == ()
        assert cfg.spike_window_sec == 5.0
        assert cfg.spike_min_abs_pct == pytest.approx(0.003)
        assert cfg.spike_z_multiplier == 3.0
        assert cfg.spike_cooldown_sec == 20.0
        assert cfg.confluence_timeframes == (60, 180, 900)
        assert cfg.ma_lengths == (5, 10, 30)
        assert cfg.ma_kind == "ema"
        assert cfg.bar_mode == "ticks"
        assert cfg.state_policy == "preserve"
        assert cfg.trailing_enabled is True
        assert cfg.trail_start_pct == pytest.approx(0.003)
        assert cfg.trail_distance_pct == pytest.approx(0.004)
        assert cfg.trail_step_pct == pytest.approx(0.001)
        assert cfg.confluence_min_volume_z is None
        assert cfg.confluence_max_ma_distance_pct is None

    def test_lists_are_trimmed(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("ZERO_FEE_WHITELIST", " BTC_USDT , ,ETH_USDT ")
        monkeypatch.setenv("UNIVERSE_OVERRIDE", "SOL_USDT")
        cfg = load_config(env_path=no_dotenv)
        assert cfg.zero_fee_whitelist == ("BTC_USDT", "ETH_USDT")
        assert cfg.universe_override == ("SOL_USDT",)

    @pytest.mark.parametrize("raw", ["1", "true", "TRUE", "yes"])
    def test_bool_truthy_values(self, monkeypatch, no_dotenv, raw):
        monkeypatch.setenv("ZERO_FEE_ONLY", raw)
        assert load_config(env_path=no_dotenv).zero_fee_only is True

    def test_bool_falsy_value(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("TRAILING_ENABLED", "off")
        assert load_config(env_path=no_dotenv).trailing_enabled is False

    def test_optional_gates(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("CONFLUENCE_MIN_VOLUME_Z", "1.5")
        monkeypatch.setenv("CONFLUENCE_MAX_MA_DISTANCE_PCT", "0.02")
        cfg = load_config(env_path=no_dotenv)
        assert cfg.confluence_min_volume_z == 1.5
        assert cfg.confluence_max_ma_distance_pct == 0.02

    def test_loads_from_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("Z_MULTIPLIER=4\nSTATE_POLICY=reset\n")
        cfg = load_config(env_path=str(env_file))
        assert cfg.spike_z_multiplier == 4.0
        assert cfg.state_policy == "reset"

    def test_derived_mode_with_multiples(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BAR_MODE", "derived")
        monkeypatch.setenv("CONFLUENCE_TIMEFRAMES", "60,300,900")
        cfg = load_config(env_path=no_dotenv)
        assert cfg.bar_mode == "derived"
        assert cfg.confluence_timeframes == (60, 300, 900)

    def test_derived_mode_only_needs_multiples_of_fastest(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BAR_MODE", "derived")
        monkeypatch.setenv("CONFLUENCE_TIMEFRAMES", "60,120,180")
        assert load_config(env_path=no_dotenv).confluence_timeframes == (60, 120, 180)


class TestValidation:
    def test_unparseable_number(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("Z_MULTIPLIER", "lots")
        with pytest.raises(ValueError, match="Z_MULTIPLIER"):
            load_config(env_path=no_dotenv)

    def test_non_positive_window(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("WINDOW_SEC", "0")
        with pytest.raises(ValueError, match="WINDOW_SEC"):
            load_config(env_path=no_dotenv)

    @pytest.mark.parametrize("raw", ["5,10", "10,5,30", "5,5,30", "0,10,30", "5,10,30,60"])
    def test_bad_ma_lengths(self, monkeypatch, no_dotenv, raw):
        monkeypatch.setenv("MA_LENGTHS", raw)
        with pytest.raises(ValueError, match="MA_LENGTHS"):
            load_config(env_path=no_dotenv)

    def test_non_ascending_timeframes(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("CONFLUENCE_TIMEFRAMES", "180,60,900")
        with pytest.raises(ValueError, match="CONFLUENCE_TIMEFRAMES"):
            load_config(env_path=no_dotenv)

    def test_derived_mode_requires_multiples(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("BAR_MODE", "derived")
        monkeypatch.setenv("CONFLUENCE_TIMEFRAMES", "60,90,900")
        with pytest.raises(ValueError, match="multiples"):
            load_config(env_path=no_dotenv)

    def test_ticks_mode_allows_any_timeframes(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("CONFLUENCE_TIMEFRAMES", "60,90,900")
        assert load_config(env_path=no_dotenv).confluence_timeframes == (60, 90, 900)

    @pytest.mark.parametrize("var", ["MA_KIND", "BAR_MODE", "STATE_POLICY"])
    def test_unknown_choice(self, monkeypatch, no_dotenv, var):
        monkeypatch.setenv(var, "bogus")
        with pytest.raises(ValueError, match=f"{var} must be one of"):
            load_config(env_path=no_dotenv)

    def test_slope_lookback_minimum(self, monkeypatch, no_dotenv):
        monkeypatch.setenv("MA_SLOPE_LOOKBACK", "0")
        with pytest.raises(ValueError, match="MA_SLOPE_LOOKBACK"):
            load_config(env_path=no_dotenv)
