"""SpikeWatch — application configuration.

Loads .env variables into a typed config object.
Validates tunables on startup; nothing is reloaded at runtime.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


_TRUE_VALUES = {"1", "true", "yes"}
_MA_KINDS = ("ema", "sma")
_BAR_MODES = ("ticks", "derived")
_STATE_POLICIES = ("preserve", "reset")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    release_tag: str
    log_level: str
    port: int

    # Universe
    catalog_base_url: str
    zero_fee_only: bool
    max_taker_fee: float
    zero_fee_whitelist: tuple[str, ...]
    universe_override: tuple[str, ...]
    fallback_to_all: bool
    universe_refresh_sec: int
    min_universe_size: int
    halt_on_small_universe: bool

    # Feed
    feed_ws_url: str
    feed_ping_sec: float
    feed_reconnect_max_sec: float
    state_policy: str  # "preserve" or "reset"

    # Spike detector
    spike_window_sec: float
    spike_min_abs_pct: float
    spike_z_multiplier: float
    spike_cooldown_sec: float

    # Bars + MA confluence
    confluence_timeframes: tuple[int, ...]  # seconds, fastest first
    bar_mode: str  # "ticks" or "derived"
    bar_history: int
    ma_kind: str  # "ema" or "sma"
    ma_lengths: tuple[int, int, int]
    ma_slope_lookback: int
    ma_dead_zone_pct: float
    confluence_cooldown_sec: float
    confluence_min_volume_z: Optional[float]
    confluence_max_ma_distance_pct: Optional[float]
    confluence_volume_window: int

    # Trailing stop
    trailing_enabled: bool
    trail_start_pct: float
    trail_distance_pct: float
    trail_step_pct: float

    # Delivery
    webhook_url: str
    telegram_bot_token: str
    telegram_chat_id: str
    alert_buffer_size: int

    # Live movers
    movers_push_sec: float
    movers_top_n: int
    movers_min_change_pct: float


# ── Parsing helpers ──────────────────────────────────────────────────────


def _env_str(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_optional_float(name: str) -> Optional[float]:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return _env_float(name, 0.0)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_list(name: str) -> tuple[str, ...]:
    """Comma-separated list with whitespace trimmed and empties dropped."""
    raw = os.environ.get(name, "")
    return tuple(s.strip() for s in raw.split(",") if s.strip())


def _env_int_list(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    items = _env_list(name)
    if not items:
        return default
    try:
        return tuple(int(s) for s in items)
    except ValueError:
        raise ValueError(
            f"{name} must be a comma-separated list of integers, got "
            f"{os.environ.get(name)!r}"
        ) from None


def _env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = _env_str(name, default).lower() or default
    if value not in choices:
        raise ValueError(
            f"{name} must be one of {', '.join(choices)}, got {value!r}"
        )
    return value


def _is_strictly_ascending(values: tuple[int, ...]) -> bool:
    return all(a < b for a, b in zip(values, values[1:]))


# ── Loader ───────────────────────────────────────────────────────────────


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the offending variable when
    a value cannot be parsed or violates a structural constraint.
    """
    load_dotenv(dotenv_path=env_path)

    spike_window_sec = _env_float("WINDOW_SEC", 5.0)
    if spike_window_sec <= 0:
        raise ValueError(f"WINDOW_SEC must be positive, got {spike_window_sec}")

    ma_lengths = _env_int_list("MA_LENGTHS", (5, 10, 30))
    if (
        len(ma_lengths) != 3
        or ma_lengths[0] <= 0
        or not _is_strictly_ascending(ma_lengths)
    ):
        raise ValueError(
            "MA_LENGTHS must be three strictly ascending positive integers, "
            f"got {ma_lengths}"
        )

    timeframes = _env_int_list("CONFLUENCE_TIMEFRAMES", (60, 180, 900))
    if not timeframes or timeframes[0] <= 0 or not _is_strictly_ascending(timeframes):
        raise ValueError(
            "CONFLUENCE_TIMEFRAMES must be strictly ascending positive "
            f"integers, got {timeframes}"
        )

    bar_mode = _env_choice("BAR_MODE", "ticks", _BAR_MODES)
    if bar_mode == "derived" and any(tf % timeframes[0] for tf in timeframes):
        raise ValueError(
            "CONFLUENCE_TIMEFRAMES must be multiples of the fastest timeframe "
            f"when BAR_MODE=derived, got {timeframes}"
        )

    slope_lookback = _env_int("MA_SLOPE_LOOKBACK", 3)
    if slope_lookback < 1:
        raise ValueError(
            f"MA_SLOPE_LOOKBACK must be at least 1, got {slope_lookback}"
        )

    return Config(
        release_tag=_env_str("RELEASE_TAG", "spikewatch-dev"),
        log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        port=_env_int("PORT", 3000),
        catalog_base_url=_env_str("CATALOG_BASE_URL", "https://contract.mexc.com"),
        zero_fee_only=_env_bool("ZERO_FEE_ONLY"),
        max_taker_fee=_env_float("MAX_TAKER_FEE", 0.0),
        zero_fee_whitelist=_env_list("ZERO_FEE_WHITELIST"),
        universe_override=_env_list("UNIVERSE_OVERRIDE"),
        fallback_to_all=_env_bool("FALLBACK_TO_ALL"),
        universe_refresh_sec=_env_int("UNIVERSE_REFRESH_SEC", 600),
        min_universe_size=_env_int("MIN_UNIVERSE_SIZE", 1),
        halt_on_small_universe=_env_bool("HALT_ON_SMALL_UNIVERSE"),
        feed_ws_url=_env_str("FEED_WS_URL", "wss://contract.mexc.com/edge"),
        feed_ping_sec=_env_float("FEED_PING_SEC", 15.0),
        feed_reconnect_max_sec=_env_float("FEED_RECONNECT_MAX_SEC", 30.0),
        state_policy=_env_choice("STATE_POLICY", "preserve", _STATE_POLICIES),
        spike_window_sec=spike_window_sec,
        spike_min_abs_pct=_env_float("MIN_ABS_PCT", 0.003),
        spike_z_multiplier=_env_float("Z_MULTIPLIER", 3.0),
        spike_cooldown_sec=_env_float("COOLDOWN_SEC", 20.0),
        confluence_timeframes=timeframes,
        bar_mode=bar_mode,
        bar_history=_env_int("BAR_HISTORY", 200),
        ma_kind=_env_choice("MA_KIND", "ema", _MA_KINDS),
        ma_lengths=ma_lengths,  # type: ignore[arg-type]
        ma_slope_lookback=slope_lookback,
        ma_dead_zone_pct=_env_float("MA_DEAD_ZONE_PCT", 0.0002),
        confluence_cooldown_sec=_env_float("CONFLUENCE_COOLDOWN_SEC", 900.0),
        confluence_min_volume_z=_env_optional_float("CONFLUENCE_MIN_VOLUME_Z"),
        confluence_max_ma_distance_pct=_env_optional_float(
            "CONFLUENCE_MAX_MA_DISTANCE_PCT"
        ),
        confluence_volume_window=_env_int("CONFLUENCE_VOLUME_WINDOW", 20),
        trailing_enabled=_env_bool("TRAILING_ENABLED", True),
        trail_start_pct=_env_float("TRAIL_START_PCT", 0.003),
        trail_distance_pct=_env_float("TRAIL_DISTANCE_PCT", 0.004),
        trail_step_pct=_env_float("TRAIL_STEP_PCT", 0.001),
        webhook_url=_env_str("TV_WEBHOOK_URL"),
        telegram_bot_token=_env_str("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_env_str("TELEGRAM_CHAT_ID"),
        alert_buffer_size=_env_int("ALERT_BUFFER_SIZE", 500),
        movers_push_sec=_env_float("MOVERS_PUSH_SEC", 2.0),
        movers_top_n=_env_int("MOVERS_TOP_N", 80),
        movers_min_change_pct=_env_float("MOVERS_MIN_CHANGE_PCT", 0.02),
    )
