"""
Configuration management for screening runs.
"""
import os
from dataclasses import dataclass


@dataclass
class PickerConfig:
    finmind_token: str = ""

    pool_size: int = 600
    min_liquidity_shares: float = 500_000
    min_price: float = 10.0

    rsi_min: float = 50.0
    rsi_max: float = 82.0
    min_vol_ratio: float = 1.1
    min_bars: int = 30

    institutional_weight: float = 3.2
    trend_weight: float = 2.2
    hot_penalty: float = 2.0
    low_day_trade_bonus: float = 0.6
    low_day_trade_ratio: float = 20.0

    near_high_gate_enabled: bool = False
    near_high_lookback: int = 120
    near_high_pct: float = 0.05

    window_days: int = 10
    max_lookback_attempts: int = 60
    secondary_lookback_days: int = 35

    stage2_top_k: int = 40
    stage1_concurrency: int = 6
    stage2_concurrency: int = 5
    pace_seconds: float = 0.03

    top_n: int = 3
    min_pick_score: float = 0.0

    bulk_timeout: float = 20.0
    bars_timeout: float = 15.0
    institutional_timeout: float = 20.0
    finmind_timeout: float = 15.0

    bulk_cache_ttl: int = 10 * 60
    bars_cache_ttl: int = 30 * 60
    institutional_cache_ttl: int = 30 * 60
    finmind_cache_ttl: int = 30 * 60
    stock_info_cache_ttl: int = 6 * 60 * 60

    log_level: str = "INFO"

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Reject settings that would make a run meaningless."""
        if self.rsi_min > self.rsi_max:
            raise ValueError(
                f"RSI band is inverted: RSI_MIN={self.rsi_min} > RSI_MAX={self.rsi_max}"
            )
        if self.stage1_concurrency < 1 or self.stage2_concurrency < 1:
            raise ValueError("Stage concurrency must be at least 1")
        if self.pool_size < 1:
            raise ValueError("POOL_SIZE must be at least 1")
        if self.window_days < 1:
            raise ValueError("WINDOW_DAYS must be at least 1")
        if self.top_n < 1:
            raise ValueError("TOP_N must be at least 1")

    @property
    def finmind_enabled(self) -> bool:
        """Secondary enrichment runs only with a FinMind credential."""
        return bool(self.finmind_token.strip())

    def describe(self) -> str:
        """Get a one-line summary for startup logging."""
        stage2 = f"stage2 top{self.stage2_top_k}" if self.finmind_enabled else "stage2 disabled (no FINMIND_TOKEN)"
        return (
            f"pool={self.pool_size} vol>{self.min_liquidity_shares:,.0f} close>{self.min_price} "
            f"rsi=[{self.rsi_min},{self.rsi_max}] window={self.window_days}d {stage2}"
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_config() -> PickerConfig:
    """Load configuration from environment variables."""
    return PickerConfig(
        finmind_token=os.getenv("FINMIND_TOKEN", "").strip(),
        pool_size=_env_int("POOL_SIZE", 600),
        min_liquidity_shares=_env_float("MIN_LIQ_SHARES", 500_000),
        min_price=_env_float("MIN_PRICE", 10.0),
        rsi_min=_env_float("RSI_MIN", 50.0),
        rsi_max=_env_float("RSI_MAX", 82.0),
        min_vol_ratio=_env_float("MIN_VOL_RATIO", 1.1),
        near_high_gate_enabled=_env_bool("NEAR_HIGH_GATE_ENABLED", False),
        near_high_lookback=_env_int("NEAR_HIGH_LOOKBACK", 120),
        near_high_pct=_env_float("NEAR_HIGH_PCT", 0.05),
        window_days=_env_int("WINDOW_DAYS", 10),
        max_lookback_attempts=_env_int("MAX_LOOKBACK_ATTEMPTS", 60),
        secondary_lookback_days=_env_int("SECONDARY_LOOKBACK_DAYS", 35),
        stage2_top_k=_env_int("STAGE2_TOPK", 40),
        stage1_concurrency=_env_int("STAGE1_CONCURRENCY", 6),
        stage2_concurrency=_env_int("STAGE2_CONCURRENCY", 5),
        pace_seconds=_env_float("PACE_SECONDS", 0.03),
        top_n=_env_int("TOP_N", 3),
        min_pick_score=_env_float("MIN_PICK_SCORE", 0.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
