"""
TWSE Picker

Batch stock screener for Taiwan Stock Exchange listings. Narrows the
volume-ranked universe to a short list of picks using technical signals
and institutional order flow, refined with FinMind margin and
day-trading data when a token is configured.

Key principles:
- One batch ranking per invocation, no order execution
- A failing symbol is excluded, never fatal to the run
- Gates decide primary vs fallback; non-positive scores are never picked
"""

from .schemas import (
    Bar,
    BarSeries,
    PoolEntry,
    InstitutionalSummary,
    MarginSignal,
    DayTradeSignal,
    SecondarySignals,
    RawSignals,
    TradePlan,
    ScoreRecord,
    Pick,
    PickResult,
    PriceBucket,
    SymbolAnalysis,
    Classification,
)
from .config import PickerConfig, load_config
from .cache import InMemoryTTLCache, NullCache, ResponseCache
from .concurrency import run_bounded
from .errors import SourceError
from .scoring import ScoringEngine, Gate, default_gates
from .selection import select_picks, select_by_buckets, parse_bucket
from .pipeline import PickPipeline

__all__ = [
    "Bar",
    "BarSeries",
    "PoolEntry",
    "InstitutionalSummary",
    "MarginSignal",
    "DayTradeSignal",
    "SecondarySignals",
    "RawSignals",
    "TradePlan",
    "ScoreRecord",
    "Pick",
    "PickResult",
    "PriceBucket",
    "SymbolAnalysis",
    "Classification",
    "PickerConfig",
    "load_config",
    "InMemoryTTLCache",
    "NullCache",
    "ResponseCache",
    "run_bounded",
    "SourceError",
    "ScoringEngine",
    "Gate",
    "default_gates",
    "select_picks",
    "select_by_buckets",
    "parse_bucket",
    "PickPipeline",
]
