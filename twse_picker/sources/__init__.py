"""
Data source clients and payload adapters.

Each client takes a shared httpx.AsyncClient and an optional ResponseCache.
Adapters turn raw payloads into the canonical schema types.
"""

from .adapters import (
    KeyedDayAllAdapter,
    PositionalDayAllAdapter,
    YahooChartAdapter,
    T86Adapter,
    FinMindStockInfoAdapter,
    parse_day_all,
)
from .http import create_client, get_json
from .universe import UniverseBuilder, build_pool
from .bars import BarSourceClient
from .institutional import InstitutionalFlowAggregator, summarize
from .finmind import FinMindClient, margin_signal, day_trade_signal

__all__ = [
    "KeyedDayAllAdapter",
    "PositionalDayAllAdapter",
    "YahooChartAdapter",
    "T86Adapter",
    "FinMindStockInfoAdapter",
    "parse_day_all",
    "create_client",
    "get_json",
    "UniverseBuilder",
    "build_pool",
    "BarSourceClient",
    "InstitutionalFlowAggregator",
    "summarize",
    "FinMindClient",
    "margin_signal",
    "day_trade_signal",
]
