"""
Root conftest.py for pytest configuration.

This ensures the twse_picker package is discoverable and provides
factories for synthetic market data.
"""

import sys
from pathlib import Path
from typing import List, Optional

import pytest

root_dir = Path(__file__).parent.parent
if str(root_dir) not in sys.path:
    sys.path.insert(0, str(root_dir))

pytest_plugins = ('pytest_asyncio',)

from twse_picker.schemas import (  # noqa: E402
    Bar,
    BarSeries,
    Diagnostics,
    InstitutionalSummary,
    RawSignals,
    ScoreRecord,
    SecondarySignals,
    TradePlan,
)


def zigzag_closes(n: int, start: float = 100.0, up: float = 2.0, down: float = 1.0) -> List[float]:
    """Uptrend alternating +up / -down, keeps RSI inside the 50-82 band."""
    closes = [start]
    for i in range(1, n):
        closes.append(closes[-1] + (up if i % 2 == 1 else -down))
    return closes


@pytest.fixture
def make_bars():
    """Factory for ascending daily bars with a volume spike on the last bar."""

    def _make(
        n: int = 40,
        closes: Optional[List[float]] = None,
        volume: float = 1000.0,
        last_volume: float = 2000.0,
        spread: float = 1.0,
    ) -> List[Bar]:
        closes = closes if closes is not None else zigzag_closes(n)
        bars = []
        for i, close in enumerate(closes):
            bars.append(Bar(
                date=f"2024-{1 + i // 28:02d}-{1 + i % 28:02d}",
                open=close,
                high=close + spread,
                low=close - spread,
                close=close,
                volume=last_volume if i == len(closes) - 1 else volume,
            ))
        return bars

    return _make


@pytest.fixture
def make_series(make_bars):
    def _make(symbol: str, name: str = "", **kwargs) -> BarSeries:
        return BarSeries(symbol=symbol, name=name, bars=make_bars(**kwargs))

    return _make


@pytest.fixture
def make_summary():
    """Factory for institutional summaries; positive totals carry a buy streak."""

    def _make(total: float, name: str = "", window_days: int = 10) -> InstitutionalSummary:
        if total > 0:
            return InstitutionalSummary(
                window_days=window_days,
                name=name,
                sum_foreign=total,
                sum_total=total,
                buy_streak=5,
                latest_total_net=total / 10,
            )
        return InstitutionalSummary(
            window_days=window_days,
            name=name,
            sum_foreign=total,
            sum_total=total,
            sell_streak=3 if total < 0 else 0,
            latest_total_net=total / 10,
        )

    return _make


@pytest.fixture
def make_record():
    """Factory for score records with just enough state for selection."""

    def _make(
        symbol: str,
        score: float,
        passed: bool = True,
        last_close: float = 50.0,
        failed: Optional[List[str]] = None,
        badges: Optional[List[str]] = None,
    ) -> ScoreRecord:
        failed = failed if failed is not None else ([] if passed else ["weak_trend"])
        return ScoreRecord(
            symbol=symbol,
            name=f"name-{symbol}",
            signals=RawSignals(last_close=last_close, atr=1.0),
            institutional=InstitutionalSummary(window_days=10),
            secondary=SecondarySignals(badges=badges or []),
            score=score,
            passed=passed,
            plan=TradePlan(
                entry_low=last_close - 0.3,
                entry_high=last_close + 0.3,
                stop=last_close - 1.5,
                tp1=last_close + 2.0,
                tp2=last_close + 3.0,
            ),
            diagnostics=Diagnostics(failed=failed),
        )

    return _make
