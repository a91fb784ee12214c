"""
Technical indicators over ordered daily series.

Every function returns a list the same length as its input, with None where
the indicator is not yet defined. Short inputs yield all-None output rather
than raising.

RSI and ATR use Wilder smoothing:
    next = (prev * (period - 1) + current) / period
"""
from typing import List, Optional, Sequence


def sma(values: Sequence[float], period: int) -> List[Optional[float]]:
    """Simple moving average with a running window sum."""
    out: List[Optional[float]] = []
    if period <= 0:
        return [None] * len(values)

    window_sum = 0.0
    for i, value in enumerate(values):
        window_sum += value
        if i >= period:
            window_sum -= values[i - period]
        out.append(window_sum / period if i >= period - 1 else None)
    return out


def rsi(closes: Sequence[float], period: int = 14) -> List[Optional[float]]:
    """
    Wilder's Relative Strength Index.

    Seeded with the mean gain/loss of the first `period` deltas, so the
    first defined value sits at index `period`.
    """
    n = len(closes)
    out: List[Optional[float]] = [None] * n
    if period <= 0 or n < period + 1:
        return out

    gain = 0.0
    loss = 0.0
    for i in range(1, period + 1):
        diff = closes[i] - closes[i - 1]
        if diff >= 0:
            gain += diff
        else:
            loss -= diff
    gain /= period
    loss /= period
    out[period] = _rsi_value(gain, loss)

    for i in range(period + 1, n):
        diff = closes[i] - closes[i - 1]
        gain = (gain * (period - 1) + max(diff, 0.0)) / period
        loss = (loss * (period - 1) + max(-diff, 0.0)) / period
        out[i] = _rsi_value(gain, loss)

    return out


def _rsi_value(gain: float, loss: float) -> float:
    if loss == 0:
        return 100.0
    return 100.0 - 100.0 / (1.0 + gain / loss)


def true_range(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
) -> List[Optional[float]]:
    """True range per bar; undefined for the first bar (no previous close)."""
    n = min(len(highs), len(lows), len(closes))
    tr: List[Optional[float]] = [None] * n
    for i in range(1, n):
        prev_close = closes[i - 1]
        tr[i] = max(
            highs[i] - lows[i],
            abs(highs[i] - prev_close),
            abs(lows[i] - prev_close),
        )
    return tr


def atr(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    period: int = 14,
) -> List[Optional[float]]:
    """Wilder's Average True Range, first defined at index `period`."""
    n = len(closes)
    out: List[Optional[float]] = [None] * n
    if period <= 0 or n < period + 1 or len(highs) < n or len(lows) < n:
        return out

    tr = true_range(highs, lows, closes)
    prev = sum(tr[i] or 0.0 for i in range(1, period + 1)) / period
    out[period] = prev
    for i in range(period + 1, n):
        prev = (prev * (period - 1) + (tr[i] or 0.0)) / period
        out[i] = prev

    return out
