"""
Composite scoring with pluggable gates.

Score formula at the latest bar:
score = 3.2*sign(total)*log10(max(1,|total|)) + 2.2*((close/ma20 - 1)*100)
        + (vol_ratio - 1)*10 + secondary_adjustment + gate_bonus

`passed` is the AND of every configured gate. Pass/fail never changes the
score; it only decides primary vs fallback eligibility downstream. The
gate_bonus term is 0 unless the near-high gate is enabled.
"""
import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .config import PickerConfig
from .indicators import atr, rsi, sma
from .schemas import (
    Bar,
    Diagnostics,
    InstitutionalSummary,
    RawSignals,
    ScoreRecord,
    SecondarySignals,
    TradePlan,
)

logger = logging.getLogger(__name__)

MIN_BARS = 30
ATR_FALLBACK_PCT = 0.03


@dataclass
class GateContext:
    """Everything a gate may look at for one symbol."""
    closes: List[float]
    signals: RawSignals
    institutional: InstitutionalSummary


class Gate:
    """A named screening predicate. `tag` is reported when the check fails."""
    name = "gate"
    tag = "gate_failed"

    def check(self, ctx: GateContext) -> bool:
        raise NotImplementedError

    def bonus(self, ctx: GateContext) -> float:
        """Score contribution, independent of pass/fail. Most gates add none."""
        return 0.0


class TrendGate(Gate):
    name = "trend"
    tag = "weak_trend"

    def check(self, ctx: GateContext) -> bool:
        s = ctx.signals
        if s.ma5 is None or s.ma20 is None:
            return False
        return s.last_close > s.ma20 and s.ma5 > s.ma20


class RsiGate(Gate):
    name = "rsi"
    tag = "rsi_out_of_band"

    def __init__(self, rsi_min: float = 50.0, rsi_max: float = 82.0):
        self.rsi_min = rsi_min
        self.rsi_max = rsi_max

    def check(self, ctx: GateContext) -> bool:
        value = ctx.signals.rsi14
        if value is None:
            return True
        return self.rsi_min <= value <= self.rsi_max


class VolumeGate(Gate):
    name = "volume"
    tag = "low_volume"

    def __init__(self, min_ratio: float = 1.1):
        self.min_ratio = min_ratio

    def check(self, ctx: GateContext) -> bool:
        return ctx.signals.vol_ratio >= self.min_ratio


class InstitutionalGate(Gate):
    name = "institutional"
    tag = "institutional_unstable"

    def __init__(self, min_streak: int = 3):
        self.min_streak = min_streak

    def check(self, ctx: GateContext) -> bool:
        inst = ctx.institutional
        return (
            inst.sum_total > 0
            and inst.buy_streak >= self.min_streak
            and inst.latest_total_net > 0
        )


class NearHighGate(Gate):
    """
    Last close within `pct` of the highest close over `lookback` bars.

    Also contributes a bonus: `max_bonus` at the high, tapering linearly
    to 0 at `pct` below it.
    """
    name = "near_high"
    tag = "far_from_high"

    def __init__(self, lookback: int = 120, pct: float = 0.05, max_bonus: float = 5.0):
        self.lookback = lookback
        self.pct = pct
        self.max_bonus = max_bonus

    def measure(self, ctx: GateContext) -> Tuple[Optional[float], Optional[float]]:
        """(high, distance below it as a fraction), or (None, None)."""
        window = ctx.closes[-self.lookback:]
        last_close = ctx.signals.last_close
        if not window or last_close <= 0:
            return None, None
        high = max(window)
        if high <= 0:
            return None, None
        return high, (high - last_close) / high

    def check(self, ctx: GateContext) -> bool:
        _, dist = self.measure(ctx)
        return dist is not None and dist <= self.pct

    def bonus(self, ctx: GateContext) -> float:
        _, dist = self.measure(ctx)
        if dist is None or self.pct <= 0:
            return 0.0
        return max(0.0, (self.pct - dist) / self.pct) * self.max_bonus


def default_gates(config: Optional[PickerConfig] = None) -> List[Gate]:
    """Trend, RSI, volume and institutional gates, plus near-high if enabled."""
    config = config or PickerConfig()
    gates: List[Gate] = [
        TrendGate(),
        RsiGate(config.rsi_min, config.rsi_max),
        VolumeGate(config.min_vol_ratio),
        InstitutionalGate(),
    ]
    if config.near_high_gate_enabled:
        gates.append(NearHighGate(config.near_high_lookback, config.near_high_pct))
    return gates


def build_plan(last_close: float, atr_use: float) -> TradePlan:
    return TradePlan(
        entry_low=last_close - 0.3 * atr_use,
        entry_high=last_close + 0.3 * atr_use,
        stop=last_close - 1.5 * atr_use,
        tp1=last_close + 2.0 * atr_use,
        tp2=last_close + 3.0 * atr_use,
    )


class ScoringEngine:
    """
    Deterministic scorer for one symbol at a time.

    Stage 1 calls score() without secondary signals; stage 2 calls it again
    on the same bars with them, producing a fresh record.
    """

    def __init__(
        self,
        config: Optional[PickerConfig] = None,
        gates: Optional[Sequence[Gate]] = None,
    ):
        self.config = config or PickerConfig()
        self.gates = list(gates) if gates is not None else default_gates(self.config)

    def compute_signals(self, bars: Sequence[Bar]) -> RawSignals:
        closes = [b.close for b in bars]
        highs = [b.high for b in bars]
        lows = [b.low for b in bars]
        volumes = [b.volume for b in bars]
        i = len(bars) - 1

        last_close = closes[i]
        vol_avg = sma(volumes, 20)[i]
        vol_ratio = volumes[i] / vol_avg if vol_avg else 1.0

        atr14 = atr(highs, lows, closes, 14)[i]
        atr_use = atr14 if atr14 is not None and atr14 > 0 else last_close * ATR_FALLBACK_PCT

        return RawSignals(
            last_close=last_close,
            ma5=sma(closes, 5)[i],
            ma20=sma(closes, 20)[i],
            rsi14=rsi(closes, 14)[i],
            vol_ratio=vol_ratio,
            atr=atr_use,
        )

    def secondary_adjustment(self, secondary: Optional[SecondarySignals]) -> float:
        if secondary is None:
            return 0.0
        adj = 0.0
        if secondary.margin and secondary.margin.hot:
            adj -= self.config.hot_penalty
        day_trade = secondary.day_trade
        if day_trade:
            if day_trade.hot:
                adj -= self.config.hot_penalty
            if day_trade.ratio is not None and day_trade.ratio < self.config.low_day_trade_ratio:
                adj += self.config.low_day_trade_bonus
        return adj

    def composite_score(
        self,
        signals: RawSignals,
        institutional: InstitutionalSummary,
        adjustment: float = 0.0,
    ) -> float:
        total = institutional.sum_total
        sign = (total > 0) - (total < 0)
        inst_score = sign * math.log10(max(1.0, abs(total)))

        trend = 0.0
        if signals.ma20:
            trend = (signals.last_close / signals.ma20 - 1) * 100

        score = (
            self.config.institutional_weight * inst_score
            + self.config.trend_weight * trend
            + (signals.vol_ratio - 1) * 10
            + adjustment
        )
        return round(score, 4)

    def score(
        self,
        symbol: str,
        bars: Sequence[Bar],
        institutional: InstitutionalSummary,
        secondary: Optional[SecondarySignals] = None,
        name: str = "",
        industry: str = "",
    ) -> Optional[ScoreRecord]:
        """
        Score a symbol at its latest bar.

        Returns None for fewer than MIN_BARS bars (insufficient history).
        """
        min_bars = max(MIN_BARS, self.config.min_bars)
        if len(bars) < min_bars:
            logger.debug(f"{symbol}: {len(bars)} bars < {min_bars}, skipped")
            return None

        signals = self.compute_signals(bars)
        ctx = GateContext(
            closes=[b.close for b in bars],
            signals=signals,
            institutional=institutional,
        )

        gate_results = {}
        failed = []
        gate_bonus = 0.0
        near_high = near_high_dist_pct = None
        for gate in self.gates:
            ok = bool(gate.check(ctx))
            gate_results[gate.name] = ok
            if not ok:
                failed.append(gate.tag)
            gate_bonus += gate.bonus(ctx)
            if isinstance(gate, NearHighGate):
                near_high, dist = gate.measure(ctx)
                if dist is not None:
                    near_high_dist_pct = round(dist * 100, 2)

        adjustment = self.secondary_adjustment(secondary)

        return ScoreRecord(
            symbol=symbol,
            name=name,
            industry=industry,
            signals=signals,
            institutional=institutional,
            secondary=secondary,
            score=self.composite_score(signals, institutional, adjustment + gate_bonus),
            passed=not failed,
            plan=build_plan(signals.last_close, signals.atr),
            diagnostics=Diagnostics(
                failed=failed,
                gates=gate_results,
                secondary_adjustment=adjustment,
                gate_bonus=round(gate_bonus, 4),
                near_high=near_high,
                near_high_dist_pct=near_high_dist_pct,
            ),
            bars=list(bars),
        )
