"""
Picker schemas.

These define the data structures flowing through the screening pipeline:
bars and pool entries coming in, score records inside, picks going out.
Score records are internal working state; picks are the only shape handed
to downstream consumers.
"""
from enum import Enum
from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class Classification(str, Enum):
    """How a pick made it into the shortlist."""
    PRIMARY = "primary"
    FALLBACK = "fallback"


class Bar(BaseModel):
    """One daily OHLCV observation. Close is always positive."""
    model_config = ConfigDict(frozen=True)

    date: str
    open: float
    high: float
    low: float
    close: float = Field(gt=0)
    volume: float = 0.0


class BarSeries(BaseModel):
    """Historical bars for one symbol, ascending by date."""
    symbol: str
    name: str = ""
    bars: List[Bar] = Field(default_factory=list)


class PoolEntry(BaseModel):
    """A symbol admitted to the run's candidate pool."""
    symbol: str
    name: str = ""
    volume: float = 0.0
    close: float = 0.0


class StockInfo(BaseModel):
    """Identity/classification data for a listed symbol."""
    name: str = ""
    industry: str = ""
    board_type: str = ""


class InstitutionalRecord(BaseModel):
    """One symbol's per-category net buy/sell on one date."""
    symbol: str
    name: str = ""
    foreign_net: float = 0.0
    trust_net: float = 0.0
    dealer_net: float = 0.0

    @property
    def total_net(self) -> float:
        return self.foreign_net + self.trust_net + self.dealer_net


class InstitutionalDay(BaseModel):
    """Category nets for a symbol on one resolved trading date."""
    date: str
    foreign_net: float = 0.0
    trust_net: float = 0.0
    dealer_net: float = 0.0

    @property
    def total_net(self) -> float:
        return self.foreign_net + self.trust_net + self.dealer_net


class InstitutionalSummary(BaseModel):
    """Institutional flow aggregated over a sliding window of trading dates."""
    window_days: int
    dates: List[str] = Field(
        default_factory=list,
        description="Resolved trading dates, most recent first"
    )
    name: str = Field(
        default="",
        description="Display name reported by the institutional source"
    )
    sum_foreign: float = 0.0
    sum_trust: float = 0.0
    sum_dealer: float = 0.0
    sum_total: float = 0.0
    buy_streak: int = 0
    sell_streak: int = 0
    latest_total_net: float = 0.0


class MarginSignal(BaseModel):
    """Margin-purchase balance trend over the lookback window."""
    mp_delta: float
    mp_inc_streak: int
    hot: bool
    ss_delta: float
    last_date: str


class DayTradeSignal(BaseModel):
    """Latest day-trading ratio (percent)."""
    ratio: Optional[float] = None
    volume: float = 0.0
    amount: float = 0.0
    hot: bool = False
    last_date: str = ""


class SecondarySignals(BaseModel):
    """Margin and day-trading signals gathered for stage-2 candidates."""
    margin: Optional[MarginSignal] = None
    day_trade: Optional[DayTradeSignal] = None
    badges: List[str] = Field(default_factory=list)
    enabled: bool = False
    stage: str = "stage1"


class RawSignals(BaseModel):
    """Indicator values at the latest bar."""
    last_close: float
    ma5: Optional[float] = None
    ma20: Optional[float] = None
    rsi14: Optional[float] = None
    vol_ratio: float = 1.0
    atr: float = Field(description="ATR used for the plan (falls back to 3% of close)")


class TradePlan(BaseModel):
    """Static ATR-based entry/stop/target levels around the last close."""
    entry_low: float
    entry_high: float
    stop: float
    tp1: float
    tp2: float


class Diagnostics(BaseModel):
    """Which gates held, for fallback-reason reporting."""
    failed: List[str] = Field(default_factory=list)
    gates: Dict[str, bool] = Field(default_factory=dict)
    secondary_adjustment: float = 0.0
    gate_bonus: float = 0.0
    near_high: Optional[float] = Field(default=None, description="Highest close over the near-high lookback")
    near_high_dist_pct: Optional[float] = Field(default=None, description="Percent below that high, 2 decimals")

    @property
    def reason(self) -> str:
        return " / ".join(self.failed) if self.failed else "PASS"


class ScoreRecord(BaseModel):
    """
    Internal working record for one scored symbol.

    Carries the raw bar series and institutional summary so stage 2 can
    rescore without refetching. Never leaves the pipeline; see to_pick().
    """
    symbol: str
    name: str = ""
    industry: str = ""
    signals: RawSignals
    institutional: InstitutionalSummary
    secondary: Optional[SecondarySignals] = None
    score: float
    passed: bool
    plan: TradePlan
    diagnostics: Diagnostics = Field(default_factory=Diagnostics)
    bars: List[Bar] = Field(default_factory=list, repr=False)


class Pick(BaseModel):
    """A shortlisted symbol as handed to report and transport consumers."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    symbol: str
    name: str = ""
    industry: str = ""
    score: float
    classification: Classification
    reason_tags: List[str] = Field(default_factory=list)
    fallback_reason: Optional[str] = None
    passed: bool = False
    signals: RawSignals
    plan: TradePlan


class PriceBucket(BaseModel):
    """Half-open price band [min_price, max_price) over last close."""
    key: str
    label: str
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    def contains(self, price: float) -> bool:
        if price != price:  # NaN
            return False
        if self.min_price is not None and price < self.min_price:
            return False
        if self.max_price is not None and price >= self.max_price:
            return False
        return True


class PickResult(BaseModel):
    """Complete output of one screening run."""
    market: str = "TW"
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    top_n: int = 3
    picks: List[Pick] = Field(default_factory=list)
    buckets: Optional[Dict[str, List[Pick]]] = Field(
        default=None,
        description="Per price band picks, only in bucketed mode"
    )
    meta: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class SymbolAnalysis(BaseModel):
    """Full diagnostic view of a single symbol."""
    symbol: str
    name: str = ""
    industry: str = ""
    window_days: int
    score: Optional[float] = None
    passed: bool = False
    signals: Optional[RawSignals] = None
    plan: Optional[TradePlan] = None
    diagnostics: Optional[Diagnostics] = None
    institutional: Optional[InstitutionalSummary] = None
    secondary: Optional[SecondarySignals] = None
    error: Optional[str] = None


def to_pick(
    record: ScoreRecord,
    classification: Classification,
    fallback_reason: Optional[str] = None,
) -> Pick:
    """Project an internal score record onto the external pick shape."""
    tags = [classification.value]
    if classification == Classification.FALLBACK:
        tags.extend(record.diagnostics.failed)
    if record.secondary:
        tags.extend(record.secondary.badges)
    return Pick(
        symbol=record.symbol,
        name=record.name,
        industry=record.industry,
        score=record.score,
        classification=classification,
        reason_tags=tags,
        fallback_reason=fallback_reason,
        passed=record.passed,
        signals=record.signals,
        plan=record.plan,
    )
