"""
Two-stage screening pipeline.

Stage 1 scores the whole pool on bars plus institutional flow. Stage 2
rescores only the top-K with FinMind margin/day-trading signals and
splices them back. Stage 2 is skipped entirely without a FinMind token.

run() never raises: the worst outcome is a PickResult with no picks and
the failure recorded in `errors`.
"""
import asyncio
import logging
import httpx
from datetime import datetime
from typing import Any, Dict, List, Optional

from .cache import InMemoryTTLCache, ResponseCache
from .concurrency import run_bounded
from .config import PickerConfig
from .scoring import MIN_BARS, ScoringEngine
from .schemas import (
    PickResult,
    PoolEntry,
    ScoreRecord,
    SecondarySignals,
    StockInfo,
    SymbolAnalysis,
)
from .selection import (
    filter_bucket,
    parse_bucket,
    rank,
    select_by_buckets,
    select_picks,
    splice_rescored,
    top_candidates,
)
from .sources.bars import BarSourceClient
from .sources.finmind import FinMindClient
from .sources.http import create_client
from .sources.institutional import InstitutionalFlowAggregator
from .sources.universe import UniverseBuilder

logger = logging.getLogger(__name__)

TOP_K_MIN = 10
TOP_K_MAX = 100


def clamp_top_k(k: int) -> int:
    return max(TOP_K_MIN, min(TOP_K_MAX, int(k)))


def display_name(*candidates: Optional[str]) -> str:
    """First non-blank name in preference order."""
    for name in candidates:
        if name and name.strip():
            return name.strip()
    return ""


class PickPipeline:
    """
    Orchestrates universe, enrichment, scoring and selection for one market.

    Sources are built from config unless injected. A fresh institutional
    aggregator is created per run so its date memo never goes stale.
    """

    def __init__(
        self,
        config: Optional[PickerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        cache: Optional[ResponseCache] = None,
        universe: Optional[UniverseBuilder] = None,
        bars: Optional[BarSourceClient] = None,
        institutional: Optional[InstitutionalFlowAggregator] = None,
        finmind: Optional[FinMindClient] = None,
        engine: Optional[ScoringEngine] = None,
    ):
        self.config = config or PickerConfig()
        self._owns_client = client is None
        self.client = client or create_client(timeout=self.config.bulk_timeout)
        self.cache = cache if cache is not None else InMemoryTTLCache()

        c = self.config
        self.universe = universe or UniverseBuilder(
            self.client,
            self.cache,
            pool_size=c.pool_size,
            min_liquidity_shares=c.min_liquidity_shares,
            min_price=c.min_price,
            timeout=c.bulk_timeout,
            cache_ttl=c.bulk_cache_ttl,
        )
        self.bars = bars or BarSourceClient(
            self.client,
            self.cache,
            timeout=c.bars_timeout,
            cache_ttl=c.bars_cache_ttl,
        )
        self.finmind = finmind or FinMindClient(
            self.client,
            token=c.finmind_token,
            cache=self.cache,
            timeout=c.finmind_timeout,
            cache_ttl=c.finmind_cache_ttl,
            info_cache_ttl=c.stock_info_cache_ttl,
        )
        self.engine = engine or ScoringEngine(c)
        self._institutional = institutional
        self._last_pool_size = 0

    async def __aenter__(self) -> "PickPipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _institutional_source(self) -> InstitutionalFlowAggregator:
        if self._institutional is not None:
            return self._institutional
        c = self.config
        return InstitutionalFlowAggregator(
            self.client,
            self.cache,
            timeout=c.institutional_timeout,
            cache_ttl=c.institutional_cache_ttl,
            max_lookback_attempts=c.max_lookback_attempts,
            pace_seconds=c.pace_seconds,
        )

    async def run(
        self,
        window_days: Optional[int] = None,
        bucket_key: str = "all",
        top_k: Optional[int] = None,
        per_bucket: Optional[int] = None,
    ) -> PickResult:
        """
        Run one batch ranking.

        Args:
            window_days: Institutional window, defaults to config
            bucket_key: Restrict candidates to one price band before selection
            top_k: Stage-2 candidate count, clamped to 10..100
            per_bucket: If set, also emit this many picks per price band

        Returns:
            PickResult with up to top_n picks
        """
        c = self.config
        window = window_days or c.window_days
        k = clamp_top_k(top_k if top_k is not None else c.stage2_top_k)
        bucket = parse_bucket(bucket_key)
        start_time = datetime.utcnow()

        evicted = self.cache.evict_expired()
        if evicted:
            logger.debug(f"Evicted {evicted} expired cache entries")

        result = PickResult(top_n=c.top_n)
        result.meta = {
            "pool": {
                "type": "TWSE_TOP_VOLUME",
                "size": 0,
                "note": (
                    f"TWSE common stocks by volume, top {c.pool_size} "
                    f"(volume > {c.min_liquidity_shares:,.0f} shares, close > {c.min_price}, "
                    f"innovation board excluded)"
                ),
                "thresholds": {
                    "pool_size": c.pool_size,
                    "min_liquidity_shares": c.min_liquidity_shares,
                    "min_price": c.min_price,
                    "rsi_min": c.rsi_min,
                    "rsi_max": c.rsi_max,
                    "min_vol_ratio": c.min_vol_ratio,
                },
            },
            "window_days": window,
            "bucket": bucket.model_dump(),
            "stage2": {
                "enabled": self.finmind.enabled,
                "top_k": k if self.finmind.enabled else 0,
            },
            "min_pick_score": c.min_pick_score,
            "count_in_bucket": 0,
            "count_passed_in_bucket": 0,
        }

        try:
            ranked = await self._rank(window, k, bucket_key)
        except Exception as e:
            logger.exception(f"Screening run failed: {e}")
            result.errors.append(str(e))
            return result

        result.meta["pool"]["size"] = self._last_pool_size
        result.meta["count_in_bucket"] = len(ranked)
        result.meta["count_passed_in_bucket"] = sum(
            1 for r in ranked if r.passed and r.score > c.min_pick_score
        )

        result.picks = select_picks(ranked, top_n=c.top_n, min_score=c.min_pick_score)
        if per_bucket:
            result.buckets = select_by_buckets(ranked, per_bucket=per_bucket, min_score=c.min_pick_score)

        elapsed = (datetime.utcnow() - start_time).total_seconds()
        logger.info(
            f"Run complete in {elapsed:.1f}s: {len(ranked)} scored, "
            f"{len(result.picks)} picks ({', '.join(p.symbol for p in result.picks) or 'none'})"
        )
        return result

    async def _rank(self, window: int, k: int, bucket_key: str) -> List[ScoreRecord]:
        c = self.config
        self._last_pool_size = 0

        info_map = await self.finmind.stock_info_map()
        pool = await self.universe.build(info_map)
        self._last_pool_size = len(pool)
        if not pool:
            logger.warning("Empty pool, nothing to score")
            return []

        institutional = self._institutional_source()
        stage1_secondary = SecondarySignals(enabled=self.finmind.enabled, stage="stage1")

        async def score_entry(entry: PoolEntry, index: int) -> Optional[ScoreRecord]:
            series, summary = await asyncio.gather(
                self.bars.fetch_bars(entry.symbol),
                institutional.get_summary(entry.symbol, window),
            )
            info = info_map.get(entry.symbol)
            return self.engine.score(
                entry.symbol,
                series.bars,
                summary,
                secondary=stage1_secondary,
                name=self._name_for(summary.name, info, series.name, entry.name),
                industry=info.industry if info else "",
            )

        logger.info(f"Stage 1: scoring {len(pool)} symbols (concurrency {c.stage1_concurrency})")
        scored = await run_bounded(
            pool,
            c.stage1_concurrency,
            score_entry,
            pace_seconds=c.pace_seconds,
            label="stage1",
        )
        records = [r for r in scored if r is not None]
        records = filter_bucket(records, parse_bucket(bucket_key))
        ranked = rank(records)
        logger.info(f"Stage 1: {len(ranked)}/{len(pool)} symbols scored")

        if not self.finmind.enabled:
            logger.info("Stage 2 skipped: no FinMind token")
            return ranked
        if not ranked:
            return ranked

        candidates = top_candidates(ranked, k)

        async def rescore(record: ScoreRecord, index: int) -> Optional[ScoreRecord]:
            secondary = await self.finmind.secondary_signals(record.symbol, c.secondary_lookback_days)
            return self.engine.score(
                record.symbol,
                record.bars,
                record.institutional,
                secondary=secondary,
                name=record.name,
                industry=record.industry,
            )

        logger.info(f"Stage 2: rescoring top {len(candidates)} (concurrency {c.stage2_concurrency})")
        rescored = await run_bounded(
            candidates,
            c.stage2_concurrency,
            rescore,
            pace_seconds=c.pace_seconds,
            label="stage2",
        )
        return splice_rescored(ranked, [r for r in rescored if r is not None])

    @staticmethod
    def _name_for(
        institutional_name: str,
        info: Optional[StockInfo],
        chart_name: str,
        bulk_name: str,
    ) -> str:
        return display_name(
            institutional_name,
            info.name if info else "",
            chart_name,
            bulk_name,
        )

    async def analyze_symbol(self, symbol: str, window_days: Optional[int] = None) -> SymbolAnalysis:
        """Full signal breakdown for one symbol, including stage-2 signals when enabled."""
        c = self.config
        window = window_days or c.window_days
        symbol = symbol.strip().upper()
        analysis = SymbolAnalysis(symbol=symbol, window_days=window)

        try:
            info_map = await self.finmind.stock_info_map()
            info = info_map.get(symbol)
            series, summary = await asyncio.gather(
                self.bars.fetch_bars(symbol),
                self._institutional_source().get_summary(symbol, window),
            )
            secondary = None
            if self.finmind.enabled:
                secondary = await self.finmind.secondary_signals(symbol, c.secondary_lookback_days)
        except Exception as e:
            logger.warning(f"{symbol}: analysis failed: {e}")
            analysis.error = str(e)
            return analysis

        analysis.name = self._name_for(summary.name, info, series.name, "")
        analysis.industry = info.industry if info else ""
        analysis.institutional = summary
        analysis.secondary = secondary

        record = self.engine.score(
            symbol,
            series.bars,
            summary,
            secondary=secondary,
            name=analysis.name,
            industry=analysis.industry,
        )
        if record is None:
            analysis.error = f"insufficient history: {len(series.bars)} bars < {MIN_BARS}"
            return analysis

        analysis.score = record.score
        analysis.passed = record.passed
        analysis.signals = record.signals
        analysis.plan = record.plan
        analysis.diagnostics = record.diagnostics
        return analysis

    async def diagnose_pool(self) -> Dict[str, Any]:
        """Fetch the bulk record set and report counts at each pool filter step."""
        rows = await self.universe.fetch_day_all()
        return self.universe.diagnose(rows)
