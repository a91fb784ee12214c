"""
Ranking and final pick selection.

Selection never pads: a symbol whose score is not strictly above the
minimum is never recommended, even if that leaves fewer than top_n picks.
"""
import logging
from typing import Dict, List, Optional, Sequence

from .schemas import Classification, Pick, PriceBucket, ScoreRecord, to_pick

logger = logging.getLogger(__name__)

PRICE_BUCKETS: Dict[str, PriceBucket] = {
    "lt100": PriceBucket(key="lt100", label="<100", max_price=100),
    "100_300": PriceBucket(key="100_300", label="100~300", min_price=100, max_price=300),
    "300_600": PriceBucket(key="300_600", label="300~600", min_price=300, max_price=600),
    "600_1000": PriceBucket(key="600_1000", label="600~1000", min_price=600, max_price=1000),
    "gt1000": PriceBucket(key="gt1000", label=">=1000", min_price=1000),
    "all": PriceBucket(key="all", label="all"),
}

BAND_KEYS = ("lt100", "100_300", "300_600", "600_1000", "gt1000")


def parse_bucket(key: Optional[str]) -> PriceBucket:
    """Resolve a bucket key; unknown keys mean no price restriction."""
    return PRICE_BUCKETS.get(key or "all", PRICE_BUCKETS["all"])


def rank(records: Sequence[ScoreRecord]) -> List[ScoreRecord]:
    """Stable sort by score, highest first."""
    return sorted(records, key=lambda r: r.score, reverse=True)


def top_candidates(ranked: Sequence[ScoreRecord], k: int = 40) -> List[ScoreRecord]:
    return list(ranked[:max(0, k)])


def splice_rescored(
    ranked: Sequence[ScoreRecord],
    rescored: Sequence[ScoreRecord],
) -> List[ScoreRecord]:
    """Replace records by symbol with their rescored versions and re-rank."""
    replacements = {r.symbol: r for r in rescored}
    merged = [replacements.get(r.symbol, r) for r in ranked]
    return rank(merged)


def select_picks(
    records: Sequence[ScoreRecord],
    top_n: int = 3,
    min_score: float = 0.0,
) -> List[Pick]:
    """
    Pick up to top_n symbols.

    Gate-passed symbols come first as primary picks; remaining slots are
    filled from all eligible symbols in score order as fallback picks.
    """
    eligible = [r for r in rank(records) if r.score > min_score]

    picks: List[Pick] = []
    used = set()

    for record in eligible:
        if len(picks) >= top_n:
            break
        if record.passed and record.symbol not in used:
            picks.append(to_pick(record, Classification.PRIMARY))
            used.add(record.symbol)

    for record in eligible:
        if len(picks) >= top_n:
            break
        if record.symbol in used:
            continue
        picks.append(to_pick(
            record,
            Classification.FALLBACK,
            fallback_reason=record.diagnostics.reason,
        ))
        used.add(record.symbol)

    return picks


def filter_bucket(records: Sequence[ScoreRecord], bucket: PriceBucket) -> List[ScoreRecord]:
    """Keep records whose last close falls in the bucket."""
    return [r for r in records if bucket.contains(r.signals.last_close)]


def select_by_buckets(
    records: Sequence[ScoreRecord],
    per_bucket: int = 3,
    min_score: float = 0.0,
) -> Dict[str, List[Pick]]:
    """
    Fixed number of picks per price band, in score order within each band.

    Classification records whether the pick passed every gate; it does not
    influence which symbols are chosen.
    """
    ranked = [r for r in rank(records) if r.score > min_score]
    out: Dict[str, List[Pick]] = {}
    for key in BAND_KEYS:
        bucket = PRICE_BUCKETS[key]
        chosen = [r for r in ranked if bucket.contains(r.signals.last_close)][:max(0, per_bucket)]
        out[key] = [
            to_pick(r, Classification.PRIMARY)
            if r.passed
            else to_pick(r, Classification.FALLBACK, fallback_reason=r.diagnostics.reason)
            for r in chosen
        ]
    return out
