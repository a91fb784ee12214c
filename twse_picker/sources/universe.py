"""
Universe construction.

Turns one bulk end-of-day record set into the run's candidate pool:
common stocks only, liquid and above the price floor, alternative-board
listings removed, ranked by volume and capped.
"""
import logging
import re
import httpx
from typing import Any, Dict, List, Mapping, Optional

from ..cache import ResponseCache
from ..schemas import PoolEntry, StockInfo
from .adapters import day_all_rows, is_common_stock, parse_day_all
from .http import get_json

logger = logging.getLogger(__name__)

INNOVATION_BOARD_PATTERN = re.compile(r"創新|innovation", re.IGNORECASE)


def is_innovation_board(info: Optional[StockInfo]) -> bool:
    """Innovation/alternative board listings are excluded. Unknown symbols are not."""
    if info is None:
        return False
    return bool(INNOVATION_BOARD_PATTERN.search(info.board_type or ""))


def build_pool(
    rows: List[Any],
    info_map: Optional[Mapping[str, StockInfo]] = None,
    pool_size: int = 600,
    min_liquidity_shares: float = 500_000,
    min_price: float = 10.0,
) -> List[PoolEntry]:
    """
    Filter, deduplicate, rank and cap a raw bulk record set.

    Args:
        rows: Bulk records, positional arrays or keyed objects
        info_map: Symbol classification; symbols missing from it pass
        pool_size: Maximum pool length
        min_liquidity_shares: Volume must be strictly above this
        min_price: Close must be strictly above this

    Returns:
        Pool entries sorted by volume, highest first
    """
    info_map = info_map or {}
    seen = set()
    pool: List[PoolEntry] = []

    for entry in parse_day_all(rows):
        if not is_common_stock(entry.symbol):
            continue
        if entry.volume <= min_liquidity_shares or entry.close <= min_price:
            continue
        if is_innovation_board(info_map.get(entry.symbol)):
            continue
        if entry.symbol in seen:
            continue
        seen.add(entry.symbol)
        pool.append(entry)

    pool.sort(key=lambda e: e.volume, reverse=True)
    return pool[:max(0, pool_size)]


class UniverseBuilder:
    """
    Fetch the bulk daily record set and build the candidate pool.

    The OpenAPI export is tried first; the legacy exchange report is tried
    once if it is empty or fails. If both fail the pool is empty.
    """

    PRIMARY_URL = "https://openapi.twse.com.tw/v1/exchangeReport/STOCK_DAY_ALL"
    SECONDARY_URL = "https://www.twse.com.tw/exchangeReport/STOCK_DAY_ALL"
    CACHE_KEY = "twse:stock_day_all"

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[ResponseCache] = None,
        pool_size: int = 600,
        min_liquidity_shares: float = 500_000,
        min_price: float = 10.0,
        timeout: float = 20.0,
        cache_ttl: float = 10 * 60,
    ):
        self.client = client
        self.cache = cache
        self.pool_size = pool_size
        self.min_liquidity_shares = min_liquidity_shares
        self.min_price = min_price
        self.timeout = timeout
        self.cache_ttl = cache_ttl

    async def fetch_day_all(self) -> List[Any]:
        """Get bulk records from the primary source, falling back once."""
        if self.cache is not None:
            cached = self.cache.get(self.CACHE_KEY)
            if cached:
                return cached

        rows = await self._fetch(self.PRIMARY_URL, params=None, headers=None)
        if not rows:
            logger.warning("Primary bulk source returned no rows, trying secondary source")
            rows = await self._fetch(
                self.SECONDARY_URL,
                params={"response": "json"},
                headers={"Referer": "https://www.twse.com.tw/"},
            )

        if rows and self.cache is not None:
            self.cache.set(self.CACHE_KEY, rows, self.cache_ttl)
        return rows

    async def _fetch(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        headers: Optional[Dict[str, str]],
    ) -> List[Any]:
        try:
            payload = await get_json(
                self.client, url, params=params, headers=headers, timeout=self.timeout
            )
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Bulk fetch failed ({url}): {e}")
            return []
        return day_all_rows(payload)

    async def build(self, info_map: Optional[Mapping[str, StockInfo]] = None) -> List[PoolEntry]:
        """Fetch and build the pool. Never raises; worst case is an empty pool."""
        rows = await self.fetch_day_all()
        pool = build_pool(
            rows,
            info_map=info_map,
            pool_size=self.pool_size,
            min_liquidity_shares=self.min_liquidity_shares,
            min_price=self.min_price,
        )
        logger.info(f"Universe: {len(rows)} raw rows -> {len(pool)} pool entries")
        return pool

    def diagnose(self, rows: List[Any]) -> Dict[str, Any]:
        """Counts at each filter step, for inspecting why a pool came out small."""
        parsed = [e for e in parse_day_all(rows) if is_common_stock(e.symbol)]
        filtered = [
            e for e in parsed
            if e.volume > self.min_liquidity_shares and e.close > self.min_price
        ]
        return {
            "raw_count": len(rows),
            "parsed_count": len(parsed),
            "filtered_count": len(filtered),
            "head_parsed": [e.model_dump() for e in parsed[:5]],
            "head_filtered": [e.model_dump() for e in filtered[:10]],
            "thresholds": {
                "min_liquidity_shares": self.min_liquidity_shares,
                "min_price": self.min_price,
                "pool_size": self.pool_size,
            },
        }
