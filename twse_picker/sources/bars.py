"""
Historical daily bars from the Yahoo chart API.
"""
import logging
import httpx
from typing import Optional

from ..cache import ResponseCache
from ..schemas import BarSeries
from .adapters import YahooChartAdapter
from .http import get_json

logger = logging.getLogger(__name__)


class BarSourceClient:
    """Fetches per-symbol OHLCV series for TWSE listings (`{symbol}.TW`)."""

    CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}.TW"

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[ResponseCache] = None,
        timeout: float = 15.0,
        cache_ttl: float = 30 * 60,
        adapter: Optional[YahooChartAdapter] = None,
    ):
        self.client = client
        self.cache = cache
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.adapter = adapter or YahooChartAdapter()

    async def fetch_bars(
        self,
        symbol: str,
        range_: str = "6mo",
        interval: str = "1d",
    ) -> BarSeries:
        """
        Fetch and parse a bar series.

        Raises:
            SourceError: chart payload has no result
            httpx.HTTPError: transport failure, timeout or bad status
        """
        key = f"yahoo:{symbol}:{range_}:{interval}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        payload = await get_json(
            self.client,
            self.CHART_URL.format(symbol=symbol),
            params={
                "range": range_,
                "interval": interval,
                "includePrePost": "false",
                "events": "div,splits",
            },
            timeout=self.timeout,
        )
        series = self.adapter.parse(payload, symbol)
        logger.debug(f"{symbol}: {len(series.bars)} bars")

        if self.cache is not None:
            self.cache.set(key, series, self.cache_ttl)
        return series
