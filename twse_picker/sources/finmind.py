"""
FinMind client: stock classification plus margin and day-trading signals.

Margin and day-trading lookups need a FinMind token. Without one the
client reports itself disabled and the pipeline skips stage 2. Every
signal lookup degrades to None on failure; nothing here aborts a run.
"""
import asyncio
import logging
import httpx
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..cache import ResponseCache
from ..schemas import DayTradeSignal, MarginSignal, SecondarySignals, StockInfo
from .adapters import (
    FinMindStockInfoAdapter,
    finmind_rows,
    pick_first,
    sort_dated_rows,
    to_num,
)
from .http import get_json
from .institutional import taipei_today

logger = logging.getLogger(__name__)

MARGIN_PURCHASE_KEYS = ("MarginPurchaseTodayBalance", "MarginPurchaseBalance", "MarginPurchase")
SHORT_SALE_KEYS = ("ShortSaleTodayBalance", "ShortSaleBalance", "ShortSale")

DAY_TRADE_RATIO_KEYS = (
    "DayTradingRatio",
    "day_trading_ratio",
    "DayTradingVolumeRatio",
    "DayTradingVolumeRatio(%)",
    "dayTradingRatio",
)
DAY_TRADE_VOLUME_KEYS = (
    "DayTradingVolume",
    "day_trading_volume",
    "DayTradingDealVolume",
    "DayTradingTradingVolume",
    "dayTradingVolume",
)
DAY_TRADE_AMOUNT_KEYS = ("DayTradingAmount", "day_trading_amount", "dayTradingAmount")

MARGIN_TAIL_ROWS = 12
MARGIN_HOT_STREAK = 3
MARGIN_HOT_CHANGE = 0.05
DAY_TRADE_HOT_RATIO = 35.0

BADGE_MARGIN_HOT = "margin_hot"
BADGE_DAY_TRADE_HOT = "day_trade_hot"


def margin_signal(rows: List[Mapping[str, Any]]) -> Optional[MarginSignal]:
    """
    Margin-purchase heat from dated balance rows.

    Hot when the trailing run of strictly increasing balances is at least 3
    and the balance rose at least 5% across the tail window (any rise when
    the first balance is zero).
    """
    ordered = sort_dated_rows(rows)
    if len(ordered) < 3:
        return None

    last = None
    for row in reversed(ordered):
        mp = to_num(pick_first(row, MARGIN_PURCHASE_KEYS, 0))
        ss = to_num(pick_first(row, SHORT_SALE_KEYS, 0))
        if mp != 0 or ss != 0:
            last = row
            break
    if last is None:
        return None

    last_mp = to_num(pick_first(last, MARGIN_PURCHASE_KEYS, 0))
    last_ss = to_num(pick_first(last, SHORT_SALE_KEYS, 0))

    tail = ordered[-MARGIN_TAIL_ROWS:]
    mp_values = [to_num(pick_first(r, MARGIN_PURCHASE_KEYS, 0)) for r in tail]
    ss_values = [to_num(pick_first(r, SHORT_SALE_KEYS, 0)) for r in tail]

    first_mp = mp_values[0] if mp_values else 0.0
    mp_delta = last_mp - first_mp

    inc_streak = 0
    for i in range(len(mp_values) - 1, 0, -1):
        if mp_values[i] > mp_values[i - 1]:
            inc_streak += 1
        else:
            break

    first_ss = ss_values[0] if ss_values else 0.0
    ss_delta = last_ss - first_ss

    if first_mp > 0:
        rising = (mp_delta / first_mp) >= MARGIN_HOT_CHANGE
    else:
        rising = mp_delta > 0
    hot = inc_streak >= MARGIN_HOT_STREAK and rising

    return MarginSignal(
        mp_delta=mp_delta,
        mp_inc_streak=inc_streak,
        hot=hot,
        ss_delta=ss_delta,
        last_date=last["date"],
    )


def day_trade_signal(rows: List[Mapping[str, Any]]) -> Optional[DayTradeSignal]:
    """Latest day-trading ratio as a percentage; hot at 35% or more."""
    ordered = sort_dated_rows(rows)
    if not ordered:
        return None

    last = None
    for row in reversed(ordered):
        value = pick_first(row, DAY_TRADE_RATIO_KEYS, None)
        if value is not None and str(value).strip() != "":
            last = row
            break
    if last is None:
        return None

    ratio = to_num(pick_first(last, DAY_TRADE_RATIO_KEYS, None))
    if 0 < ratio <= 1:
        ratio *= 100

    return DayTradeSignal(
        ratio=ratio,
        volume=to_num(pick_first(last, DAY_TRADE_VOLUME_KEYS, 0)),
        amount=to_num(pick_first(last, DAY_TRADE_AMOUNT_KEYS, 0)),
        hot=ratio >= DAY_TRADE_HOT_RATIO,
        last_date=last["date"],
    )


def secondary_badges(margin: Optional[MarginSignal], day_trade: Optional[DayTradeSignal]) -> List[str]:
    badges = []
    if margin and margin.hot:
        badges.append(BADGE_MARGIN_HOT)
    if day_trade and day_trade.hot:
        badges.append(BADGE_DAY_TRADE_HOT)
    return badges


class FinMindClient:
    """
    FinMind data API client.

    Requests go to the v4 endpoint with a bearer token when one is
    configured, falling back to the v3 endpoint (token as a parameter).
    """

    V4_URL = "https://api.finmindtrade.com/api/v4/data"
    V3_URL = "https://api.finmindtrade.com/api/v3/data"

    def __init__(
        self,
        client: httpx.AsyncClient,
        token: str = "",
        cache: Optional[ResponseCache] = None,
        timeout: float = 15.0,
        cache_ttl: float = 30 * 60,
        info_cache_ttl: float = 6 * 60 * 60,
        today: Callable[[], date] = taipei_today,
    ):
        self.client = client
        self.token = (token or "").strip()
        self.cache = cache
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.info_cache_ttl = info_cache_ttl
        self.today = today
        self.info_adapter = FinMindStockInfoAdapter()

    @property
    def enabled(self) -> bool:
        return bool(self.token)

    async def fetch(
        self,
        dataset: str,
        data_id: Optional[str] = None,
        stock_id: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch dataset rows.

        Raises httpx.HTTPError / ValueError only if the v3 fallback fails too.
        """
        params: Dict[str, Any] = {"dataset": dataset}
        if stock_id:
            params["stock_id"] = stock_id
        if data_id:
            params["data_id"] = data_id
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date

        key = (
            f"finmind:{dataset}:{stock_id or ''}:{data_id or ''}:"
            f"{start_date or ''}:{end_date or ''}:{'T' if self.enabled else 'N'}"
        )
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        rows: Optional[List[Dict[str, Any]]] = None
        if self.enabled:
            try:
                payload = await get_json(
                    self.client,
                    self.V4_URL,
                    params=params,
                    headers={"Authorization": f"Bearer {self.token}"},
                    timeout=self.timeout,
                )
                rows = finmind_rows(payload)
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"FinMind v4 {dataset} failed, falling back to v3: {e}")

        if rows is None:
            v3_params = dict(params)
            if self.enabled:
                v3_params["token"] = self.token
            payload = await get_json(self.client, self.V3_URL, params=v3_params, timeout=self.timeout)
            rows = finmind_rows(payload)

        if self.cache is not None:
            self.cache.set(key, rows, self.cache_ttl)
        return rows

    async def stock_info_map(self) -> Dict[str, StockInfo]:
        """Classification for all listings. Empty map when unavailable."""
        key = f"finmind:TaiwanStockInfo:map:{'T' if self.enabled else 'N'}"
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        try:
            rows = await self.fetch("TaiwanStockInfo")
            info = self.info_adapter.parse(rows)
            ttl = self.info_cache_ttl
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Stock classification unavailable: {e}")
            info = {}
            ttl = 10 * 60

        if self.cache is not None:
            self.cache.set(key, info, ttl)
        return info

    def _date_range(self, lookback_days: int) -> tuple:
        end = self.today()
        start = end - timedelta(days=lookback_days)
        return start.isoformat(), end.isoformat()

    async def margin_stats(self, symbol: str, lookback_days: int = 35) -> Optional[MarginSignal]:
        if not self.enabled:
            return None
        start, end = self._date_range(lookback_days)
        try:
            rows = await self.fetch(
                "TaiwanStockMarginPurchaseShortSale",
                data_id=symbol,
                start_date=start,
                end_date=end,
            )
            return margin_signal(rows)
        except Exception as e:
            logger.debug(f"{symbol}: margin stats unavailable: {e}")
            return None

    async def day_trading_stats(self, symbol: str, lookback_days: int = 35) -> Optional[DayTradeSignal]:
        if not self.enabled:
            return None
        start, end = self._date_range(lookback_days)
        try:
            rows = await self.fetch(
                "TaiwanStockDayTrading",
                data_id=symbol,
                start_date=start,
                end_date=end,
            )
            if not rows:
                rows = await self.fetch(
                    "TaiwanStockDayTrading",
                    stock_id=symbol,
                    start_date=start,
                    end_date=end,
                )
            return day_trade_signal(rows)
        except Exception as e:
            logger.debug(f"{symbol}: day-trading stats unavailable: {e}")
            return None

    async def secondary_signals(self, symbol: str, lookback_days: int = 35) -> SecondarySignals:
        """Both secondary signals for one symbol, each independently nullable."""
        margin, day_trade = await asyncio.gather(
            self.margin_stats(symbol, lookback_days),
            self.day_trading_stats(symbol, lookback_days),
        )
        return SecondarySignals(
            margin=margin,
            day_trade=day_trade,
            badges=secondary_badges(margin, day_trade),
            enabled=self.enabled,
            stage="stage2",
        )
