"""
Institutional (three major investors) flow aggregation.

TWSE publishes one T86 record set per trading date covering every symbol.
For a symbol and a window of W trading dates we sum foreign, investment
trust and dealer net volumes and count the consecutive net-buy streak
from the most recent date backward.
"""
import asyncio
import logging
import httpx
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

from ..cache import ResponseCache
from ..schemas import InstitutionalDay, InstitutionalRecord, InstitutionalSummary
from .adapters import T86Adapter
from .http import get_json

logger = logging.getLogger(__name__)

TAIPEI = ZoneInfo("Asia/Taipei")


def taipei_today() -> date:
    return datetime.now(TAIPEI).date()


def summarize(
    days: Sequence[InstitutionalDay],
    window_days: int,
    name: str = "",
) -> InstitutionalSummary:
    """
    Aggregate per-date nets into a window summary.

    `days` must be ordered most recent first. Streaks stop at the first
    date whose total is not strictly positive (negative for sell streak).
    """
    sum_foreign = sum(d.foreign_net for d in days)
    sum_trust = sum(d.trust_net for d in days)
    sum_dealer = sum(d.dealer_net for d in days)
    totals = [d.total_net for d in days]

    buy_streak = 0
    for total in totals:
        if total > 0:
            buy_streak += 1
        else:
            break

    sell_streak = 0
    for total in totals:
        if total < 0:
            sell_streak += 1
        else:
            break

    return InstitutionalSummary(
        window_days=window_days,
        dates=[d.date for d in days],
        name=name,
        sum_foreign=sum_foreign,
        sum_trust=sum_trust,
        sum_dealer=sum_dealer,
        sum_total=sum_foreign + sum_trust + sum_dealer,
        buy_streak=buy_streak,
        sell_streak=sell_streak,
        latest_total_net=totals[0] if totals else 0.0,
    )


class InstitutionalFlowAggregator:
    """
    Resolve recent trading dates and summarize a symbol's institutional flow.

    Per-date record sets and the resolved date list are memoized on the
    instance, so one aggregator should serve one run.
    """

    T86_URL = "https://www.twse.com.tw/fund/T86"

    def __init__(
        self,
        client: httpx.AsyncClient,
        cache: Optional[ResponseCache] = None,
        timeout: float = 20.0,
        cache_ttl: float = 30 * 60,
        max_lookback_attempts: int = 60,
        pace_seconds: float = 0.03,
        today: Callable[[], date] = taipei_today,
        adapter: Optional[T86Adapter] = None,
    ):
        self.client = client
        self.cache = cache
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.max_lookback_attempts = max_lookback_attempts
        self.pace_seconds = pace_seconds
        self.today = today
        self.adapter = adapter or T86Adapter()

        self._days: Dict[str, Dict[str, InstitutionalRecord]] = {}
        self._resolved: Dict[tuple, List[str]] = {}
        self._resolve_lock = asyncio.Lock()

    async def fetch_day(self, day: str) -> Dict[str, InstitutionalRecord]:
        """All symbols' records for one YYYYMMDD date. Empty on non-trading days."""
        if day in self._days:
            return self._days[day]

        payload = await get_json(
            self.client,
            self.T86_URL,
            params={"response": "json", "date": day, "selectType": "ALLBUT0999"},
            headers={"Referer": "https://www.twse.com.tw/"},
            timeout=self.timeout,
            cache=self.cache,
            cache_key=f"twse:t86:{day}",
            ttl_seconds=self.cache_ttl,
        )
        records = self.adapter.parse(payload)
        self._days[day] = records
        return records

    async def resolve_dates(self, window_days: int, end_date: Optional[date] = None) -> List[str]:
        """
        Walk back from end_date collecting dates that have data.

        Returns up to `window_days` YYYYMMDD strings, most recent first.
        Fewer are returned if the lookback budget runs out.
        """
        end = end_date or self.today()
        key = (window_days, end.isoformat())

        async with self._resolve_lock:
            if key in self._resolved:
                return self._resolved[key]

            dates: List[str] = []
            current = end
            for _ in range(self.max_lookback_attempts):
                if len(dates) >= window_days:
                    break
                day = current.strftime("%Y%m%d")
                try:
                    records = await self.fetch_day(day)
                    if records:
                        dates.append(day)
                except (httpx.HTTPError, ValueError) as e:
                    logger.debug(f"T86 {day} unavailable: {e}")
                current -= timedelta(days=1)
                if self.pace_seconds > 0:
                    await asyncio.sleep(self.pace_seconds)

            if len(dates) < window_days:
                logger.warning(
                    f"Resolved only {len(dates)}/{window_days} trading dates "
                    f"within {self.max_lookback_attempts} days"
                )
            self._resolved[key] = dates
            return dates

    async def get_summary(
        self,
        symbol: str,
        window_days: int = 10,
        end_date: Optional[date] = None,
    ) -> InstitutionalSummary:
        """Summarize one symbol over the W most recent trading dates."""
        dates = await self.resolve_dates(window_days, end_date)
        # results follow `dates` order whatever order the fetches finish in
        by_date = await asyncio.gather(*(self.fetch_day(day) for day in dates))

        days: List[InstitutionalDay] = []
        name = ""
        for day, records in zip(dates, by_date):
            found = records.get(symbol)
            if found is None:
                days.append(InstitutionalDay(date=day))
                continue
            if not name and found.name:
                name = found.name
            days.append(InstitutionalDay(
                date=day,
                foreign_net=found.foreign_net,
                trust_net=found.trust_net,
                dealer_net=found.dealer_net,
            ))

        return summarize(days, window_days, name=name)
