"""
Schema adapters for upstream payloads.

Each adapter understands exactly one payload shape and produces canonical
records. Upstream snapshots spell the same field several ways, so keyed
adapters look fields up through a prioritized key list. A field that
cannot be found or parsed becomes blank/zero instead of raising.
"""
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from ..errors import SourceError
from ..schemas import Bar, BarSeries, InstitutionalRecord, PoolEntry, StockInfo


COMMON_STOCK_PATTERN = re.compile(r"^[1-9]\d{3}$")


def to_num(value: Any) -> float:
    """Parse exchange-formatted numbers ("1,234", "--", None) to float, 0 when blank."""
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    text = str(value).replace(",", "").strip()
    if not text or text == "--":
        return 0.0
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def pick_first(mapping: Mapping[str, Any], keys: Iterable[str], default: Any = None) -> Any:
    """Return the value of the first key present in the mapping."""
    if not isinstance(mapping, Mapping):
        return default
    for key in keys:
        if key in mapping:
            return mapping[key]
    return default


def is_common_stock(symbol: str) -> bool:
    """Ordinary listed shares carry a 4-digit code 1000-9999; 00xx codes are ETFs."""
    return bool(COMMON_STOCK_PATTERN.match(symbol))


def _cell(row: Sequence[Any], index: int) -> Any:
    return row[index] if 0 <= index < len(row) else None


# ---------------------------------------------------------------------------
# Bulk end-of-day records
# ---------------------------------------------------------------------------

class KeyedDayAllAdapter:
    """STOCK_DAY_ALL rows as keyed objects (OpenAPI and localized exports)."""

    SYMBOL_KEYS = ("Code", "證券代號", "股票代號")
    NAME_KEYS = ("Name", "證券名稱", "股票名稱")
    VOLUME_KEYS = ("TradeVolume", "成交股數", "成交股數(股)")
    CLOSE_KEYS = ("ClosingPrice", "收盤價", "收盤")

    def accepts(self, row: Any) -> bool:
        return isinstance(row, Mapping)

    def parse_row(self, row: Mapping[str, Any]) -> PoolEntry:
        return PoolEntry(
            symbol=str(pick_first(row, self.SYMBOL_KEYS, "") or "").strip(),
            name=str(pick_first(row, self.NAME_KEYS, "") or "").strip(),
            volume=to_num(pick_first(row, self.VOLUME_KEYS, 0)),
            close=to_num(pick_first(row, self.CLOSE_KEYS, 0)),
        )


class PositionalDayAllAdapter:
    """
    Legacy STOCK_DAY_ALL rows as fixed-position arrays.

    [0] code [1] name [2] volume [3] value [4] open [5] high [6] low [7] close
    """

    SYMBOL_INDEX = 0
    NAME_INDEX = 1
    VOLUME_INDEX = 2
    CLOSE_INDEX = 7

    def accepts(self, row: Any) -> bool:
        return isinstance(row, (list, tuple))

    def parse_row(self, row: Sequence[Any]) -> PoolEntry:
        return PoolEntry(
            symbol=str(_cell(row, self.SYMBOL_INDEX) or "").strip(),
            name=str(_cell(row, self.NAME_INDEX) or "").strip(),
            volume=to_num(_cell(row, self.VOLUME_INDEX)),
            close=to_num(_cell(row, self.CLOSE_INDEX)),
        )


DAY_ALL_ADAPTERS = (KeyedDayAllAdapter(), PositionalDayAllAdapter())


def parse_day_all(rows: Iterable[Any]) -> List[PoolEntry]:
    """Canonicalize a mixed bulk record set. Rows no adapter accepts are skipped."""
    entries: List[PoolEntry] = []
    for row in rows or []:
        for adapter in DAY_ALL_ADAPTERS:
            if adapter.accepts(row):
                entries.append(adapter.parse_row(row))
                break
    return entries


def day_all_rows(payload: Any) -> List[Any]:
    """Extract the row list from either bulk payload envelope."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        data = payload.get("data")
        if isinstance(data, list):
            return data
    return []


# ---------------------------------------------------------------------------
# Historical bars
# ---------------------------------------------------------------------------

class YahooChartAdapter:
    """Yahoo v8 chart payload -> BarSeries."""

    source = "yahoo"

    def parse(self, payload: Any, symbol: str) -> BarSeries:
        results = (payload.get("chart") or {}).get("result") if isinstance(payload, Mapping) else None
        if not results:
            raise SourceError(self.source, f"chart has no result for {symbol}")
        result = results[0] or {}

        meta = result.get("meta") or {}
        name = str(meta.get("shortName") or meta.get("longName") or "").strip()

        timestamps = result.get("timestamp") or []
        quotes = (result.get("indicators") or {}).get("quote") or [{}]
        quote = quotes[0] or {}

        def column(key: str) -> List[Any]:
            return list(quote.get(key) or [])

        opens, highs, lows = column("open"), column("high"), column("low")
        closes, volumes = column("close"), column("volume")

        bars: List[Bar] = []
        for i, ts in enumerate(timestamps):
            close = to_num(_cell(closes, i))
            volume = to_num(_cell(volumes, i))
            # non-trading bars: missing close or no volume
            if close <= 0 or volume <= 0:
                continue
            bars.append(Bar(
                date=_iso_date(ts),
                open=to_num(_cell(opens, i)),
                high=to_num(_cell(highs, i)),
                low=to_num(_cell(lows, i)),
                close=close,
                volume=volume,
            ))

        return BarSeries(symbol=symbol, name=name, bars=bars)


def _iso_date(epoch_seconds: Any) -> str:
    try:
        return datetime.fromtimestamp(float(epoch_seconds), tz=timezone.utc).strftime("%Y-%m-%d")
    except (TypeError, ValueError, OverflowError, OSError):
        return ""


# ---------------------------------------------------------------------------
# Institutional (T86) records
# ---------------------------------------------------------------------------

class T86Adapter:
    """
    TWSE T86 per-date payload -> {symbol: InstitutionalRecord}.

    Column positions are read from the payload's `fields` header when it is
    present. Foreign flow is the sum of the ex-dealer foreign column and the
    foreign-dealer column.
    """

    FOREIGN_PREFIXES = ("外陸資買賣超", "外資買賣超", "外資自營商買賣超")
    TRUST_PREFIXES = ("投信買賣超",)
    DEALER_FIELDS = ("自營商買賣超股數", "自營商買賣超")

    DEFAULT_FOREIGN = (4, 7)
    DEFAULT_TRUST = (10,)
    DEFAULT_DEALER = (11,)

    def parse(self, payload: Any) -> Dict[str, InstitutionalRecord]:
        if not isinstance(payload, Mapping):
            return {}
        rows = payload.get("data") or []
        foreign, trust, dealer = self._columns(payload.get("fields"))

        records: Dict[str, InstitutionalRecord] = {}
        for row in rows:
            if not isinstance(row, (list, tuple)):
                continue
            symbol = str(_cell(row, 0) or "").strip()
            if not is_common_stock(symbol):
                continue
            records[symbol] = InstitutionalRecord(
                symbol=symbol,
                name=str(_cell(row, 1) or "").strip(),
                foreign_net=sum(to_num(_cell(row, i)) for i in foreign),
                trust_net=sum(to_num(_cell(row, i)) for i in trust),
                dealer_net=sum(to_num(_cell(row, i)) for i in dealer),
            )
        return records

    def _columns(self, fields: Any):
        if not isinstance(fields, list) or not fields:
            return self.DEFAULT_FOREIGN, self.DEFAULT_TRUST, self.DEFAULT_DEALER

        names = [str(f).strip() for f in fields]
        foreign = tuple(i for i, n in enumerate(names) if n.startswith(self.FOREIGN_PREFIXES))
        trust = tuple(i for i, n in enumerate(names) if n.startswith(self.TRUST_PREFIXES))
        dealer = tuple(i for i, n in enumerate(names) if n in self.DEALER_FIELDS)

        return (
            foreign or self.DEFAULT_FOREIGN,
            trust or self.DEFAULT_TRUST,
            dealer or self.DEFAULT_DEALER,
        )


# ---------------------------------------------------------------------------
# FinMind datasets
# ---------------------------------------------------------------------------

class FinMindStockInfoAdapter:
    """TaiwanStockInfo rows -> {symbol: StockInfo}."""

    def parse(self, rows: Iterable[Any]) -> Dict[str, StockInfo]:
        info: Dict[str, StockInfo] = {}
        for row in rows or []:
            if not isinstance(row, Mapping):
                continue
            symbol = str(row.get("stock_id") or "").strip()
            if not symbol:
                continue
            info[symbol] = StockInfo(
                name=str(row.get("stock_name") or "").strip(),
                industry=str(row.get("industry_category") or "").strip(),
                board_type=str(row.get("type") or "").strip(),
            )
        return info


def finmind_rows(payload: Any) -> List[Dict[str, Any]]:
    """Extract `data` rows from a FinMind response envelope."""
    if isinstance(payload, Mapping):
        data = payload.get("data")
        if isinstance(data, list):
            return [row for row in data if isinstance(row, Mapping)]
    return []


def sort_dated_rows(rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Attach a normalized YYYY-MM-DD `date`, drop undated rows, sort ascending."""
    dated = []
    for row in rows or []:
        date = str(row.get("date") or row.get("Date") or "")[:10]
        if not date:
            continue
        dated.append({**row, "date": date})
    dated.sort(key=lambda r: r["date"])
    return dated
