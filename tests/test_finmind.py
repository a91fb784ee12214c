"""
Tests for FinMind secondary signals and the FinMind client.
"""

from datetime import date

import httpx
import pytest

from twse_picker.sources.finmind import (
    BADGE_DAY_TRADE_HOT,
    BADGE_MARGIN_HOT,
    FinMindClient,
    day_trade_signal,
    margin_signal,
)


def margin_rows(balances, key="MarginPurchaseTodayBalance"):
    return [
        {"date": f"2024-01-{i + 1:02d}", key: b, "ShortSaleTodayBalance": 100}
        for i, b in enumerate(balances)
    ]


class TestMarginSignal:

    def test_hot_on_rising_balance(self):
        signal = margin_signal(margin_rows([1000, 1010, 1030, 1060, 1100]))
        assert signal.hot is True
        assert signal.mp_inc_streak == 4
        assert signal.mp_delta == 100
        assert signal.last_date == "2024-01-05"

    def test_short_streak_is_not_hot(self):
        signal = margin_signal(margin_rows([1000, 1100, 1090, 1095, 1100]))
        assert signal.mp_inc_streak == 2
        assert signal.hot is False

    def test_small_change_is_not_hot(self):
        signal = margin_signal(margin_rows([1000, 1001, 1002, 1003, 1004]))
        assert signal.mp_inc_streak == 4
        assert signal.hot is False

    def test_zero_first_balance_uses_absolute_change(self):
        rows = [
            {"date": f"2024-01-0{i + 1}", "MarginPurchase": b, "ShortSale": 0}
            for i, b in enumerate([0, 0, 5, 10, 20])
        ]
        signal = margin_signal(rows)
        assert signal.mp_inc_streak == 3
        assert signal.hot is True

    def test_uses_trailing_window(self):
        balances = [5000] + [1000 + 10 * i for i in range(12)]
        signal = margin_signal(margin_rows(balances))
        assert signal.mp_delta == 110

    def test_too_few_rows(self):
        assert margin_signal(margin_rows([1, 2])) is None

    def test_unsorted_rows(self):
        rows = list(reversed(margin_rows([1000, 1010, 1030, 1060, 1100])))
        assert margin_signal(rows).hot is True


class TestDayTradeSignal:

    def test_fraction_scaled_to_percent(self):
        signal = day_trade_signal([{"date": "2024-01-02", "DayTradingRatio": 0.4, "DayTradingVolume": 500}])
        assert signal.ratio == pytest.approx(40.0)
        assert signal.hot is True
        assert signal.volume == 500

    def test_percentage_below_threshold(self):
        signal = day_trade_signal([{"date": "2024-01-02", "DayTradingVolumeRatio(%)": "12.5"}])
        assert signal.ratio == 12.5
        assert signal.hot is False

    def test_latest_row_with_ratio(self):
        rows = [
            {"date": "2024-01-02", "day_trading_ratio": 36},
            {"date": "2024-01-03", "day_trading_ratio": ""},
        ]
        signal = day_trade_signal(rows)
        assert signal.ratio == 36
        assert signal.last_date == "2024-01-02"

    def test_no_ratio_anywhere(self):
        assert day_trade_signal([{"date": "2024-01-02", "Volume": 1}]) is None
        assert day_trade_signal([]) is None


class TestFinMindClient:

    def make(self, handler, token="secret"):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        finmind = FinMindClient(client, token=token, today=lambda: date(2024, 2, 5))
        return client, finmind

    @pytest.mark.asyncio
    async def test_disabled_without_token(self):
        def handler(request):
            raise AssertionError("no request expected")

        client, finmind = self.make(handler, token="  ")
        async with client:
            assert finmind.enabled is False
            signals = await finmind.secondary_signals("2330")
        assert signals.margin is None
        assert signals.day_trade is None
        assert signals.enabled is False
        assert signals.badges == []

    @pytest.mark.asyncio
    async def test_v4_uses_bearer_token(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"msg": "success", "data": margin_rows([1000, 1010, 1030, 1060, 1100])})

        client, finmind = self.make(handler)
        async with client:
            signal = await finmind.margin_stats("2330", lookback_days=35)
        assert signal.hot is True
        request = seen[0]
        assert request.url.path == "/api/v4/data"
        assert request.headers["Authorization"] == "Bearer secret"
        assert request.url.params["data_id"] == "2330"
        assert request.url.params["start_date"] == "2024-01-01"
        assert request.url.params["end_date"] == "2024-02-05"

    @pytest.mark.asyncio
    async def test_falls_back_to_v3(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            if request.url.path == "/api/v4/data":
                return httpx.Response(402, json={"msg": "quota"})
            assert request.url.params["token"] == "secret"
            return httpx.Response(200, json={"data": [{"date": "2024-02-02", "DayTradingRatio": 50}]})

        client, finmind = self.make(handler)
        async with client:
            signal = await finmind.day_trading_stats("2330")
        assert paths == ["/api/v4/data", "/api/v3/data"]
        assert signal.hot is True

    @pytest.mark.asyncio
    async def test_day_trading_retries_by_stock_id(self):
        queries = []

        def handler(request):
            params = dict(request.url.params)
            queries.append(params)
            if "data_id" in params:
                return httpx.Response(200, json={"data": []})
            return httpx.Response(200, json={"data": [{"date": "2024-02-02", "DayTradingRatio": 10}]})

        client, finmind = self.make(handler)
        async with client:
            signal = await finmind.day_trading_stats("2330")
        assert signal.ratio == 10
        assert queries[-1]["stock_id"] == "2330"

    @pytest.mark.asyncio
    async def test_errors_yield_null_signals(self):
        def handler(request):
            return httpx.Response(500)

        client, finmind = self.make(handler)
        async with client:
            signals = await finmind.secondary_signals("2330")
        assert signals.enabled is True
        assert signals.stage == "stage2"
        assert signals.margin is None
        assert signals.day_trade is None

    @pytest.mark.asyncio
    async def test_badges(self):
        def handler(request):
            dataset = request.url.params["dataset"]
            if dataset == "TaiwanStockMarginPurchaseShortSale":
                return httpx.Response(200, json={"data": margin_rows([1000, 1010, 1030, 1060, 1100])})
            return httpx.Response(200, json={"data": [{"date": "2024-02-02", "DayTradingRatio": 0.5}]})

        client, finmind = self.make(handler)
        async with client:
            signals = await finmind.secondary_signals("2330")
        assert signals.badges == [BADGE_MARGIN_HOT, BADGE_DAY_TRADE_HOT]

    @pytest.mark.asyncio
    async def test_stock_info_without_token_uses_v3(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"data": [
                {"stock_id": "2330", "stock_name": "台積電", "industry_category": "半導體業", "type": "twse"},
            ]})

        client, finmind = self.make(handler, token="")
        async with client:
            info = await finmind.stock_info_map()
        assert paths == ["/api/v3/data"]
        assert info["2330"].name == "台積電"

    @pytest.mark.asyncio
    async def test_stock_info_failure_is_empty(self):
        def handler(request):
            return httpx.Response(503)

        client, finmind = self.make(handler)
        async with client:
            assert await finmind.stock_info_map() == {}
