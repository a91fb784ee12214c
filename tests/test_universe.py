"""
Tests for universe construction and the bulk-source fallback.
"""

import httpx
import pytest

from twse_picker.cache import InMemoryTTLCache
from twse_picker.schemas import StockInfo
from twse_picker.sources.universe import UniverseBuilder, build_pool, is_innovation_board


def keyed(code, volume, close, name=""):
    return {"Code": code, "Name": name, "TradeVolume": str(volume), "ClosingPrice": str(close)}


class TestBuildPool:

    def test_filters_and_invariants(self):
        rows = [
            keyed("2330", 30_000_000, 580),
            keyed("0050", 9_000_000, 130),      # ETF
            keyed("2303", 400_000, 47),         # illiquid
            keyed("2888", 5_000_000, 8.5),      # below price floor
            keyed("2317", 20_000_000, 105),
            keyed("2330", 1_000_000, 580),      # duplicate
            keyed("1101", 700_000, 35),
        ]
        pool = build_pool(rows, pool_size=600, min_liquidity_shares=500_000, min_price=10)

        assert [e.symbol for e in pool] == ["2330", "2317", "1101"]
        assert all(e.volume > 500_000 and e.close > 10 for e in pool)
        volumes = [e.volume for e in pool]
        assert volumes == sorted(volumes, reverse=True)

    def test_thresholds_are_strict(self):
        rows = [keyed("1111", 500_000, 50), keyed("2222", 900_000, 10), keyed("3333", 500_001, 10.01)]
        pool = build_pool(rows, min_liquidity_shares=500_000, min_price=10)
        assert [e.symbol for e in pool] == ["3333"]

    def test_cap(self):
        rows = [keyed(f"{1000 + i}", 1_000_000 + i, 20) for i in range(50)]
        pool = build_pool(rows, pool_size=10)
        assert len(pool) == 10
        assert pool[0].symbol == "1049"

    def test_innovation_board_excluded(self):
        rows = [keyed("6811", 2_000_000, 60), keyed("2330", 1_000_000, 580)]
        info = {"6811": StockInfo(name="X", board_type="創新板")}
        pool = build_pool(rows, info_map=info)
        assert [e.symbol for e in pool] == ["2330"]

    def test_unknown_classification_passes(self):
        assert is_innovation_board(None) is False
        assert is_innovation_board(StockInfo(board_type="twse")) is False
        assert is_innovation_board(StockInfo(board_type="Innovation Board")) is True


class TestUniverseBuilder:

    def make_builder(self, handler, cache=None):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return client, UniverseBuilder(client, cache=cache, pool_size=600)

    @pytest.mark.asyncio
    async def test_primary_source(self):
        def handler(request):
            assert request.url.host == "openapi.twse.com.tw"
            return httpx.Response(200, json=[keyed("2330", 30_000_000, 580), keyed("2317", 20_000_000, 105)])

        client, builder = self.make_builder(handler)
        async with client:
            pool = await builder.build()
        assert [e.symbol for e in pool] == ["2330", "2317"]

    @pytest.mark.asyncio
    async def test_falls_back_to_secondary(self):
        hosts = []

        def handler(request):
            hosts.append(request.url.host)
            if request.url.host == "openapi.twse.com.tw":
                return httpx.Response(503)
            assert request.url.params["response"] == "json"
            return httpx.Response(200, json={
                "stat": "OK",
                "data": [["2303", "聯電", "40,000,000", "0", "0", "0", "0", "47.85"]],
            })

        client, builder = self.make_builder(handler)
        async with client:
            pool = await builder.build()
        assert hosts == ["openapi.twse.com.tw", "www.twse.com.tw"]
        assert [e.symbol for e in pool] == ["2303"]
        assert pool[0].close == 47.85

    @pytest.mark.asyncio
    async def test_empty_primary_triggers_fallback(self):
        def handler(request):
            if request.url.host == "openapi.twse.com.tw":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json={"data": [["1101", "台泥", "900,000", "", "", "", "", "35"]]})

        client, builder = self.make_builder(handler)
        async with client:
            pool = await builder.build()
        assert [e.symbol for e in pool] == ["1101"]

    @pytest.mark.asyncio
    async def test_both_sources_fail_gives_empty_pool(self):
        def handler(request):
            return httpx.Response(500, text="down")

        client, builder = self.make_builder(handler)
        async with client:
            pool = await builder.build()
        assert pool == []

    @pytest.mark.asyncio
    async def test_non_json_body_is_a_failure(self):
        def handler(request):
            return httpx.Response(200, text="<html>maintenance</html>")

        client, builder = self.make_builder(handler)
        async with client:
            assert await builder.fetch_day_all() == []

    @pytest.mark.asyncio
    async def test_rows_are_cached(self):
        calls = []

        def handler(request):
            calls.append(request.url.host)
            return httpx.Response(200, json=[keyed("2330", 30_000_000, 580)])

        client, builder = self.make_builder(handler, cache=InMemoryTTLCache())
        async with client:
            await builder.build()
            await builder.build()
        assert len(calls) == 1

    def test_diagnose(self):
        builder = UniverseBuilder(client=None, pool_size=600)
        rows = [keyed("2330", 30_000_000, 580), keyed("0050", 9_000_000, 130), keyed("2303", 1, 47)]
        report = builder.diagnose(rows)
        assert report["raw_count"] == 3
        assert report["parsed_count"] == 2
        assert report["filtered_count"] == 1
        assert report["head_filtered"][0]["symbol"] == "2330"
        assert report["thresholds"]["min_price"] == 10.0
