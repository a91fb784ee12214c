"""
Tests for configuration loading and validation.
"""

import json

import httpx
import pytest

import twse_picker.main as cli
from twse_picker.config import PickerConfig, load_config
from twse_picker.main import build_parser, main
from twse_picker.pipeline import PickPipeline


ENV_VARS = [
    "FINMIND_TOKEN", "POOL_SIZE", "MIN_LIQ_SHARES", "MIN_PRICE", "RSI_MIN", "RSI_MAX",
    "STAGE2_TOPK", "STAGE1_CONCURRENCY", "STAGE2_CONCURRENCY", "WINDOW_DAYS",
    "MIN_PICK_SCORE", "NEAR_HIGH_GATE_ENABLED", "LOG_LEVEL", "TOP_N",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestPickerConfig:

    def test_defaults(self):
        cfg = PickerConfig()
        assert cfg.pool_size == 600
        assert cfg.min_liquidity_shares == 500_000
        assert cfg.min_price == 10.0
        assert (cfg.rsi_min, cfg.rsi_max) == (50.0, 82.0)
        assert cfg.stage2_top_k == 40
        assert (cfg.stage1_concurrency, cfg.stage2_concurrency) == (6, 5)
        assert cfg.window_days == 10
        assert cfg.near_high_gate_enabled is False
        assert cfg.finmind_enabled is False

    def test_inverted_rsi_band_rejected(self):
        with pytest.raises(ValueError, match="RSI"):
            PickerConfig(rsi_min=90, rsi_max=10)

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ValueError):
            PickerConfig(stage1_concurrency=0)

    def test_describe_mentions_stage_two(self):
        assert "disabled" in PickerConfig().describe()
        assert "top40" in PickerConfig(finmind_token="t").describe()


class TestLoadConfig:

    def test_reads_environment(self, clean_env):
        clean_env.setenv("FINMIND_TOKEN", " abc ")
        clean_env.setenv("POOL_SIZE", "800")
        clean_env.setenv("MIN_PRICE", "15.5")
        clean_env.setenv("NEAR_HIGH_GATE_ENABLED", "true")
        clean_env.setenv("LOG_LEVEL", "debug")

        cfg = load_config()
        assert cfg.finmind_token == "abc"
        assert cfg.finmind_enabled is True
        assert cfg.pool_size == 800
        assert cfg.min_price == 15.5
        assert cfg.near_high_gate_enabled is True
        assert cfg.log_level == "DEBUG"

    def test_unparseable_values_fall_back(self, clean_env):
        clean_env.setenv("POOL_SIZE", "lots")
        clean_env.setenv("RSI_MAX", "high")
        cfg = load_config()
        assert cfg.pool_size == 600
        assert cfg.rsi_max == 82.0

    def test_invalid_combination_raises(self, clean_env):
        clean_env.setenv("RSI_MIN", "90")
        clean_env.setenv("RSI_MAX", "60")
        with pytest.raises(ValueError):
            load_config()


class TestCommandLine:

    def test_parser(self):
        args = build_parser().parse_args(["--bucket", "100_300", "--top-k", "20", "--window", "5"])
        assert args.bucket == "100_300"
        assert args.top_k == 20
        assert args.window == 5
        assert args.symbol is None

    def test_config_error_exit_code(self, clean_env, capsys):
        clean_env.setenv("RSI_MIN", "90")
        clean_env.setenv("RSI_MAX", "60")
        assert main([]) == 1
        assert "CONFIGURATION ERROR" in capsys.readouterr().err

    def test_diagnose_pool_flag(self):
        assert build_parser().parse_args([]).diagnose_pool is False
        assert build_parser().parse_args(["--diagnose-pool"]).diagnose_pool is True

    @pytest.mark.asyncio
    async def test_diagnose_pool_prints_filter_counts(self, monkeypatch):
        rows = [
            {"Code": "2330", "Name": "台積電", "TradeVolume": "30,000,000", "ClosingPrice": "580"},
            {"Code": "0050", "Name": "元大台灣50", "TradeVolume": "9,000,000", "ClosingPrice": "130"},
            {"Code": "2303", "Name": "聯電", "TradeVolume": "400,000", "ClosingPrice": "47"},
        ]

        def handler(request):
            return httpx.Response(200, json=rows)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        monkeypatch.setattr(cli, "PickPipeline", lambda cfg: PickPipeline(cfg, client=client))

        async with client:
            output = await cli.run(PickerConfig(), build_parser().parse_args(["--diagnose-pool"]))

        report = json.loads(output)
        assert report["raw_count"] == 3
        assert report["parsed_count"] == 2
        assert report["filtered_count"] == 1
        assert report["head_filtered"][0]["symbol"] == "2330"
        assert report["thresholds"]["min_price"] == 10.0
        assert "台積電" in output
