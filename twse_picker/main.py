"""
Command-line entry point: run one screening batch and print JSON.
"""
import argparse
import asyncio
import json
import logging
import sys

from .config import load_config, PickerConfig
from .pipeline import PickPipeline


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [PICKER] %(levelname)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rank TWSE stocks and print the top picks as JSON")
    parser.add_argument("--symbol", "-s", help="Analyze a single symbol instead of running a batch")
    parser.add_argument("--window", "-w", type=int, help="Institutional window in trading days")
    parser.add_argument(
        "--bucket",
        "-b",
        default="all",
        choices=["all", "lt100", "100_300", "300_600", "600_1000", "gt1000"],
        help="Restrict picks to one price band",
    )
    parser.add_argument("--top-k", type=int, help="Stage-2 candidate count (10-100)")
    parser.add_argument("--per-bucket", type=int, help="Also emit N picks for every price band")
    parser.add_argument(
        "--diagnose-pool",
        action="store_true",
        help="Print counts at each pool filter step instead of ranking",
    )
    return parser


async def run(cfg: PickerConfig, args: argparse.Namespace) -> str:
    async with PickPipeline(cfg) as pipeline:
        if args.diagnose_pool:
            report = await pipeline.diagnose_pool()
            return json.dumps(report, ensure_ascii=False, indent=2)
        if args.symbol:
            analysis = await pipeline.analyze_symbol(args.symbol, window_days=args.window)
            return analysis.model_dump_json(indent=2)
        result = await pipeline.run(
            window_days=args.window,
            bucket_key=args.bucket,
            top_k=args.top_k,
            per_bucket=args.per_bucket,
        )
        return result.model_dump_json(indent=2)


def main(argv=None) -> int:
    """Entry point."""
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config()
    except ValueError as e:
        print(f"CONFIGURATION ERROR: {e}", file=sys.stderr)
        return 1

    configure_logging(cfg.log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting run: {cfg.describe()}")

    output = asyncio.run(run(cfg, args))
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
