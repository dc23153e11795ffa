"""
tradesim runner.
CLI entry point for single simulations or a JSON batch of configurations.

Usage:
    python scripts/run_backtest.py --symbol VGS --start 2020-01-01 --end 2023-12-31 \
        --funds 10000 --deposit 500 --deposit-months 1 --trade-value 1000 --fees cmc_markets
    python scripts/run_backtest.py --batch configs.json --output results/
"""

import argparse
import json
import logging
from decimal import Decimal

from tradesim.backtest.feed import CSVPriceDataProvider
from tradesim.backtest.sink import EventFileSink
from tradesim.core.config import settings
from tradesim.core.exceptions import ConfigurationError, DataGapError
from tradesim.core.models import load_simulation_config
from tradesim.core.telemetry import configure_logging, setup_telemetry
from tradesim.services.batch import run_batch

logger = logging.getLogger("tradesim.runner")


def config_from_args(args) -> dict:
    config = {
        "name": f"{args.symbol}-{args.fees}-{args.trade_value}",
        "equity": {"symbol": args.symbol},
        "window": {"start": args.start, "end": args.end, "warm_up_days": args.warm_up},
        "opening_funds": args.funds,
        "interest_percent": args.interest,
        "brokerage": {"fee_structure": args.fees},
        "entry": {
            "kind": args.entry,
            "trade_value": args.trade_value,
            "interval_days": args.interval,
        },
        "exit": {"kind": args.exit},
    }
    if args.deposit:
        config["deposit"] = {"amount": args.deposit, "every_months": args.deposit_months}
    return config


def main(args) -> int:
    if args.batch:
        with open(args.batch, "r") as f:
            raw = json.load(f)
    else:
        raw = [config_from_args(args)]

    try:
        configs = [load_simulation_config(item) for item in raw]
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    provider = CSVPriceDataProvider(args.data_dir)
    sink = (
        EventFileSink(args.output, settings.SINK_MAX_WORKERS, settings.SINK_SHUTDOWN_TIMEOUT_S)
        if args.output
        else None
    )

    try:
        results = run_batch(configs, provider, max_workers=args.workers, sink=sink)
    finally:
        if sink is not None:
            sink.shutdown()

    for batch_result in results:
        if not batch_result.ok:
            logger.error(f"{batch_result.name}: {batch_result.error}")
            continue
        run = batch_result.result
        logger.info(f"{run.name}: net worth {run.report.final_net_worth}")
        for key, value in run.metrics.items():
            logger.info(f"  {key:<18} {value:.4f}" if isinstance(value, float) else f"  {key:<18} {value}")
        if run.roi.total.results:
            logger.info(f"  {'roi_total_pct':<18} {run.roi.total.results[-1].percentage:.4f}")

    return 0 if all(r.ok for r in results) else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="tradesim backtest runner")
    parser.add_argument("--batch", type=str, help="JSON file with a list of configurations")
    parser.add_argument("--symbol", type=str, default="VGS", help="Equity symbol (CSV file name)")
    parser.add_argument("--start", type=str, help="Start Date (YYYY-MM-DD)")
    parser.add_argument("--end", type=str, help="End Date (YYYY-MM-DD)")
    parser.add_argument("--warm-up", type=int, default=0, help="Warm-up calendar days")
    parser.add_argument("--funds", type=Decimal, default=Decimal("10000"), help="Opening funds")
    parser.add_argument("--interest", type=Decimal, default=Decimal("0"), help="Annual interest %%")
    parser.add_argument("--deposit", type=Decimal, default=None, help="Regular deposit amount")
    parser.add_argument("--deposit-months", type=int, default=1, help="Months between deposits")
    parser.add_argument("--trade-value", type=Decimal, default=Decimal("1000"), help="Value per entry order")
    parser.add_argument("--interval", type=int, default=30, help="Days between periodic entries")
    parser.add_argument("--entry", choices=["periodic", "signal"], default="periodic")
    parser.add_argument("--exit", choices=["hold", "signal"], default="hold")
    parser.add_argument(
        "--fees",
        choices=["zero", "cmc_markets", "bell_direct", "vanguard_retail"],
        default="zero",
    )
    parser.add_argument("--data-dir", type=str, default=settings.DATA_DIR, help="Directory of <SYMBOL>.csv")
    parser.add_argument("--output", type=str, default=None, help="Write event files here")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent runs")

    args = parser.parse_args()
    if not args.batch and not (args.start and args.end):
        parser.error("--start and --end are required without --batch")

    configure_logging(settings.LOG_LEVEL)
    setup_telemetry(settings.OTEL_SERVICE_NAME, settings.OTEL_EXPORTER_OTLP_ENDPOINT or None)

    try:
        raise SystemExit(main(args))
    except KeyboardInterrupt:
        logger.info("Simulation aborted by user.")
    except (DataGapError, OSError) as e:
        logger.error(f"Simulation failed: {e}")
        raise SystemExit(1)
