"""
Batch runner: build and run many simulation configurations.

Each configuration gets its own price view, cash account, brokerage, bus and
listeners, so runs share no mutable state and can execute concurrently. A
DataGapError or ConfigurationError aborts only the configuration that raised
it; siblings keep running.
"""

import concurrent.futures
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, List, Optional

from dateutil.relativedelta import relativedelta
from opentelemetry import trace

from tradesim.backtest.brokerage import Brokerage, Equity
from tradesim.backtest.bus import EventBus
from tradesim.backtest.cash import CashAccount, DepositSchedule, FlatInterestRate
from tradesim.backtest.engine import SimulationEngine, SimulationReport
from tradesim.backtest.fees import (
    TRANSACTION_FEE_PRESETS,
    EquityClass,
    FlatFee,
    FlatManagementFee,
    LadderedManagementFee,
    NoManagementFee,
    PercentageFee,
)
from tradesim.backtest.feed import PriceDataProvider
from tradesim.backtest.policies import (
    AbsoluteTradeValue,
    HoldForever,
    InsufficientFundsAction,
    PeriodicEntry,
    RelativeTradeValue,
    SignalTriggeredEntry,
    SignalTriggeredExit,
)
from tradesim.backtest.reporting import NetWorthHistory, PerformanceReporter
from tradesim.backtest.roi import ReturnOnInvestmentChain
from tradesim.backtest.signals import ConfirmedBy, DonchianBreakout, MovingAverageCrossover
from tradesim.backtest.sink import EventFileSink
from tradesim.backtest.statistics import CumulativeEventStatistics
from tradesim.core.config import settings
from tradesim.core.exceptions import ConfigurationError, DataGapError
from tradesim.core.models import BrokerageConfig, EntryConfig, ExitConfig, SimulationConfig

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class RunResult:
    """Everything one run produced."""

    name: str
    report: SimulationReport
    statistics: CumulativeEventStatistics
    roi: ReturnOnInvestmentChain
    metrics: dict


@dataclass
class BatchResult:
    name: str
    result: Optional[RunResult] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def build_transaction_fee(config: BrokerageConfig):
    if config.fee_structure == "flat":
        return FlatFee(config.flat_fee)
    if config.fee_structure == "percentage":
        return PercentageFee(config.percentage_fee)
    return TRANSACTION_FEE_PRESETS[config.fee_structure]()


def build_management_fee(config: BrokerageConfig):
    if config.management_fee == "flat":
        return FlatManagementFee(config.management_rate)
    if config.management_fee == "laddered":
        return LadderedManagementFee(
            boundaries=tuple(config.ladder_boundaries), rates=tuple(config.ladder_rates)
        )
    return NoManagementFee()


def build_entry(config: EntryConfig, start):
    if config.trade_value is not None:
        trade_value = AbsoluteTradeValue(config.trade_value)
    else:
        trade_value = RelativeTradeValue(
            config.trade_fraction, config.trade_minimum, config.trade_maximum
        )

    if config.kind == "periodic":
        action = config.on_insufficient_funds or InsufficientFundsAction.RESUBMIT
        return PeriodicEntry(
            first_order=start + timedelta(days=config.first_order_offset_days),
            interval=relativedelta(days=config.interval_days),
            trade_value=trade_value,
            action=action,
            valid_days=config.valid_days,
        )

    provider = MovingAverageCrossover(config.fast_window, config.slow_window)
    if config.confirm_within_days is not None:
        provider = ConfirmedBy(provider, DonchianBreakout(config.fast_window), config.confirm_within_days)
    return SignalTriggeredEntry(
        provider,
        trade_value,
        action=config.on_insufficient_funds or InsufficientFundsAction.DELETE,
        valid_days=config.valid_days,
    )


def build_exit(config: ExitConfig):
    if config.kind == "signal":
        return SignalTriggeredExit(MovingAverageCrossover(config.fast_window, config.slow_window))
    return HoldForever()


@tracer.start_as_current_span("run_backtest")
def run_backtest(
    config: SimulationConfig,
    provider: PriceDataProvider,
    sink: Optional[EventFileSink] = None,
) -> RunResult:
    """
    Build every component for one configuration and run it.

    Raises:
        DataGapError: not enough price history for the window
        ConfigurationError: invalid fee or policy parameters
    """
    span = trace.get_current_span()
    span.set_attribute("run.name", config.name)
    span.set_attribute("run.symbol", config.equity.symbol)

    window = config.window
    history_start = window.start - timedelta(days=window.warm_up_days)
    prices = provider.fetch(config.equity.symbol, history_start, window.end)
    warm_up, series = prices.split_warm_up(
        window.start,
        window.end,
        window.warm_up_days,
        gap_tolerance_days=settings.WARM_UP_GAP_TOLERANCE_DAYS,
    )

    bus = EventBus()
    statistics = CumulativeEventStatistics().subscribe(bus)
    roi = ReturnOnInvestmentChain(bus).subscribe()
    history = NetWorthHistory().subscribe(bus)
    if sink is not None:
        bus.subscribe(sink.listener(config.name))

    opening_date = series.earliest_date()
    deposits = None
    if config.deposit is not None:
        interval = (
            relativedelta(days=config.deposit.every_days)
            if config.deposit.every_days
            else relativedelta(months=config.deposit.every_months)
        )
        deposits = DepositSchedule(config.deposit.amount, interval, config.deposit.first_deposit)

    cash = CashAccount(
        opening_funds=config.opening_funds,
        opening_date=opening_date,
        bus=bus,
        interest_rate=FlatInterestRate(config.interest_percent),
        deposits=deposits,
    )
    brokerage = Brokerage(
        Equity(config.equity.symbol, EquityClass(config.equity.equity_class), config.equity.scale),
        bus,
        fees=build_transaction_fee(config.brokerage),
        management=build_management_fee(config.brokerage),
    )
    engine = SimulationEngine(
        series=series,
        cash=cash,
        brokerage=brokerage,
        entry=build_entry(config.entry, opening_date),
        exit=build_exit(config.exit),
        bus=bus,
        warm_up=warm_up,
    )

    report = engine.run()
    metrics = PerformanceReporter(history.to_dataframe()).calculate_metrics()
    return RunResult(config.name, report, statistics, roi, metrics)


@tracer.start_as_current_span("run_batch")
def run_batch(
    configs: Iterable[SimulationConfig],
    provider: PriceDataProvider,
    max_workers: Optional[int] = None,
    sink: Optional[EventFileSink] = None,
) -> List[BatchResult]:
    """
    Run configurations concurrently. Results come back in input order.

    Failures are captured per configuration and never abort sibling runs.
    DataGapError and ConfigurationError are expected and logged as warnings;
    anything else is logged with its traceback.
    """
    configs = list(configs)
    max_workers = max_workers or settings.BATCH_MAX_WORKERS
    results: dict[int, BatchResult] = {}

    span = trace.get_current_span()
    span.set_attribute("batch.size", len(configs))

    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {
            executor.submit(run_backtest, config, provider, sink): i for i, config in enumerate(configs)
        }

        for future in concurrent.futures.as_completed(future_to_index):
            i = future_to_index[future]
            name = configs[i].name
            try:
                results[i] = BatchResult(name, result=future.result())
            except (DataGapError, ConfigurationError) as e:
                logger.warning(f"Run {name} aborted: {e}")
                results[i] = BatchResult(name, error=e)
            except Exception as e:
                logger.exception(f"Run {name} failed unexpectedly: {e}")
                results[i] = BatchResult(name, error=e)

    failed = sum(1 for r in results.values() if not r.ok)
    span.set_attribute("batch.failed", failed)
    logger.info(f"Batch complete: {len(configs) - failed} succeeded, {failed} failed")
    return [results[i] for i in range(len(configs))]
