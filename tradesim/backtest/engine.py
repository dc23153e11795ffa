import logging
import time
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from opentelemetry import trace

from tradesim.backtest.brokerage import Brokerage
from tradesim.backtest.bus import EventBus, Listener
from tradesim.backtest.cash import CashAccount
from tradesim.backtest.events import (
    NetWorthEvent,
    NetWorthEventType,
    OrderEvent,
    OrderEventType,
    OrderKind,
    SimulationCompleteEvent,
)
from tradesim.backtest.feed import PriceBar, PriceSeries
from tradesim.backtest.orders import Order, OrderBook, OrderState
from tradesim.backtest.policies import EntryPolicy, ExitPolicy, InsufficientFundsAction
from tradesim.core.constants import MATH_CONTEXT
from tradesim.core.exceptions import (
    ConfigurationError,
    DataGapError,
    InsufficientEquitiesError,
    InsufficientFundsError,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass
class SimulationReport:
    """Outcome of one simulation run."""

    first_date: date
    last_date: date
    bars_processed: int
    advanced_dates: List[date]
    order_states: Dict[int, OrderState]
    final_cash: Decimal
    final_holding: Decimal
    final_equity_value: Decimal
    final_net_worth: Decimal
    total_fees: Decimal = Decimal("0")
    elapsed_s: float = 0.0
    resubmissions: int = 0
    counts: Dict[OrderState, int] = field(default_factory=dict)

    def __post_init__(self):
        for state in OrderState:
            self.counts[state] = sum(1 for s in self.order_states.values() if s is state)

    @property
    def executed(self) -> int:
        return self.counts[OrderState.EXECUTED]

    @property
    def deleted(self) -> int:
        return self.counts[OrderState.DELETED]

    @property
    def expired(self) -> int:
        return self.counts[OrderState.EXPIRED]


class SimulationEngine:
    """
    Deterministic daily simulation loop.

    Each trading day, strictly in date order:
    1. Advance the cash account (interest, deposits)
    2. Retry every outstanding order, oldest first
    3. Ask the exit policy, then the entry policy, for a new order
    4. Charge the management fee
    5. Publish the day's net worth

    Single-threaded and free of IO; every event goes through one EventBus
    and reaches listeners in the order it was generated.

    Example:
        engine = SimulationEngine(
            series=simulation_bars,
            cash=cash,
            brokerage=brokerage,
            entry=PeriodicEntry(first_order, relativedelta(weeks=1), AbsoluteTradeValue(100)),
            exit=HoldForever(),
            bus=bus,
            warm_up=warm_up_bars,
        )
        report = engine.run()
    """

    def __init__(
        self,
        series: PriceSeries,
        cash: CashAccount,
        brokerage: Brokerage,
        entry: EntryPolicy,
        exit: ExitPolicy,
        bus: EventBus,
        warm_up: Optional[PriceSeries] = None,
        listeners: Sequence[Listener] = (),
    ):
        self.series = series
        self.cash = cash
        self.brokerage = brokerage
        self.entry = entry
        self.exit = exit
        self.bus = bus
        self.warm_up = warm_up
        for listener in listeners:
            bus.subscribe(listener)

        self.book = OrderBook()
        self.advanced_dates: List[date] = []
        self._last_bar: Optional[PriceBar] = None
        self._finished = False

        # Telemetry Metrics
        self.total_bars = 0
        self.total_orders_placed = 0
        self.total_executions = 0
        self.total_resubmissions = 0

    @tracer.start_as_current_span("simulation_run")
    def run(self) -> SimulationReport:
        """
        Replay the series once.

        Raises:
            DataGapError: the series is empty
            ConfigurationError: a policy returned an unknown insufficient-funds action
        """
        if self._finished:
            raise RuntimeError("SimulationEngine instances run once")
        if not self.series:
            raise DataGapError("No price bars to simulate", symbol=self.series.symbol)

        span = trace.get_current_span()
        span.set_attribute("simulation.symbol", self.brokerage.equity.symbol)
        span.set_attribute("simulation.bars", len(self.series))

        logger.info(
            f"Starting simulation {self.series.earliest_date()} -> {self.series.latest_date()} "
            f"({len(self.series)} bars)"
        )
        start_time = time.time()

        if self.warm_up is not None:
            for bar in self.warm_up.in_order():
                self.entry.observe(bar)
                self.exit.observe(bar)

        for bar in self.series.in_order():
            self._process_day(bar)

        report = self._finalize(time.time() - start_time)
        self._log_telemetry_summary(span, report)
        return report

    def _process_day(self, bar: PriceBar) -> None:
        self.cash.advance(bar.date)
        self.advanced_dates.append(bar.date)
        self._last_bar = bar

        self._retry_outstanding(bar)

        order = self.exit.evaluate(bar, self.brokerage)
        if order is not None:
            self._place(order)

        order = self.entry.evaluate(bar, self.brokerage, self.cash)
        if order is not None:
            self._place(order)

        self.brokerage.apply_management_fee(bar)
        self._publish_net_worth(bar, NetWorthEventType.DAILY)
        self.total_bars += 1

    def _place(self, order: Order) -> None:
        self.book.add(order)
        self.total_orders_placed += 1
        self.bus.publish(
            OrderEvent(
                date=order.created,
                type=OrderEventType.placed(order.kind),
                order_id=order.id,
                order_kind=order.kind,
                requested_value=order.requested_value,
                requested_quantity=order.requested_quantity,
            )
        )

    def _retry_outstanding(self, bar: PriceBar) -> None:
        for order in self.book.outstanding:
            if not order.is_valid(bar):
                # Lapsed orders leave quietly: no OrderEvent, EXPIRED in the report.
                self.book.close(order, OrderState.EXPIRED)
                logger.debug(f"Order {order.id} expired on {bar.date}")
                continue

            if not order.is_active(bar) or not order.trigger.met(bar):
                continue

            try:
                if order.kind == OrderKind.ENTRY:
                    self.brokerage.buy(order, bar, self.cash)
                else:
                    self.brokerage.sell(order, bar, self.cash)
            except (InsufficientFundsError, InsufficientEquitiesError) as e:
                self._resolve_failure(order, bar, e)
                continue

            self.book.close(order, OrderState.EXECUTED)
            self.total_executions += 1
            self._publish_order(order, bar.date, OrderEventType.EXECUTED)

    def _resolve_failure(self, order: Order, bar: PriceBar, error: Exception) -> None:
        policy = self.entry if order.kind == OrderKind.ENTRY else self.exit
        action = policy.on_insufficient_funds(order)

        if action == InsufficientFundsAction.DELETE:
            self.book.close(order, OrderState.DELETED)
            logger.debug(f"Order {order.id} deleted on {bar.date}: {error}")
            self._publish_order(order, bar.date, OrderEventType.deleted(order.kind))
        elif action == InsufficientFundsAction.RESUBMIT:
            self.total_resubmissions += 1
            logger.debug(f"Order {order.id} resubmitted on {bar.date}: {error}")
        else:
            raise ConfigurationError(
                f"Unsupported insufficient funds action: {action!r}",
                config_key="on_insufficient_funds",
            )

    def _publish_order(self, order: Order, day: date, type_: OrderEventType) -> None:
        self.bus.publish(
            OrderEvent(
                date=day,
                type=type_,
                order_id=order.id,
                order_kind=order.kind,
                requested_value=order.requested_value,
                requested_quantity=order.requested_quantity,
            )
        )

    def _publish_net_worth(self, bar: PriceBar, type_: NetWorthEventType) -> NetWorthEvent:
        equity_value = self.brokerage.value_at(bar.close)
        event = NetWorthEvent(
            date=bar.date,
            type=type_,
            cash=self.cash.balance,
            equity_quantity=self.brokerage.balance,
            equity_value=equity_value,
            net_worth=MATH_CONTEXT.add(self.cash.balance, equity_value),
        )
        self.bus.publish(event)
        return event

    def _finalize(self, elapsed: float) -> SimulationReport:
        """Expire leftovers, then publish the closing net worth and completion."""
        bar = self._last_bar
        for order in self.book.outstanding:
            self.book.close(order, OrderState.EXPIRED)

        closing = self._publish_net_worth(bar, NetWorthEventType.COMPLETED)
        self.bus.publish(SimulationCompleteEvent(date=bar.date, bars_processed=self.total_bars))
        self._finished = True

        return SimulationReport(
            first_date=self.advanced_dates[0],
            last_date=bar.date,
            bars_processed=self.total_bars,
            advanced_dates=list(self.advanced_dates),
            order_states=dict(self.book.states),
            final_cash=closing.cash,
            final_holding=closing.equity_quantity,
            final_equity_value=closing.equity_value,
            final_net_worth=closing.net_worth,
            total_fees=self.brokerage.total_fees,
            elapsed_s=elapsed,
            resubmissions=self.total_resubmissions,
        )

    def _log_telemetry_summary(self, span, report: SimulationReport):
        """Log comprehensive telemetry metrics."""
        span.set_attribute("simulation.orders_placed", self.total_orders_placed)
        span.set_attribute("simulation.orders_executed", report.executed)
        span.set_attribute("simulation.orders_deleted", report.deleted)
        span.set_attribute("simulation.orders_expired", report.expired)
        span.set_attribute("simulation.final_net_worth", float(report.final_net_worth))

        logger.info("=" * 60)
        logger.info("SIMULATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Bars Processed:    {report.bars_processed}")
        logger.info(f"Orders Placed:     {self.total_orders_placed}")
        logger.info(f"Orders Executed:   {report.executed}")
        logger.info(f"Orders Deleted:    {report.deleted}")
        logger.info(f"Orders Expired:    {report.expired}")
        logger.info(f"Resubmissions:     {report.resubmissions}")
        logger.info(f"Fees Paid:         {report.total_fees}")
        logger.info(f"Final Cash:        {report.final_cash}")
        logger.info(f"Final Holding:     {report.final_holding}")
        logger.info(f"Final Net Worth:   {report.final_net_worth}")
        logger.info(f"Elapsed:           {report.elapsed_s:.2f}s")
        logger.info("=" * 60)
