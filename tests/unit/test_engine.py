from datetime import date, timedelta
from decimal import Decimal

import pytest
from dateutil.relativedelta import relativedelta

from tradesim.backtest.brokerage import Brokerage, Equity
from tradesim.backtest.cash import CashAccount, DepositSchedule, FlatInterestRate
from tradesim.backtest.engine import SimulationEngine
from tradesim.backtest.events import (
    BrokerageEventType,
    CashEventType,
    EventKind,
    NetWorthEventType,
    OrderEventType,
)
from tradesim.backtest.feed import PriceSeries
from tradesim.backtest.orders import OrderState
from tradesim.backtest.policies import (
    AbsoluteTradeValue,
    EntryPolicy,
    HoldForever,
    InsufficientFundsAction,
    PeriodicEntry,
    RelativeTradeValue,
)
from tradesim.core.exceptions import ConfigurationError, DataGapError

D = Decimal
START = date(2024, 1, 10)


def build_engine(
    bus,
    series,
    funds="1000.00",
    rate="0",
    deposits=None,
    entry=None,
    warm_up=None,
):
    first = series.earliest_date()
    cash = CashAccount(
        opening_funds=D(funds),
        opening_date=first,
        bus=bus,
        interest_rate=FlatInterestRate(D(rate)),
        deposits=deposits,
    )
    brokerage = Brokerage(Equity("TEST"), bus)
    if entry is None:
        entry = PeriodicEntry(first + timedelta(days=7), relativedelta(days=7), AbsoluteTradeValue(D("100")))
    return SimulationEngine(
        series=series,
        cash=cash,
        brokerage=brokerage,
        entry=entry,
        exit=HoldForever(),
        bus=bus,
        warm_up=warm_up,
    )


def total(events):
    return sum((e.amount for e in events), D("0"))


class TestWeeklyAccumulation:
    def test_deposits_interest_and_periodic_buys(self, bus, make_series):
        series = make_series(START, 30)
        schedule = DepositSchedule(D("100"), relativedelta(weeks=1))
        engine = build_engine(bus, series, rate="1.5", deposits=schedule)

        report = engine.run()

        buys = bus.events_of(EventKind.BROKERAGE, BrokerageEventType.BUY)
        assert report.executed == 4
        assert [e.date for e in buys] == [
            date(2024, 1, 18),
            date(2024, 1, 25),
            date(2024, 2, 1),
            date(2024, 2, 8),
        ]
        assert report.final_holding == D("8")

        deposits = total(bus.events_of(EventKind.CASH, CashEventType.DEPOSIT))
        debits = total(bus.events_of(EventKind.CASH, CashEventType.DEBIT))
        interest_events = bus.events_of(EventKind.CASH, CashEventType.INTEREST)

        assert deposits == D("400")
        assert debits == D("400")
        assert [e.date for e in interest_events] == [date(2024, 2, 1)]
        assert report.final_cash == D("1000.00") + deposits - debits + total(interest_events)
        assert report.final_net_worth == report.final_cash + D("400")

    def test_every_bar_advances_once_in_order(self, bus, make_series):
        series = make_series(START, 30, weekdays_only=True)
        report = build_engine(bus, series).run()

        assert report.advanced_dates == [bar.date for bar in series.in_order()]
        assert report.bars_processed == 30

    def test_events_are_chronological(self, bus, make_series):
        series = make_series(START, 30)
        schedule = DepositSchedule(D("100"), relativedelta(weeks=1))
        build_engine(bus, series, rate="1.5", deposits=schedule).run()

        dates = [e.date for e in bus.history]
        assert dates == sorted(dates)

    def test_completion_events_close_the_stream(self, bus, make_series):
        series = make_series(START, 10)
        report = build_engine(bus, series).run()

        last_two = bus.history[-2:]
        assert last_two[0].kind == EventKind.NET_WORTH
        assert last_two[0].type == NetWorthEventType.COMPLETED
        assert last_two[1].kind == EventKind.SIMULATION
        assert last_two[1].bars_processed == 10
        assert last_two[0].net_worth == report.final_net_worth
        daily = bus.events_of(EventKind.NET_WORTH, NetWorthEventType.DAILY)
        assert len(daily) == 10

    def test_engine_runs_once(self, bus, make_series):
        engine = build_engine(bus, make_series(START, 5))
        engine.run()
        with pytest.raises(RuntimeError):
            engine.run()

    def test_empty_series_raises(self, bus):
        cash = CashAccount(opening_funds=D("100"), opening_date=START, bus=bus)
        engine = SimulationEngine(
            series=PriceSeries([], symbol="TEST"),
            cash=cash,
            brokerage=Brokerage(Equity("TEST"), bus),
            entry=PeriodicEntry(START, relativedelta(days=1), AbsoluteTradeValue(D("10"))),
            exit=HoldForever(),
            bus=bus,
        )
        with pytest.raises(DataGapError):
            engine.run()


class TestOrderLifecycle:
    def poor_entry(self, action, valid_days=None):
        return PeriodicEntry(
            START,
            relativedelta(days=7),
            AbsoluteTradeValue(D("500")),
            action=action,
            valid_days=valid_days,
        )

    def test_every_order_ends_terminal(self, bus, make_series):
        series = make_series(START, 30)
        report = build_engine(bus, series).run()

        placed = bus.events_of(EventKind.ORDER, OrderEventType.PLACED_ENTRY)
        assert len(report.order_states) == len(placed)
        assert all(state.terminal for state in report.order_states.values())
        assert sum(report.counts.values()) == len(placed)

    def test_delete_on_insufficient_funds(self, bus, make_series):
        series = make_series(START, 10)
        report = build_engine(bus, series, funds="100", entry=self.poor_entry("DELETE")).run()

        deleted = bus.events_of(EventKind.ORDER, OrderEventType.DELETE_ENTRY)
        assert [e.date for e in deleted] == [date(2024, 1, 11), date(2024, 1, 18)]
        assert report.deleted == 2
        assert report.executed == 0
        assert report.final_cash == D("100")

    def test_resubmit_keeps_order_pending(self, bus, make_series):
        series = make_series(START, 10)
        report = build_engine(bus, series, funds="100", entry=self.poor_entry("RESUBMIT")).run()

        assert bus.events_of(EventKind.ORDER, OrderEventType.DELETE_ENTRY) == []
        # Nothing ever fills, so both orders lapse when the run ends
        assert report.expired == 2
        assert report.resubmissions == 11

    def test_resubmitted_order_fills_after_deposit(self, bus, make_series):
        series = make_series(START, 10)
        schedule = DepositSchedule(D("500"), relativedelta(days=3), first_deposit=date(2024, 1, 13))
        entry = self.poor_entry("RESUBMIT")
        report = build_engine(bus, series, funds="100", deposits=schedule, entry=entry).run()

        executed = bus.events_of(EventKind.ORDER, OrderEventType.EXECUTED)
        assert executed[0].date == date(2024, 1, 13)
        assert report.resubmissions == 2

    def test_unknown_action_is_configuration_error(self, bus, make_series):
        class Stubborn(EntryPolicy):
            def __init__(self):
                self.inner = PeriodicEntry(START, relativedelta(days=7), AbsoluteTradeValue(D("500")))

            def evaluate(self, bar, brokerage, cash):
                return self.inner.evaluate(bar, brokerage, cash)

            def on_insufficient_funds(self, order):
                return "IGNORE"

        engine = build_engine(bus, make_series(START, 5), funds="100", entry=Stubborn())
        with pytest.raises(ConfigurationError):
            engine.run()

    def test_expired_orders_emit_no_event(self, bus, make_series):
        series = make_series(START, 10)
        entry = self.poor_entry(InsufficientFundsAction.RESUBMIT, valid_days=0)
        report = build_engine(bus, series, funds="100", entry=entry).run()

        types = {e.type for e in bus.events_of(EventKind.ORDER)}
        assert types == {OrderEventType.PLACED_ENTRY}
        assert report.expired == 2
        assert report.resubmissions == 0
        assert all(s is OrderState.EXPIRED for s in report.order_states.values())

    def test_spending_all_cash_does_not_stop_the_run(self, bus, make_series):
        series = make_series(START, 20)
        entry = PeriodicEntry(START, relativedelta(days=7), RelativeTradeValue(D("1")))
        report = build_engine(bus, series, funds="100", entry=entry).run()

        assert report.executed == 1
        assert report.final_holding == D("2")
        assert report.final_cash == D("0")
        assert report.last_date == date(2024, 1, 29)
        assert len(bus.events_of(EventKind.ORDER, OrderEventType.PLACED_ENTRY)) == 1

    def test_placed_event_precedes_execution(self, bus, make_series):
        build_engine(bus, make_series(START, 10)).run()

        types = [e.type for e in bus.events_of(EventKind.ORDER)]
        assert types == [OrderEventType.PLACED_ENTRY, OrderEventType.EXECUTED]


class TestWarmUp:
    def test_warm_up_bars_do_not_trade(self, bus, make_series):
        full = make_series(date(2024, 1, 1), 20)
        warm_up, simulation = full.split_warm_up(date(2024, 1, 11), date(2024, 1, 20), warm_up_days=10)

        class Recording(PeriodicEntry):
            def __init__(self, *args, **kwargs):
                super().__init__(*args, **kwargs)
                self.observed = []

            def observe(self, bar):
                self.observed.append(bar.date)

        entry = Recording(date(2024, 1, 11), relativedelta(days=7), AbsoluteTradeValue(D("100")))
        report = build_engine(bus, simulation, entry=entry, warm_up=warm_up).run()

        assert entry.observed == [bar.date for bar in warm_up.in_order()]
        assert report.first_date == date(2024, 1, 11)
        assert all(e.date >= date(2024, 1, 11) for e in bus.history)
