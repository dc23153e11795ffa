from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from dateutil.relativedelta import relativedelta

from tradesim.backtest.events import OrderKind
from tradesim.backtest.policies import (
    AbsoluteTradeValue,
    HoldForever,
    InsufficientFundsAction,
    PeriodicEntry,
    RelativeTradeValue,
    SignalTriggeredEntry,
    SignalTriggeredExit,
)
from tradesim.backtest.signals import SignalDecision, SignalProvider
from tradesim.core.exceptions import ConfigurationError

D = Decimal
START = date(2024, 1, 1)
CASH = SimpleNamespace(balance=D("1000"))


class Scripted(SignalProvider):
    def __init__(self, *decisions):
        self.decisions = list(decisions)

    def evaluate(self, window):
        return self.decisions.pop(0)


class TestTradeValues:
    def test_absolute(self):
        assert AbsoluteTradeValue(D("250")).value(D("10")) == D("250")
        with pytest.raises(ConfigurationError):
            AbsoluteTradeValue(D("0"))

    def test_relative_is_clamped(self):
        sizing = RelativeTradeValue(D("0.5"), minimum=D("100"), maximum=D("300"))
        assert sizing.value(D("1000")) == D("300")
        assert sizing.value(D("400")) == D("200")
        assert sizing.value(D("100")) == D("100")

    def test_relative_rounds_to_cents(self):
        assert RelativeTradeValue(D("0.333")).value(D("100")) == D("33.30")

    def test_relative_validation(self):
        with pytest.raises(ConfigurationError):
            RelativeTradeValue(D("1.5"))
        with pytest.raises(ConfigurationError):
            RelativeTradeValue(D("0.5"), minimum=D("10"), maximum=D("5"))


class TestPeriodicEntry:
    def test_orders_on_schedule(self, make_bar):
        policy = PeriodicEntry(START + timedelta(days=2), relativedelta(days=7), AbsoluteTradeValue(D("100")))
        orders = []
        for i in range(20):
            order = policy.evaluate(make_bar(START + timedelta(days=i)), None, CASH)
            if order is not None:
                orders.append(order)

        assert [o.created for o in orders] == [date(2024, 1, 3), date(2024, 1, 10), date(2024, 1, 17)]
        assert all(o.kind == OrderKind.ENTRY and o.requested_value == D("100") for o in orders)

    def test_gap_places_a_single_order(self, make_bar):
        policy = PeriodicEntry(START, relativedelta(days=7), AbsoluteTradeValue(D("100")))
        assert policy.evaluate(make_bar(START), None, CASH) is not None
        assert policy.evaluate(make_bar(date(2024, 1, 30)), None, CASH) is not None
        assert policy.evaluate(make_bar(date(2024, 1, 31)), None, CASH) is None
        assert policy.evaluate(make_bar(date(2024, 2, 5)), None, CASH) is not None

    def test_valid_days_sets_expiry(self, make_bar):
        policy = PeriodicEntry(START, relativedelta(days=7), AbsoluteTradeValue(D("100")), valid_days=3)
        order = policy.evaluate(make_bar(START), None, CASH)
        assert order.valid_until == date(2024, 1, 4)

    def test_no_order_when_cash_is_spent(self, make_bar):
        policy = PeriodicEntry(START, relativedelta(days=7), RelativeTradeValue(D("1")))
        empty = SimpleNamespace(balance=D("0.004"))

        assert policy.evaluate(make_bar(START), None, empty) is None
        assert policy.evaluate(make_bar(date(2024, 1, 2)), None, CASH) is None
        order = policy.evaluate(make_bar(date(2024, 1, 8)), None, CASH)
        assert order.requested_value == D("1000.00")

    def test_defaults_to_resubmit(self):
        policy = PeriodicEntry(START, relativedelta(days=7), AbsoluteTradeValue(D("100")))
        assert policy.on_insufficient_funds(None) is InsufficientFundsAction.RESUBMIT

    def test_action_parsed(self):
        policy = PeriodicEntry(START, relativedelta(days=7), AbsoluteTradeValue(D("100")), action="DELETE")
        assert policy.action is InsufficientFundsAction.DELETE
        with pytest.raises(ValueError):
            PeriodicEntry(START, relativedelta(days=7), AbsoluteTradeValue(D("100")), action="SHRUG")

    def test_interval_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            PeriodicEntry(START, relativedelta(days=0), AbsoluteTradeValue(D("100")))


class TestSignalPolicies:
    def test_entry_only_on_new_buy(self, make_bar):
        provider = Scripted(SignalDecision.BUY, SignalDecision.BUY, SignalDecision.HOLD, SignalDecision.BUY)
        policy = SignalTriggeredEntry(provider, AbsoluteTradeValue(D("100")))

        placed = [
            policy.evaluate(make_bar(START + timedelta(days=i)), None, CASH) is not None for i in range(4)
        ]

        assert placed == [True, False, False, True]
        assert policy.on_insufficient_funds(None) is InsufficientFundsAction.DELETE

    def test_warm_up_signal_is_not_new(self, make_bar):
        provider = Scripted(SignalDecision.BUY, SignalDecision.BUY)
        policy = SignalTriggeredEntry(provider, AbsoluteTradeValue(D("100")))

        policy.observe(make_bar(START))
        assert policy.evaluate(make_bar(START + timedelta(days=1)), None, CASH) is None

    def test_entry_sized_from_cash(self, make_bar):
        policy = SignalTriggeredEntry(Scripted(SignalDecision.BUY), RelativeTradeValue(D("0.25")))
        order = policy.evaluate(make_bar(START), None, CASH)
        assert order.requested_value == D("250.00")

    def test_no_entry_without_cash(self, make_bar):
        policy = SignalTriggeredEntry(Scripted(SignalDecision.BUY), RelativeTradeValue(D("0.5")))
        assert policy.evaluate(make_bar(START), None, SimpleNamespace(balance=D("0"))) is None

    def test_exit_sells_whole_holding(self, make_bar):
        policy = SignalTriggeredExit(Scripted(SignalDecision.SELL))
        order = policy.evaluate(make_bar(START), SimpleNamespace(balance=D("7.5")))

        assert order.kind == OrderKind.EXIT
        assert order.requested_quantity == D("7.5")

    def test_exit_needs_a_holding(self, make_bar):
        policy = SignalTriggeredExit(Scripted(SignalDecision.SELL))
        assert policy.evaluate(make_bar(START), SimpleNamespace(balance=D("0"))) is None

    def test_hold_forever(self, make_bar):
        assert HoldForever().evaluate(make_bar(START), SimpleNamespace(balance=D("10"))) is None
