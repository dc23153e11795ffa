from datetime import date, timedelta
from decimal import Decimal

import pytest

from tradesim.backtest.events import (
    CashEvent,
    CashEventType,
    EventKind,
    NetWorthEvent,
    NetWorthEventType,
    RoiPeriod,
)
from tradesim.backtest.roi import (
    PeriodicReturnOnInvestment,
    ReturnOnInvestmentChain,
    RoundedPeriod,
    percentage_change,
)

D = Decimal


def net_worth(day, value, type_=NetWorthEventType.DAILY):
    value = D(str(value))
    return NetWorthEvent(
        date=day, type=type_, cash=value, equity_quantity=D("0"), equity_value=D("0"), net_worth=value
    )


def deposit(day, amount):
    amount = D(str(amount))
    return CashEvent(
        date=day, type=CashEventType.DEPOSIT, amount=amount, funds_before=D("0"), funds_after=amount
    )


def daily_stream(start, days, value=1000, step=1):
    events = [net_worth(start + timedelta(days=i), value + step * i) for i in range(days)]
    last = events[-1]
    events.append(net_worth(last.date, last.net_worth, NetWorthEventType.COMPLETED))
    return events


def replay(events):
    chain = ReturnOnInvestmentChain()
    for event in events:
        chain.event(event)
    return chain


class TestPercentageChange:
    def test_deposits_are_discounted(self):
        assert percentage_change(D("1000"), D("1150"), D("100")) == D("5")

    def test_zero_previous_is_zero(self):
        assert percentage_change(D("0"), D("100")) == D("0")

    def test_negative_change(self):
        assert percentage_change(D("200"), D("150")) == D("-25")


class TestRoundedPeriod:
    @pytest.mark.parametrize(
        "start, end, months, years",
        [
            (date(2024, 1, 31), date(2024, 2, 20), 0, 0),
            (date(2024, 1, 31), date(2024, 2, 21), 1, 0),
            (date(2023, 1, 1), date(2023, 12, 21), 11, 0),
            (date(2023, 1, 1), date(2023, 12, 25), 12, 1),
            (date(2022, 12, 31), date(2023, 12, 31), 0, 1),
        ],
    )
    def test_more_than_twenty_days_rounds_up(self, start, end, months, years):
        period = RoundedPeriod.between(start, end)
        assert period.rounded_months == months
        assert period.rounded_years == years

    def test_classification(self):
        assert RoundedPeriod.between(date(2024, 1, 1), date(2024, 1, 5)).is_daily
        assert RoundedPeriod.between(date(2024, 1, 1), date(2024, 1, 25)).is_monthly
        assert RoundedPeriod.between(date(2023, 1, 1), date(2024, 1, 1)).is_yearly
        assert not RoundedPeriod.between(date(2024, 1, 1), date(2024, 1, 25)).counts_as(RoiPeriod.YEARLY)


class TestCumulative:
    def test_first_day_is_zero_and_deposits_adjust(self):
        chain = replay(
            [
                net_worth(date(2024, 1, 1), 1000),
                deposit(date(2024, 1, 2), 100),
                net_worth(date(2024, 1, 2), 1150),
            ]
        )
        results = chain.cumulative.results
        assert [r.percentage for r in results] == [D("0"), D("5")]
        assert results[0].exclusive_start == date(2023, 12, 31)
        assert results[1].exclusive_start == date(2024, 1, 1)

    def test_replay_is_deterministic(self):
        events = daily_stream(date(2024, 1, 1), 45, step=3)
        first, second = replay(events), replay(events)

        for attr in ("cumulative", "daily", "monthly", "yearly", "total"):
            assert getattr(first, attr).results == getattr(second, attr).results


class TestPeriodic:
    def test_daily_bucket_per_trading_day(self):
        chain = replay(daily_stream(date(2024, 1, 1), 10))
        assert len(chain.daily.results) == 10
        assert [r.percentage for r in chain.daily.results] == [r.percentage for r in chain.cumulative.results]

    def test_short_trailing_month_is_dropped(self):
        # Jan 1 .. Feb 10: one full month, then 10 trailing days
        chain = replay(daily_stream(date(2024, 1, 1), 41))
        months = chain.monthly.results
        assert len(months) == 1
        assert months[0].exclusive_start == date(2023, 12, 31)
        assert months[0].date == date(2024, 1, 31)

    def test_month_closes_on_its_boundary_day(self):
        # Jan 2 .. Feb 3: the first bucket is (Jan 1, Feb 1]
        chain = replay(daily_stream(date(2024, 1, 2), 33, step=10))
        months = chain.monthly.results

        assert [(m.exclusive_start, m.date) for m in months] == [(date(2024, 1, 1), date(2024, 2, 1))]
        in_bucket = [d.percentage for d in chain.daily.results if d.date <= date(2024, 2, 1)]
        assert months[0].percentage == sum(in_bucket, D("0"))

    def test_long_trailing_month_is_flushed(self):
        # Jan 1 .. Feb 25: trailing 25 days round up to a month
        chain = replay(daily_stream(date(2024, 1, 1), 56))
        months = chain.monthly.results
        assert [(m.exclusive_start, m.date) for m in months] == [
            (date(2023, 12, 31), date(2024, 1, 31)),
            (date(2024, 1, 31), date(2024, 2, 25)),
        ]

    def test_monthly_sums_cover_every_day(self):
        chain = replay(daily_stream(date(2024, 1, 1), 56, step=5))
        monthly_sum = sum((m.percentage for m in chain.monthly.results), D("0"))
        assert monthly_sum == chain.total.total

    def test_no_yearly_result_for_short_runs(self):
        chain = replay(daily_stream(date(2024, 1, 1), 56))
        assert chain.yearly.results == []

    def test_gap_spanning_boundary_flushes_once(self):
        node = PeriodicReturnOnInvestment(RoiPeriod.MONTHLY)
        chain = ReturnOnInvestmentChain()
        chain.cumulative.children = [node]
        for event in [
            net_worth(date(2024, 1, 1), 1000),
            net_worth(date(2024, 3, 15), 1100),
            net_worth(date(2024, 3, 16), 1100, NetWorthEventType.COMPLETED),
        ]:
            chain.event(event)
        assert len(node.results) == 1
        assert node.results[0].date == date(2024, 3, 15)

    def test_unsupported_period(self):
        with pytest.raises(ValueError):
            PeriodicReturnOnInvestment(RoiPeriod.TOTAL)


class TestChainOnBus:
    def test_only_period_results_are_published(self, bus):
        ReturnOnInvestmentChain(bus).subscribe()
        for event in daily_stream(date(2024, 1, 1), 56):
            bus.publish(event)

        periods = {e.period for e in bus.events_of(EventKind.ROI)}
        assert RoiPeriod.CUMULATIVE not in periods
        assert {RoiPeriod.DAILY, RoiPeriod.MONTHLY, RoiPeriod.TOTAL} <= periods

        totals = [e for e in bus.events_of(EventKind.ROI) if e.period == RoiPeriod.TOTAL]
        assert len(totals) == 1
        assert totals[0].date == date(2024, 2, 25)
