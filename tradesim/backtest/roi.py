"""
Return on investment calculators.

A listener chain fed by the simulation's event stream:

    CumulativeReturnOnInvestment      per trading day, deposit adjusted
        -> PeriodicReturnOnInvestment(DAILY | MONTHLY | YEARLY)
        -> TotalReturnOnInvestment

The cumulative calculator turns consecutive DAILY net worth events into
percentage changes, discounting deposits made in between. Periodic children
sum those changes per bucket and emit once a bucket boundary is crossed. On
completion a trailing partial bucket is emitted only if it rounds up to a
whole period: a partial month counts once it is more than 20 days long, a
partial year once it is 11 months and more than 20 days long.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from tradesim.backtest.bus import EventBus
from tradesim.backtest.events import (
    CashEvent,
    CashEventType,
    Event,
    EventKind,
    NetWorthEvent,
    NetWorthEventType,
    ReturnOnInvestmentEvent,
    RoiPeriod,
)
from tradesim.core.constants import MATH_CONTEXT, ONE_HUNDRED, ROI_ROUNDING_DAYS, ZERO

logger = logging.getLogger(__name__)

PERIOD_STEPS = {
    RoiPeriod.DAILY: relativedelta(days=1),
    RoiPeriod.MONTHLY: relativedelta(months=1),
    RoiPeriod.YEARLY: relativedelta(years=1),
}


@dataclass(frozen=True)
class RoundedPeriod:
    """Calendar length of (exclusive_start, inclusive_end], rounded for display."""

    years: int
    months: int
    days: int

    @classmethod
    def between(cls, exclusive_start: date, inclusive_end: date) -> "RoundedPeriod":
        delta = relativedelta(inclusive_end, exclusive_start)
        return cls(delta.years, delta.months, delta.days)

    @property
    def rounded_months(self) -> int:
        return self.months + 1 if self.days > ROI_ROUNDING_DAYS else self.months

    @property
    def rounded_years(self) -> int:
        if self.days > ROI_ROUNDING_DAYS and self.months == 11:
            return self.years + 1
        return self.years

    @property
    def is_daily(self) -> bool:
        return self.days > 0 and self.rounded_months == 0 and self.rounded_years == 0

    @property
    def is_monthly(self) -> bool:
        return self.rounded_months > 0 and self.rounded_years == 0

    @property
    def is_yearly(self) -> bool:
        return self.rounded_years > 0

    def counts_as(self, period: RoiPeriod) -> bool:
        """Whether a partial bucket of this length is reported as `period`."""
        if period == RoiPeriod.YEARLY:
            return self.is_yearly
        if period == RoiPeriod.MONTHLY:
            return self.is_monthly or self.is_yearly
        return self.days > 0 or self.months > 0 or self.years > 0


def percentage_change(previous: Decimal, current: Decimal, deposits: Decimal = ZERO) -> Decimal:
    """(current - previous - deposits) / previous * 100, zero when undefined."""
    if previous == ZERO:
        return ZERO
    change = current - previous - deposits
    if change == ZERO:
        return ZERO
    return MATH_CONTEXT.multiply(MATH_CONTEXT.divide(change, previous), ONE_HUNDRED)


class _ChainNode:
    """Forwards results to children and, optionally, to an EventBus."""

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus
        self.children: List["_ChainNode"] = []
        self.results: List[ReturnOnInvestmentEvent] = []

    def add_child(self, child: "_ChainNode") -> "_ChainNode":
        self.children.append(child)
        return child

    def _emit(self, result: ReturnOnInvestmentEvent, publish: bool = True) -> None:
        self.results.append(result)
        if publish and self.bus is not None:
            self.bus.publish(result)
        for child in self.children:
            child.roi(result)

    def roi(self, result: ReturnOnInvestmentEvent) -> None:
        pass

    def complete(self, day: date) -> None:
        for child in self.children:
            child.complete(day)


class CumulativeReturnOnInvestment(_ChainNode):
    """Deposit-adjusted percentage change between consecutive DAILY net worths."""

    def __init__(self, bus: Optional[EventBus] = None):
        super().__init__(bus)
        self._previous: Optional[Decimal] = None
        self._previous_date: Optional[date] = None
        self._deposits = ZERO

    def event(self, event: Event) -> None:
        if isinstance(event, CashEvent):
            if event.type == CashEventType.DEPOSIT:
                self._deposits += event.amount
        elif isinstance(event, NetWorthEvent):
            if event.type == NetWorthEventType.DAILY:
                self._net_worth(event)
            else:
                self.complete(event.date)

    def _net_worth(self, event: NetWorthEvent) -> None:
        if self._previous is None:
            percentage = ZERO
            start = event.date - timedelta(days=1)
        else:
            percentage = percentage_change(self._previous, event.net_worth, self._deposits)
            start = self._previous_date

        self._previous = event.net_worth
        self._previous_date = event.date
        self._deposits = ZERO

        # Per-day values only feed the chain; they are not re-published.
        self._emit(
            ReturnOnInvestmentEvent(
                date=event.date,
                period=RoiPeriod.CUMULATIVE,
                exclusive_start=start,
                percentage=percentage,
            ),
            publish=False,
        )


class PeriodicReturnOnInvestment(_ChainNode):
    """Sums incoming percentages per daily, monthly or yearly bucket."""

    def __init__(self, period: RoiPeriod, bus: Optional[EventBus] = None):
        if period not in PERIOD_STEPS:
            raise ValueError(f"Unsupported ROI period: {period}")
        super().__init__(bus)
        self.period = period
        self.step = PERIOD_STEPS[period]
        self._anchor: Optional[date] = None
        self._buckets = 0
        self._start: Optional[date] = None
        self._last_end: Optional[date] = None
        self._sum = ZERO
        self._pending = False

    @property
    def next_boundary(self) -> Optional[date]:
        if self._anchor is None:
            return None
        return self._anchor + self.step * (self._buckets + 1)

    def roi(self, result: ReturnOnInvestmentEvent) -> None:
        if self._anchor is None:
            self._anchor = result.exclusive_start
            self._start = result.exclusive_start

        self._sum += result.percentage
        self._last_end = result.date
        self._pending = True

        # buckets close on their inclusive end date
        if result.date >= self.next_boundary:
            while self.next_boundary <= result.date:
                self._buckets += 1
            self._flush()

    def complete(self, day: date) -> None:
        if self._pending:
            length = RoundedPeriod.between(self._start, self._last_end)
            if length.counts_as(self.period):
                self._flush()
            else:
                logger.debug(
                    f"{self.period.value} ROI: trailing {length} not reported"
                )
        super().complete(day)

    def _flush(self) -> None:
        self._emit(
            ReturnOnInvestmentEvent(
                date=self._last_end,
                period=self.period,
                exclusive_start=self._start,
                percentage=self._sum,
            )
        )
        self._start = self._last_end
        self._sum = ZERO
        self._pending = False


class TotalReturnOnInvestment(_ChainNode):
    """Sum of every percentage seen; emitted once on completion."""

    def __init__(self, bus: Optional[EventBus] = None):
        super().__init__(bus)
        self.total = ZERO
        self._start: Optional[date] = None
        self._last_end: Optional[date] = None

    def roi(self, result: ReturnOnInvestmentEvent) -> None:
        if self._start is None:
            self._start = result.exclusive_start
        self.total += result.percentage
        self._last_end = result.date

    def complete(self, day: date) -> None:
        if self._start is not None:
            self._emit(
                ReturnOnInvestmentEvent(
                    date=self._last_end,
                    period=RoiPeriod.TOTAL,
                    exclusive_start=self._start,
                    percentage=self.total,
                )
            )
        super().complete(day)


class ReturnOnInvestmentChain:
    """
    Standard chain: cumulative -> daily, monthly, yearly, total.

    Usage:
        chain = ReturnOnInvestmentChain(bus).subscribe()
        ... engine.run() ...
        chain.monthly.results
    """

    def __init__(self, bus: Optional[EventBus] = None):
        self.bus = bus
        self.cumulative = CumulativeReturnOnInvestment(bus)
        self.daily = self.cumulative.add_child(PeriodicReturnOnInvestment(RoiPeriod.DAILY, bus))
        self.monthly = self.cumulative.add_child(PeriodicReturnOnInvestment(RoiPeriod.MONTHLY, bus))
        self.yearly = self.cumulative.add_child(PeriodicReturnOnInvestment(RoiPeriod.YEARLY, bus))
        self.total = self.cumulative.add_child(TotalReturnOnInvestment(bus))

    def subscribe(self) -> "ReturnOnInvestmentChain":
        self.bus.subscribe(self.event, EventKind.CASH, EventKind.NET_WORTH)
        return self

    def event(self, event: Event) -> None:
        self.cumulative.event(event)
