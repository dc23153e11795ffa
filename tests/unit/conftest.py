from datetime import date, timedelta
from decimal import Decimal

import pytest

from tradesim.backtest.bus import EventBus
from tradesim.backtest.feed import PriceBar, PriceSeries


def _make_bar(day: date, close="50.00", open_=None, high=None, low=None) -> PriceBar:
    close = Decimal(str(close))
    open_ = Decimal(str(open_)) if open_ is not None else close
    return PriceBar(
        date=day,
        open=open_,
        high=Decimal(str(high)) if high is not None else max(open_, close),
        low=Decimal(str(low)) if low is not None else min(open_, close),
        close=close,
    )


def _make_series(start: date, days: int, close="50.00", weekdays_only=False, symbol="TEST") -> PriceSeries:
    bars = []
    day = start
    while len(bars) < days:
        if not weekdays_only or day.weekday() < 5:
            bars.append(_make_bar(day, close))
        day += timedelta(days=1)
    return PriceSeries(bars, symbol=symbol)


@pytest.fixture
def bus():
    return EventBus(record_history=True)


@pytest.fixture
def make_bar():
    return _make_bar


@pytest.fixture
def make_series():
    return _make_series
