"""
Signal providers.

Indicator logic is opaque to the simulation core: a provider looks at a price
window ending today and answers BUY, SELL or HOLD. Providers compose through
AllOf / AnyOf / ConfirmedBy.
"""

from abc import ABC, abstractmethod
from collections import deque
from datetime import date, timedelta
from enum import Enum
from typing import Deque, Dict, Optional, Sequence

import pandas as pd

from tradesim.backtest.feed import PriceBar, bars_to_dataframe


class SignalDecision(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class SignalProvider(ABC):
    """Base signal provider."""

    @abstractmethod
    def evaluate(self, window: pd.DataFrame) -> SignalDecision:
        """
        Args:
            window: Float OHLC DataFrame indexed by date, last row is today.
        """
        pass

    @property
    def lookback(self) -> int:
        """Bars of history needed before the first meaningful decision."""
        return 1


class PriceWindow:
    """Rolling window of the most recent bars, exposed as a DataFrame."""

    def __init__(self, size: int):
        if size < 1:
            raise ValueError("Window size must be positive")
        self.size = size
        self._bars: Deque[PriceBar] = deque(maxlen=size)

    def append(self, bar: PriceBar) -> None:
        self._bars.append(bar)

    def __len__(self) -> int:
        return len(self._bars)

    @property
    def full(self) -> bool:
        return len(self._bars) == self.size

    def to_dataframe(self) -> pd.DataFrame:
        return bars_to_dataframe(self._bars)


class MovingAverageCrossover(SignalProvider):
    """
    Moving Average Crossover.
    BUY on the day SMA_Fast crosses above SMA_Slow, SELL when it crosses back.
    """

    def __init__(self, fast_window: int = 50, slow_window: int = 200):
        if not 0 < fast_window < slow_window:
            raise ValueError("Need 0 < fast_window < slow_window")
        self.fast_window = fast_window
        self.slow_window = slow_window

    @property
    def lookback(self) -> int:
        return self.slow_window + 1

    def evaluate(self, window: pd.DataFrame) -> SignalDecision:
        if len(window) < self.lookback:
            return SignalDecision.HOLD

        closes = window["close"]
        spread = (
            closes.rolling(window=self.fast_window).mean()
            - closes.rolling(window=self.slow_window).mean()
        )
        today, yesterday = spread.iloc[-1], spread.iloc[-2]

        if today > 0 and yesterday <= 0:
            return SignalDecision.BUY
        if today < 0 and yesterday >= 0:
            return SignalDecision.SELL
        return SignalDecision.HOLD


class DonchianBreakout(SignalProvider):
    """
    Donchian Channel Breakout.
    BUY when close > Max(High, N) of the previous N bars, SELL when close < Min(Low, N).
    """

    def __init__(self, window: int = 20):
        self.window = window

    @property
    def lookback(self) -> int:
        return self.window + 1

    def evaluate(self, window: pd.DataFrame) -> SignalDecision:
        if len(window) < self.lookback:
            return SignalDecision.HOLD

        # Channel from the bars before today
        past = window.iloc[-(self.window + 1) : -1]
        close = window["close"].iloc[-1]

        if close > past["high"].max():
            return SignalDecision.BUY
        if close < past["low"].min():
            return SignalDecision.SELL
        return SignalDecision.HOLD


class AllOf(SignalProvider):
    """Decision only when every provider agrees."""

    def __init__(self, providers: Sequence[SignalProvider]):
        self.providers = list(providers)

    @property
    def lookback(self) -> int:
        return max(p.lookback for p in self.providers)

    def evaluate(self, window: pd.DataFrame) -> SignalDecision:
        decisions = {p.evaluate(window) for p in self.providers}
        if len(decisions) == 1:
            return decisions.pop()
        return SignalDecision.HOLD


class AnyOf(SignalProvider):
    """Decision when any provider fires, unless they disagree."""

    def __init__(self, providers: Sequence[SignalProvider]):
        self.providers = list(providers)

    @property
    def lookback(self) -> int:
        return max(p.lookback for p in self.providers)

    def evaluate(self, window: pd.DataFrame) -> SignalDecision:
        decisions = {p.evaluate(window) for p in self.providers} - {SignalDecision.HOLD}
        if len(decisions) == 1:
            return decisions.pop()
        return SignalDecision.HOLD


class ConfirmedBy(SignalProvider):
    """
    `primary` fires only when `confirmation` gave the same decision within
    `within_days` calendar days (either order, same day included).

    Stateful: expects one evaluate() call per trading day, in date order.
    """

    def __init__(self, primary: SignalProvider, confirmation: SignalProvider, within_days: int):
        if within_days < 0:
            raise ValueError("within_days cannot be negative")
        self.primary = primary
        self.confirmation = confirmation
        self.within = timedelta(days=within_days)
        self._last_primary: Dict[SignalDecision, date] = {}
        self._last_confirmation: Dict[SignalDecision, date] = {}

    @property
    def lookback(self) -> int:
        return max(self.primary.lookback, self.confirmation.lookback)

    def evaluate(self, window: pd.DataFrame) -> SignalDecision:
        today = window.index[-1].date()
        primary = self.primary.evaluate(window)
        confirmation = self.confirmation.evaluate(window)

        if primary is not SignalDecision.HOLD:
            self._last_primary[primary] = today
        if confirmation is not SignalDecision.HOLD:
            self._last_confirmation[confirmation] = today

        for decision in (primary, confirmation):
            if decision is SignalDecision.HOLD:
                continue
            if self._recent(self._last_primary, decision, today) and self._recent(
                self._last_confirmation, decision, today
            ):
                return decision
        return SignalDecision.HOLD

    def _recent(self, seen: Dict[SignalDecision, date], decision: SignalDecision, today: date) -> bool:
        last: Optional[date] = seen.get(decision)
        return last is not None and today - last <= self.within
