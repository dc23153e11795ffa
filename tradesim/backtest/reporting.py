from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, List

import numpy as np
import pandas as pd

from tradesim.backtest.bus import EventBus
from tradesim.backtest.events import (
    CashEvent,
    CashEventType,
    Event,
    EventKind,
    NetWorthEvent,
    NetWorthEventType,
)
from tradesim.core.constants import ANNUALIZATION_FACTOR, TRADING_DAYS


class NetWorthHistory:
    """
    Collects the daily net worth curve and the deposits made on each day.
    """

    def __init__(self):
        self.records: List[dict] = []
        self._deposits: Dict[date, Decimal] = defaultdict(Decimal)

    def subscribe(self, bus: EventBus) -> "NetWorthHistory":
        bus.subscribe(self.event, EventKind.CASH, EventKind.NET_WORTH)
        return self

    def event(self, event: Event) -> None:
        if isinstance(event, CashEvent) and event.type == CashEventType.DEPOSIT:
            self._deposits[event.date] += event.amount
        elif isinstance(event, NetWorthEvent) and event.type == NetWorthEventType.DAILY:
            self.records.append(
                {
                    "date": event.date,
                    "net_worth": event.net_worth,
                    "cash": event.cash,
                    "equity_value": event.equity_value,
                }
            )

    def to_dataframe(self) -> pd.DataFrame:
        if not self.records:
            return pd.DataFrame(columns=["net_worth", "cash", "equity_value", "deposits"])
        df = pd.DataFrame(self.records)
        df["deposits"] = [self._deposits.get(d, Decimal("0")) for d in df["date"]]
        df["date"] = pd.to_datetime(df["date"])
        df.set_index("date", inplace=True)
        return df.astype(float)


class PerformanceReporter:
    """
    Calculates and reports run metrics from the net worth curve.

    Daily returns are deposit adjusted so scheduled contributions do not
    show up as performance.
    """

    def __init__(self, history: pd.DataFrame):
        """
        history: DataFrame(index=date, columns=['net_worth', 'deposits', ...])
        """
        self.history = history

    def daily_returns(self) -> pd.Series:
        net_worth = self.history["net_worth"]
        previous = net_worth.shift(1)
        returns = (net_worth - previous - self.history["deposits"]) / previous
        return returns.replace([np.inf, -np.inf], np.nan).dropna()

    def calculate_metrics(self) -> dict:
        if self.history.empty:
            return {}

        returns = self.daily_returns()
        growth = (1 + returns).cumprod()
        total_return = growth.iloc[-1] - 1.0 if len(growth) else 0.0

        days = (self.history.index[-1] - self.history.index[0]).days
        years = days / 365.25
        cagr = (1 + total_return) ** (1 / years) - 1.0 if years > 0 and total_return > -1 else 0.0

        if len(returns) > 1 and returns.std() > 0:
            sharpe = (returns.mean() / returns.std()) * ANNUALIZATION_FACTOR
        else:
            sharpe = 0.0

        if len(growth):
            running_max = growth.cummax()
            max_drawdown = ((growth - running_max) / running_max).min()
        else:
            max_drawdown = 0.0

        return {
            "total_return_pct": float(total_return * 100),
            "cagr_pct": float(cagr * 100),
            "sharpe_ratio": float(sharpe),
            "sortino_ratio": self._calculate_sortino(returns),
            "max_drawdown_pct": float(max_drawdown * 100),
            "win_rate": self._calculate_win_rate(returns),
            "net_deposits": float(self.history["deposits"].sum()),
            "final_net_worth": float(self.history["net_worth"].iloc[-1]),
        }

    def _calculate_sortino(self, returns: pd.Series, risk_free: float = 0.0) -> float:
        """
        Sortino Ratio: Excess Return / Downside Deviation.
        """
        if len(returns) < 2:
            return 0.0

        excess_returns = returns - risk_free
        downside_returns = excess_returns[excess_returns < 0]
        if len(downside_returns) == 0:
            return 0.0

        downside_std = np.std(downside_returns) * ANNUALIZATION_FACTOR
        if downside_std == 0:
            return 0.0
        return float(returns.mean() * TRADING_DAYS / downside_std)

    def _calculate_win_rate(self, returns: pd.Series) -> float:
        if len(returns) == 0:
            return 0.0
        return float((returns > 0).sum() / len(returns))

    def generate_report(self) -> dict:
        metrics = self.calculate_metrics()
        if not metrics:
            return {}

        return {
            "Total Return": f"{metrics['total_return_pct']:.2f}%",
            "CAGR": f"{metrics['cagr_pct']:.2f}%",
            "Sharpe Ratio": f"{metrics['sharpe_ratio']:.2f}",
            "Sortino Ratio": f"{metrics['sortino_ratio']:.2f}",
            "Max Drawdown": f"{metrics['max_drawdown_pct']:.2f}%",
            "Win Rate": f"{metrics['win_rate']:.1%}",
            "Net Deposits": f"{metrics['net_deposits']:.2f}",
            "Final Net Worth": f"{metrics['final_net_worth']:.2f}",
        }
