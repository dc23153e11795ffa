from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from tradesim.backtest.events import CashEvent, CashEventType, NetWorthEvent, NetWorthEventType
from tradesim.backtest.reporting import NetWorthHistory, PerformanceReporter


def history_frame(net_worth, deposits=None):
    deposits = deposits or [0.0] * len(net_worth)
    index = pd.date_range("2024-01-01", periods=len(net_worth), freq="D")
    return pd.DataFrame({"net_worth": net_worth, "deposits": deposits}, index=index)


class TestPerformanceReporter:
    def test_steady_growth(self):
        metrics = PerformanceReporter(history_frame([1000.0, 1100.0, 1210.0])).calculate_metrics()

        assert metrics["total_return_pct"] == pytest.approx(21.0)
        assert metrics["win_rate"] == 1.0
        assert metrics["max_drawdown_pct"] == pytest.approx(0.0)
        assert metrics["sortino_ratio"] == 0.0
        assert metrics["final_net_worth"] == 1210.0

    def test_deposits_are_not_returns(self):
        frame = history_frame([1000.0, 1100.0, 1200.0], deposits=[0.0, 100.0, 100.0])
        metrics = PerformanceReporter(frame).calculate_metrics()

        assert metrics["total_return_pct"] == pytest.approx(0.0)
        assert metrics["net_deposits"] == 200.0
        assert metrics["win_rate"] == 0.0

    def test_drawdown(self):
        metrics = PerformanceReporter(history_frame([1000.0, 1200.0, 900.0, 1000.0])).calculate_metrics()
        assert metrics["max_drawdown_pct"] == pytest.approx(-25.0)
        assert metrics["win_rate"] == pytest.approx(2 / 3)

    def test_empty_history(self):
        reporter = PerformanceReporter(history_frame([]))
        assert reporter.calculate_metrics() == {}
        assert reporter.generate_report() == {}

    def test_report_is_formatted(self):
        report = PerformanceReporter(history_frame([1000.0, 1100.0, 1210.0])).generate_report()
        assert report["Total Return"] == "21.00%"
        assert report["Win Rate"] == "100.0%"
        assert report["Final Net Worth"] == "1210.00"


class TestNetWorthHistory:
    def test_collects_daily_net_worth_and_deposits(self):
        history = NetWorthHistory()
        for day, value in ((date(2024, 1, 1), "1000"), (date(2024, 1, 2), "1100")):
            if day == date(2024, 1, 2):
                history.event(
                    CashEvent(
                        date=day,
                        type=CashEventType.DEPOSIT,
                        amount=Decimal("100"),
                        funds_before=Decimal("1000"),
                        funds_after=Decimal("1100"),
                    )
                )
            history.event(
                NetWorthEvent(
                    date=day,
                    type=NetWorthEventType.DAILY,
                    cash=Decimal(value),
                    equity_quantity=Decimal("0"),
                    equity_value=Decimal("0"),
                    net_worth=Decimal(value),
                )
            )
        history.event(
            NetWorthEvent(
                date=date(2024, 1, 2),
                type=NetWorthEventType.COMPLETED,
                cash=Decimal("1100"),
                equity_quantity=Decimal("0"),
                equity_value=Decimal("0"),
                net_worth=Decimal("1100"),
            )
        )

        df = history.to_dataframe()

        assert list(df["net_worth"]) == [1000.0, 1100.0]
        assert list(df["deposits"]) == [0.0, 100.0]
        assert df.index[0] == pd.Timestamp("2024-01-01")

    def test_empty(self):
        assert NetWorthHistory().to_dataframe().empty
