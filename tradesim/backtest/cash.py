"""
Cash account: funds ledger with interest accrual and scheduled deposits.

Interest is calculated daily and credited monthly. Every `advance` accrues
into an escrow; when a month boundary is crossed the escrow is credited as a
single INTEREST event dated the first day of the new month.
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta

from tradesim.backtest.bus import EventBus
from tradesim.backtest.events import CashEvent, CashEventType
from tradesim.core.constants import (
    CASH_SCALE,
    DAYS_IN_LEAP_YEAR,
    DAYS_IN_YEAR,
    MATH_CONTEXT,
    ONE_HUNDRED,
    ZERO,
)
from tradesim.core.exceptions import ConfigurationError, InsufficientFundsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FlatInterestRate:
    """Simple annual rate, applied per calendar day (leap years have 366)."""

    annual_percent: Decimal = ZERO

    def __post_init__(self):
        if self.annual_percent < ZERO:
            raise ConfigurationError("Interest rate cannot be negative", config_key="annual_percent")

    def interest(self, funds: Decimal, start: date, end: date) -> Decimal:
        """Interest earned by `funds` over the days in [start, end)."""
        if end <= start or funds <= ZERO or self.annual_percent == ZERO:
            return ZERO

        total = ZERO
        cursor = start
        while cursor < end:
            year_end = date(cursor.year + 1, 1, 1)
            segment_end = min(end, year_end)
            days = (segment_end - cursor).days
            days_in_year = DAYS_IN_LEAP_YEAR if calendar.isleap(cursor.year) else DAYS_IN_YEAR
            # Divide last so whole-cent results stay exact.
            earned = MATH_CONTEXT.multiply(funds * self.annual_percent, Decimal(days))
            total = MATH_CONTEXT.add(
                total, MATH_CONTEXT.divide(earned, ONE_HUNDRED * days_in_year)
            )
            cursor = segment_end
        return total


@dataclass(frozen=True)
class DepositSchedule:
    """Fixed `amount` every `interval`, starting at `first_deposit`."""

    amount: Decimal
    interval: relativedelta
    first_deposit: Optional[date] = None

    def __post_init__(self):
        if self.amount <= ZERO:
            raise ConfigurationError("Deposit amount must be positive", config_key="amount")
        epoch = date(2000, 1, 1)
        if epoch + self.interval <= epoch:
            raise ConfigurationError("Deposit interval must be positive", config_key="interval")


def first_of_next_month(day: date) -> date:
    return day.replace(day=1) + relativedelta(months=1)


class CashAccount:
    """
    Funds ledger mutated only by the simulation engine and its brokerage.

    Args:
        opening_funds: Balance on the opening date
        opening_date: Interest accrues from this day
        interest_rate: FlatInterestRate (zero by default)
        deposits: Optional DepositSchedule; first deposit defaults to one
            interval after the opening date
        bus: EventBus receiving one CashEvent per mutation
    """

    def __init__(
        self,
        opening_funds: Decimal,
        opening_date: date,
        bus: EventBus,
        interest_rate: Optional[FlatInterestRate] = None,
        deposits: Optional[DepositSchedule] = None,
    ):
        if opening_funds < ZERO:
            raise ConfigurationError("Opening funds cannot be negative", config_key="opening_funds")

        self.bus = bus
        self.opening_date = opening_date
        self.interest_rate = interest_rate or FlatInterestRate()
        self.deposits = deposits
        self._balance = opening_funds

        self._accrued_to = opening_date
        self._last_advance: Optional[date] = None
        self._escrow = ZERO

        self._next_deposit: Optional[date] = None
        if deposits is not None:
            self._next_deposit = deposits.first_deposit or opening_date + deposits.interval

        # Telemetry
        self.total_interest = ZERO
        self.total_deposits = ZERO

    @property
    def balance(self) -> Decimal:
        return self._balance

    @property
    def escrow(self) -> Decimal:
        """Interest accrued but not yet credited."""
        return self._escrow

    def advance(self, day: date) -> None:
        """
        Move the account to `day`: accrue interest, then apply due deposits.

        Raises:
            ValueError: `day` is not after the previous advance, or precedes
                the opening date.
        """
        if day < self.opening_date:
            raise ValueError(f"Cannot advance to {day}, before opening date {self.opening_date}")
        if self._last_advance is not None and day <= self._last_advance:
            raise ValueError(f"Cannot advance to {day}, already advanced to {self._last_advance}")
        self._last_advance = day

        self._accrue_interest(day)
        self._apply_deposits(day)

    def _accrue_interest(self, day: date) -> None:
        while first_of_next_month(self._accrued_to) <= day:
            boundary = first_of_next_month(self._accrued_to)
            self._escrow += self.interest_rate.interest(self._balance, self._accrued_to, boundary)
            self._accrued_to = boundary
            self._pay_interest(boundary)

        self._escrow += self.interest_rate.interest(self._balance, self._accrued_to, day)
        self._accrued_to = day

    def _pay_interest(self, day: date) -> None:
        payable = self._escrow.quantize(CASH_SCALE, context=MATH_CONTEXT)
        if payable <= ZERO:
            return
        # Sub-cent residue stays in escrow for the next month.
        self._escrow -= payable
        self.total_interest += payable
        self._apply(CashEventType.INTEREST, payable, day)

    def _apply_deposits(self, day: date) -> None:
        while self._next_deposit is not None and self._next_deposit <= day:
            self.deposit(self.deposits.amount, day)
            self._next_deposit = self._next_deposit + self.deposits.interval

    def deposit(self, amount: Decimal, day: date) -> None:
        self._require_positive(amount)
        self.total_deposits += amount
        self._apply(CashEventType.DEPOSIT, amount, day)

    def credit(self, amount: Decimal, day: date) -> None:
        self._require_positive(amount)
        self._apply(CashEventType.CREDIT, amount, day)

    def debit(self, amount: Decimal, day: date) -> None:
        """
        Remove funds. All-or-nothing.

        Raises:
            InsufficientFundsError: amount exceeds the balance (nothing changes).
        """
        self._require_positive(amount)
        if amount > self._balance:
            raise InsufficientFundsError(required=amount, available=self._balance)
        self._apply(CashEventType.DEBIT, -amount, day)

    def _apply(self, type_: CashEventType, delta: Decimal, day: date) -> None:
        before = self._balance
        self._balance = MATH_CONTEXT.add(before, delta)
        self.bus.publish(
            CashEvent(
                date=day,
                type=type_,
                amount=abs(delta),
                funds_before=before,
                funds_after=self._balance,
            )
        )

    @staticmethod
    def _require_positive(amount: Decimal) -> None:
        if amount <= ZERO:
            raise ValueError(f"Amount must be positive, got {amount}")

    def __repr__(self) -> str:
        return f"CashAccount(balance={self._balance}, escrow={self._escrow})"
