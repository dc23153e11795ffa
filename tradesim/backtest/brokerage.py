"""
Single-equity brokerage: holding ledger, trade execution and fee application.

Trades settle against a CashAccount. A buy debits cash before the holding is
credited, and a sell verifies the holding before any cash moves, so a failed
trade leaves both ledgers untouched.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, Decimal
from typing import Deque, Dict, Optional, Tuple

from dateutil.relativedelta import relativedelta
from opentelemetry import trace

from tradesim.backtest.bus import EventBus
from tradesim.backtest.cash import CashAccount
from tradesim.backtest.events import (
    BrokerageEvent,
    BrokerageEventType,
    EquityEvent,
    EquityEventType,
)
from tradesim.backtest.fees import (
    EquityClass,
    ManagementFee,
    NoManagementFee,
    TransactionFee,
    ZeroFee,
    check_equity_class,
    management_fee,
    transaction_fee,
    whole_years,
)
from tradesim.backtest.feed import PriceBar
from tradesim.backtest.orders import Order
from tradesim.core.constants import EQUITY_SCALE, MATH_CONTEXT, ZERO
from tradesim.core.exceptions import InsufficientEquitiesError, InsufficientFundsError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class Equity:
    symbol: str
    equity_class: EquityClass = EquityClass.STOCK
    scale: Decimal = EQUITY_SCALE

    def round_down(self, quantity: Decimal) -> Decimal:
        return quantity.quantize(self.scale, rounding=ROUND_DOWN)


@dataclass(frozen=True)
class Lot:
    """Units bought on one day at one all-in unit cost."""

    date: date
    quantity: Decimal
    unit_cost: Decimal


class EquityHolding:
    """Quantity held plus a FIFO cost-basis ledger."""

    def __init__(self):
        self.lots: Deque[Lot] = deque()
        self.quantity = ZERO

    def add(self, lot: Lot) -> None:
        self.lots.append(lot)
        self.quantity += lot.quantity

    def remove(self, quantity: Decimal) -> Decimal:
        """Remove `quantity` oldest-first. Returns the cost basis released."""
        if quantity > self.quantity:
            raise InsufficientEquitiesError(required=quantity, available=self.quantity)

        released = ZERO
        remaining = quantity
        while remaining > ZERO:
            lot = self.lots[0]
            if lot.quantity <= remaining:
                self.lots.popleft()
                taken = lot.quantity
            else:
                taken = remaining
                self.lots[0] = Lot(lot.date, lot.quantity - taken, lot.unit_cost)
            released += MATH_CONTEXT.multiply(taken, lot.unit_cost)
            remaining -= taken
        self.quantity -= quantity
        return released

    @property
    def cost_basis(self) -> Decimal:
        return sum((MATH_CONTEXT.multiply(l.quantity, l.unit_cost) for l in self.lots), ZERO)


class MonthlyTradeCounter:
    """Trades executed per calendar month, for tiered fee structures."""

    def __init__(self):
        self._counts: Dict[Tuple[int, int], int] = defaultdict(int)

    def count(self, day: date) -> int:
        return self._counts[(day.year, day.month)]

    def record(self, day: date) -> None:
        self._counts[(day.year, day.month)] += 1


class Brokerage:
    """
    Holds one equity and executes orders against a cash account.

    Args:
        equity: Traded instrument
        bus: EventBus for BrokerageEvent / EquityEvent
        fees: Transaction fee structure (zero by default)
        management: Management fee structure charged yearly in equity units

    Raises:
        UnsupportedEquityClassError: the fee structure cannot trade this equity
    """

    def __init__(
        self,
        equity: Equity,
        bus: EventBus,
        fees: Optional[TransactionFee] = None,
        management: Optional[ManagementFee] = None,
    ):
        self.equity = equity
        self.bus = bus
        self.fees = fees or ZeroFee()
        self.management = management or NoManagementFee()
        check_equity_class(self.fees, equity.equity_class)

        self.holding = EquityHolding()
        self.trades = MonthlyTradeCounter()
        self._management_anchor: Optional[date] = None

        # Telemetry
        self.total_fees = ZERO
        self.total_management_fees = ZERO

    @property
    def balance(self) -> Decimal:
        return self.holding.quantity

    def value_at(self, price: Decimal) -> Decimal:
        return MATH_CONTEXT.multiply(self.holding.quantity, price)

    def calculate_fee(self, trade_value: Decimal, day: date) -> Decimal:
        """Fee the next trade on `day` would be charged."""
        return transaction_fee(self.fees, trade_value, self.trades.count(day) + 1)

    @tracer.start_as_current_span("brokerage_buy")
    def buy(self, order: Order, bar: PriceBar, cash: CashAccount) -> BrokerageEvent:
        """
        Execute an entry order at the trigger's price.

        A requested value covers price * quantity + fee; the quantity is
        rounded down to the equity's scale.

        Raises:
            InsufficientFundsError: cash does not cover the trade (no mutation)
        """
        price = order.trigger.price(bar)
        if order.requested_quantity is not None:
            quantity = self.equity.round_down(order.requested_quantity)
        else:
            fee_estimate = self.calculate_fee(order.requested_value, bar.date)
            quantity = self.equity.round_down(
                MATH_CONTEXT.divide(order.requested_value - fee_estimate, price)
            )
        if quantity <= ZERO:
            raise InsufficientFundsError(
                required=order.requested_value or order.requested_quantity,
                available=cash.balance,
                details={"reason": "value does not cover one unit after fees"},
            )

        trade_value = MATH_CONTEXT.multiply(price, quantity)
        fee = self.calculate_fee(trade_value, bar.date)
        total_cost = MATH_CONTEXT.add(trade_value, fee)

        cash.debit(total_cost, bar.date)

        before = self.holding.quantity
        self.holding.add(Lot(bar.date, quantity, MATH_CONTEXT.divide(total_cost, quantity)))
        return self._settle(BrokerageEventType.BUY, bar.date, quantity, price, trade_value, fee, before)

    @tracer.start_as_current_span("brokerage_sell")
    def sell(self, order: Order, bar: PriceBar, cash: CashAccount) -> BrokerageEvent:
        """
        Execute an exit order, crediting proceeds net of the fee.

        Raises:
            InsufficientEquitiesError: holding is smaller than the order (no mutation)
            InsufficientFundsError: the fee exceeds the proceeds and cash cannot
                cover the difference (no mutation)
        """
        price = order.trigger.price(bar)
        if order.requested_quantity is not None:
            quantity = self.equity.round_down(order.requested_quantity)
        else:
            quantity = self.equity.round_down(MATH_CONTEXT.divide(order.requested_value, price))
        if quantity <= ZERO or quantity > self.holding.quantity:
            raise InsufficientEquitiesError(required=quantity, available=self.holding.quantity)

        trade_value = MATH_CONTEXT.multiply(price, quantity)
        fee = self.calculate_fee(trade_value, bar.date)
        proceeds = trade_value - fee

        if proceeds > ZERO:
            cash.credit(proceeds, bar.date)
        elif proceeds < ZERO:
            cash.debit(-proceeds, bar.date)

        before = self.holding.quantity
        self.holding.remove(quantity)
        return self._settle(BrokerageEventType.SELL, bar.date, quantity, price, trade_value, fee, before)

    def _settle(
        self,
        type_: BrokerageEventType,
        day: date,
        quantity: Decimal,
        price: Decimal,
        trade_value: Decimal,
        fee: Decimal,
        before: Decimal,
    ) -> BrokerageEvent:
        self.trades.record(day)
        self.total_fees += fee
        event = BrokerageEvent(
            date=day,
            type=type_,
            symbol=self.equity.symbol,
            quantity=quantity,
            price=price,
            trade_value=trade_value,
            transaction_fee=fee,
            holding_before=before,
            holding_after=self.holding.quantity,
        )
        logger.debug(
            f"{type_.value} {quantity} {self.equity.symbol} @ {price} (fee {fee}) on {day}"
        )
        self.bus.publish(event)
        return event

    def apply_management_fee(self, bar: PriceBar) -> Optional[EquityEvent]:
        """
        Charge the yearly management fee in equity units at the close price.

        The first call anchors the fee year; each whole year elapsed since
        the anchor is charged once.
        """
        if self._management_anchor is None:
            self._management_anchor = bar.date
            return None

        years = whole_years(self._management_anchor, bar.date)
        if years == 0:
            return None

        start = self._management_anchor
        self._management_anchor = start + relativedelta(years=years)

        value = self.value_at(bar.close)
        fee = management_fee(self.management, value, start, bar.date)
        if fee <= ZERO:
            return None

        units = min(self.equity.round_down(MATH_CONTEXT.divide(fee, bar.close)), self.holding.quantity)
        if units <= ZERO:
            return None

        before = self.holding.quantity
        self.holding.remove(units)
        self.total_management_fees += fee
        event = EquityEvent(
            date=bar.date,
            type=EquityEventType.MANAGEMENT_FEE,
            symbol=self.equity.symbol,
            quantity=units,
            fee_value=fee,
            holding_before=before,
            holding_after=self.holding.quantity,
        )
        logger.debug(f"Management fee {fee} ({units} units of {self.equity.symbol}) on {bar.date}")
        self.bus.publish(event)
        return event
