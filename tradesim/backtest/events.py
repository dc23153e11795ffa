"""
Simulation events.

Immutable value records, one per ledger mutation, delivered in generation
order through `tradesim.backtest.bus.EventBus`.
"""

from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Optional


class EventKind(str, Enum):
    CASH = "CASH"
    BROKERAGE = "BROKERAGE"
    EQUITY = "EQUITY"
    ORDER = "ORDER"
    NET_WORTH = "NET_WORTH"
    ROI = "ROI"
    SIMULATION = "SIMULATION"


class CashEventType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"
    DEPOSIT = "DEPOSIT"
    INTEREST = "INTEREST"


class BrokerageEventType(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class EquityEventType(str, Enum):
    MANAGEMENT_FEE = "MANAGEMENT_FEE"


class OrderKind(str, Enum):
    ENTRY = "ENTRY"
    EXIT = "EXIT"


class OrderEventType(str, Enum):
    PLACED_ENTRY = "PLACED_ENTRY"
    PLACED_EXIT = "PLACED_EXIT"
    EXECUTED = "EXECUTED"
    DELETE_ENTRY = "DELETE_ENTRY"
    DELETE_EXIT = "DELETE_EXIT"

    @classmethod
    def placed(cls, kind: OrderKind) -> "OrderEventType":
        return cls.PLACED_ENTRY if kind == OrderKind.ENTRY else cls.PLACED_EXIT

    @classmethod
    def deleted(cls, kind: OrderKind) -> "OrderEventType":
        return cls.DELETE_ENTRY if kind == OrderKind.ENTRY else cls.DELETE_EXIT


class NetWorthEventType(str, Enum):
    DAILY = "DAILY"
    COMPLETED = "COMPLETED"


class RoiPeriod(str, Enum):
    DAILY = "DAILY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    CUMULATIVE = "CUMULATIVE"
    TOTAL = "TOTAL"


@dataclass(frozen=True)
class Event:
    """Base event. `date` is the simulated day the mutation belongs to."""

    kind: ClassVar[EventKind]

    date: date

    def to_record(self) -> Dict[str, Any]:
        """Flat JSON-friendly representation (Decimals and dates as strings)."""
        record: Dict[str, Any] = {"kind": self.kind.value}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (Decimal, date)):
                value = str(value)
            record[f.name] = value
        return record


@dataclass(frozen=True)
class CashEvent(Event):
    kind: ClassVar[EventKind] = EventKind.CASH

    type: CashEventType
    amount: Decimal
    funds_before: Decimal
    funds_after: Decimal


@dataclass(frozen=True)
class BrokerageEvent(Event):
    kind: ClassVar[EventKind] = EventKind.BROKERAGE

    type: BrokerageEventType
    symbol: str
    quantity: Decimal
    price: Decimal
    trade_value: Decimal
    transaction_fee: Decimal
    holding_before: Decimal
    holding_after: Decimal


@dataclass(frozen=True)
class EquityEvent(Event):
    kind: ClassVar[EventKind] = EventKind.EQUITY

    type: EquityEventType
    symbol: str
    quantity: Decimal
    fee_value: Decimal
    holding_before: Decimal
    holding_after: Decimal


@dataclass(frozen=True)
class OrderEvent(Event):
    kind: ClassVar[EventKind] = EventKind.ORDER

    type: OrderEventType
    order_id: int
    order_kind: OrderKind
    requested_value: Optional[Decimal] = None
    requested_quantity: Optional[Decimal] = None


@dataclass(frozen=True)
class NetWorthEvent(Event):
    kind: ClassVar[EventKind] = EventKind.NET_WORTH

    type: NetWorthEventType
    cash: Decimal
    equity_quantity: Decimal
    equity_value: Decimal
    net_worth: Decimal


@dataclass(frozen=True)
class ReturnOnInvestmentEvent(Event):
    """ROI over (exclusive_start, date]. `date` is the inclusive end."""

    kind: ClassVar[EventKind] = EventKind.ROI

    period: RoiPeriod
    exclusive_start: date
    percentage: Decimal


@dataclass(frozen=True)
class SimulationCompleteEvent(Event):
    kind: ClassVar[EventKind] = EventKind.SIMULATION

    bars_processed: int
