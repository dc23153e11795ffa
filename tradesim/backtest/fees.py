"""
Brokerage fee structures.

Two closed families of frozen value types, each dispatched by a single
function:

- Transaction fees (`transaction_fee`): ZeroFee, FlatFee, PercentageFee,
  TieredFee. A tiered fee picks its tier from the number of trades already
  placed this calendar month and charges max(flat, value * rate).
- Management fees (`management_fee`): NoManagementFee, FlatManagementFee,
  LadderedManagementFee. Laddered fees apply marginal rates per balance
  tier; tier boundaries are inclusive lower bounds.

Presets:
    cmc_markets()      $11 / 0.1%, then $9.90 / 0.08%, then $9.90 / 0.075%
    bell_direct()      $15 / 0.1%, then $13 / 0.08%, then $10 / 0.08%
    vanguard_retail()  0.1% flat percentage
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple, Union

from dateutil.relativedelta import relativedelta

from tradesim.core.constants import MATH_CONTEXT, ZERO
from tradesim.core.exceptions import ConfigurationError, UnsupportedEquityClassError


class EquityClass(str, Enum):
    STOCK = "STOCK"
    BOND = "BOND"
    FUTURE = "FUTURE"
    FOREX = "FOREX"
    METAL = "METAL"


EXCHANGE_TRADED = frozenset({EquityClass.STOCK, EquityClass.BOND})
ALL_CLASSES = frozenset(EquityClass)


# ============================================================================
# TRANSACTION FEES
# ============================================================================


@dataclass(frozen=True)
class ZeroFee:
    name: str = "zero"
    supported: frozenset = ALL_CLASSES


@dataclass(frozen=True)
class FlatFee:
    amount: Decimal
    name: str = "flat"
    supported: frozenset = EXCHANGE_TRADED

    def __post_init__(self):
        if self.amount < ZERO:
            raise ConfigurationError("Flat fee cannot be negative", config_key="amount")


@dataclass(frozen=True)
class PercentageFee:
    """`rate` is a fraction of trade value (0.001 == 0.1%)."""

    rate: Decimal
    name: str = "percentage"
    supported: frozenset = EXCHANGE_TRADED

    def __post_init__(self):
        if not ZERO <= self.rate < Decimal("1"):
            raise ConfigurationError("Percentage fee must be in [0, 1)", config_key="rate")


@dataclass(frozen=True)
class FeeTier:
    """Applies to the month's trades up to and including `max_trades` (None = unbounded)."""

    max_trades: Optional[int]
    flat: Decimal
    rate: Decimal


@dataclass(frozen=True)
class TieredFee:
    tiers: Tuple[FeeTier, ...]
    name: str = "tiered"
    supported: frozenset = EXCHANGE_TRADED

    def __post_init__(self):
        if not self.tiers:
            raise ConfigurationError("Tiered fee needs at least one tier", config_key="tiers")
        if self.tiers[-1].max_trades is not None:
            raise ConfigurationError("Last fee tier must be unbounded", config_key="tiers")
        bounds = [t.max_trades for t in self.tiers[:-1]]
        if any(b is None or b < 1 for b in bounds) or bounds != sorted(set(bounds)):
            raise ConfigurationError(
                "Fee tier trade limits must be positive and strictly increasing",
                config_key="tiers",
            )
        if any(t.flat < ZERO or t.rate < ZERO for t in self.tiers):
            raise ConfigurationError("Fee tiers cannot be negative", config_key="tiers")

    def tier_for(self, trade_number: int) -> FeeTier:
        for tier in self.tiers:
            if tier.max_trades is None or trade_number <= tier.max_trades:
                return tier
        return self.tiers[-1]


TransactionFee = Union[ZeroFee, FlatFee, PercentageFee, TieredFee]


def transaction_fee(structure: TransactionFee, trade_value: Decimal, trade_number: int = 1) -> Decimal:
    """
    Fee charged for one trade.

    Args:
        structure: Fee structure
        trade_value: price * quantity
        trade_number: This trade's position in the calendar month (1-based)
    """
    if isinstance(structure, ZeroFee):
        return ZERO
    if isinstance(structure, FlatFee):
        return structure.amount
    if isinstance(structure, PercentageFee):
        return MATH_CONTEXT.multiply(trade_value, structure.rate)
    if isinstance(structure, TieredFee):
        tier = structure.tier_for(trade_number)
        return max(tier.flat, MATH_CONTEXT.multiply(trade_value, tier.rate))
    raise ConfigurationError(f"Unknown fee structure: {structure!r}", config_key="fee_structure")


def check_equity_class(structure, equity_class: EquityClass) -> None:
    """Raises UnsupportedEquityClassError when the structure cannot price `equity_class`."""
    if equity_class not in structure.supported:
        raise UnsupportedEquityClassError(equity_class.value, structure.name)


def cmc_markets() -> TieredFee:
    return TieredFee(
        tiers=(
            FeeTier(10, Decimal("11"), Decimal("0.001")),
            FeeTier(30, Decimal("9.90"), Decimal("0.0008")),
            FeeTier(None, Decimal("9.90"), Decimal("0.00075")),
        ),
        name="cmc_markets",
    )


def bell_direct() -> TieredFee:
    return TieredFee(
        tiers=(
            FeeTier(10, Decimal("15"), Decimal("0.001")),
            FeeTier(30, Decimal("13"), Decimal("0.0008")),
            FeeTier(None, Decimal("10"), Decimal("0.0008")),
        ),
        name="bell_direct",
    )


def vanguard_retail() -> PercentageFee:
    return PercentageFee(rate=Decimal("0.001"), name="vanguard_retail")


TRANSACTION_FEE_PRESETS = {
    "zero": ZeroFee,
    "cmc_markets": cmc_markets,
    "bell_direct": bell_direct,
    "vanguard_retail": vanguard_retail,
}


# ============================================================================
# MANAGEMENT FEES
# ============================================================================


@dataclass(frozen=True)
class NoManagementFee:
    name: str = "none"


@dataclass(frozen=True)
class FlatManagementFee:
    """Annual `rate` of the holding's value, per whole year held."""

    rate: Decimal
    name: str = "flat"

    def __post_init__(self):
        if not ZERO <= self.rate < Decimal("1"):
            raise ConfigurationError("Management fee rate must be in [0, 1)", config_key="rate")


@dataclass(frozen=True)
class LadderedManagementFee:
    """
    Marginal annual rates per value tier.

    boundaries=(b1, b2), rates=(r0, r1, r2):
        [0, b1) at r0, [b1, b2) at r1, [b2, inf) at r2
    """

    boundaries: Tuple[Decimal, ...]
    rates: Tuple[Decimal, ...]
    name: str = field(default="laddered")

    def __post_init__(self):
        if len(self.rates) != len(self.boundaries) + 1:
            raise ConfigurationError(
                "Laddered fee needs exactly one more rate than boundaries",
                config_key="rates",
                details={"boundaries": len(self.boundaries), "rates": len(self.rates)},
            )
        if any(b <= ZERO for b in self.boundaries) or list(self.boundaries) != sorted(set(self.boundaries)):
            raise ConfigurationError(
                "Ladder boundaries must be positive and strictly increasing",
                config_key="boundaries",
            )
        if any(not ZERO <= r < Decimal("1") for r in self.rates):
            raise ConfigurationError("Ladder rates must be in [0, 1)", config_key="rates")

    def tier_contributions(self, value: Decimal) -> Tuple[Decimal, ...]:
        """Fee contributed by the slice of `value` inside each tier."""
        lowers = (ZERO,) + tuple(self.boundaries)
        uppers = tuple(self.boundaries) + (None,)
        contributions = []
        for lower, upper, rate in zip(lowers, uppers, self.rates):
            if value <= lower:
                contributions.append(ZERO)
                continue
            top = value if upper is None else min(value, upper)
            contributions.append(MATH_CONTEXT.multiply(top - lower, rate))
        return tuple(contributions)

    def annual_fee(self, value: Decimal) -> Decimal:
        return sum(self.tier_contributions(value), ZERO)


ManagementFee = Union[NoManagementFee, FlatManagementFee, LadderedManagementFee]


def whole_years(start: date, end: date) -> int:
    if end <= start:
        return 0
    return relativedelta(end, start).years


def management_fee(structure: ManagementFee, value: Decimal, start: date, end: date) -> Decimal:
    """Fee owed on a holding worth `value` for the whole years between start and end."""
    years = whole_years(start, end)
    if years == 0 or value <= ZERO:
        return ZERO
    if isinstance(structure, NoManagementFee):
        return ZERO
    if isinstance(structure, FlatManagementFee):
        return MATH_CONTEXT.multiply(MATH_CONTEXT.multiply(value, structure.rate), Decimal(years))
    if isinstance(structure, LadderedManagementFee):
        return MATH_CONTEXT.multiply(structure.annual_fee(value), Decimal(years))
    raise ConfigurationError(f"Unknown management fee: {structure!r}", config_key="management_fee")
