"""Per-run configuration models.

Immutable pydantic models handed to the simulation core. They are built once
per run and never re-read mid-run. `load_simulation_config` converts
validation failures into ConfigurationError.
"""

from datetime import date
from decimal import Decimal
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from tradesim.core.exceptions import ConfigurationError


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SimulationWindow(_Frozen):
    start: date = Field(..., description="First simulated trading day (inclusive)")
    end: date = Field(..., description="Last simulated trading day (inclusive)")
    warm_up_days: int = Field(default=0, ge=0, description="Calendar days of history before start")

    @model_validator(mode="after")
    def check_range(self):
        if self.start >= self.end:
            raise ValueError(f"start {self.start} must be before end {self.end}")
        return self


class EquityConfig(_Frozen):
    symbol: str = Field(..., min_length=1)
    equity_class: Literal["STOCK", "BOND", "FUTURE", "FOREX", "METAL"] = "STOCK"
    scale: Decimal = Field(default=Decimal("0.0001"), gt=0)


class DepositConfig(_Frozen):
    amount: Decimal = Field(..., gt=0)
    every_days: Optional[int] = Field(default=None, gt=0)
    every_months: Optional[int] = Field(default=None, gt=0)
    first_deposit: Optional[date] = None

    @model_validator(mode="after")
    def check_interval(self):
        if (self.every_days is None) == (self.every_months is None):
            raise ValueError("Set exactly one of every_days or every_months")
        return self


class BrokerageConfig(_Frozen):
    fee_structure: Literal["zero", "cmc_markets", "bell_direct", "vanguard_retail", "flat", "percentage"] = "zero"
    flat_fee: Optional[Decimal] = Field(default=None, ge=0)
    percentage_fee: Optional[Decimal] = Field(default=None, ge=0, lt=1)
    management_fee: Literal["none", "flat", "laddered"] = "none"
    management_rate: Optional[Decimal] = Field(default=None, ge=0, lt=1)
    ladder_boundaries: Tuple[Decimal, ...] = ()
    ladder_rates: Tuple[Decimal, ...] = ()

    @model_validator(mode="after")
    def check_parameters(self):
        if self.fee_structure == "flat" and self.flat_fee is None:
            raise ValueError("flat fee structure needs flat_fee")
        if self.fee_structure == "percentage" and self.percentage_fee is None:
            raise ValueError("percentage fee structure needs percentage_fee")
        if self.management_fee == "flat" and self.management_rate is None:
            raise ValueError("flat management fee needs management_rate")
        if self.management_fee == "laddered" and not self.ladder_rates:
            raise ValueError("laddered management fee needs ladder_rates")
        return self


class EntryConfig(_Frozen):
    kind: Literal["periodic", "signal"] = "periodic"
    trade_value: Optional[Decimal] = Field(default=None, gt=0)
    trade_fraction: Optional[Decimal] = Field(default=None, gt=0, le=1)
    trade_minimum: Decimal = Field(default=Decimal("0"), ge=0)
    trade_maximum: Optional[Decimal] = Field(default=None, gt=0)
    interval_days: int = Field(default=7, gt=0)
    first_order_offset_days: int = Field(default=0, ge=0)
    fast_window: int = Field(default=20, gt=0)
    slow_window: int = Field(default=50, gt=1)
    confirm_within_days: Optional[int] = Field(default=None, ge=0)
    valid_days: Optional[int] = Field(default=None, ge=0)
    on_insufficient_funds: Optional[Literal["DELETE", "RESUBMIT"]] = None

    @model_validator(mode="after")
    def check_sizing(self):
        if (self.trade_value is None) == (self.trade_fraction is None):
            raise ValueError("Set exactly one of trade_value or trade_fraction")
        if self.kind == "signal" and self.fast_window >= self.slow_window:
            raise ValueError("fast_window must be shorter than slow_window")
        return self


class ExitConfig(_Frozen):
    kind: Literal["hold", "signal"] = "hold"
    fast_window: int = Field(default=20, gt=0)
    slow_window: int = Field(default=50, gt=1)


class SimulationConfig(_Frozen):
    name: str = Field(..., min_length=1)
    equity: EquityConfig
    window: SimulationWindow
    opening_funds: Decimal = Field(..., ge=0)
    interest_percent: Decimal = Field(default=Decimal("0"), ge=0)
    deposit: Optional[DepositConfig] = None
    brokerage: BrokerageConfig = BrokerageConfig()
    entry: EntryConfig
    exit: ExitConfig = ExitConfig()


def load_simulation_config(data: dict) -> SimulationConfig:
    """
    Raises:
        ConfigurationError: the data does not describe a valid run
    """
    try:
        return SimulationConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid simulation config: {e.error_count()} error(s)",
            config_key=str(data.get("name", "")) if isinstance(data, dict) else None,
            details={"errors": "; ".join(err["msg"] for err in e.errors())},
        ) from e
