"""System-wide constants for simulation arithmetic and calendar rules.

Defines the fixed-precision parameters every ledger shares:
- **Decimal Context**: precision and rounding for all monetary math
- **Scales**: cash (cents) and default equity quantity scale
- **Calendar**: days per year (leap aware), ROI period rounding threshold
- **Sizing**: trading days used for annualized reporting

Most values overridable via environment variables for flexibility.
"""

import os
from decimal import ROUND_HALF_EVEN, Context, Decimal

# ============================================================================
# DECIMAL ARITHMETIC
# ============================================================================
# Rounding policy materially changes results. Keep every ledger on one context.

DECIMAL_PRECISION = int(os.getenv("DECIMAL_PRECISION", "16"))
MATH_CONTEXT = Context(prec=DECIMAL_PRECISION, rounding=ROUND_HALF_EVEN)

ZERO = Decimal("0")
ONE = Decimal("1")
ONE_HUNDRED = Decimal("100")

# Cash balances are credited in cents, equities in fractional units.
CASH_SCALE = Decimal("0.01")
EQUITY_SCALE = Decimal(os.getenv("EQUITY_SCALE", "0.0001"))

# ============================================================================
# CALENDAR
# ============================================================================

DAYS_IN_YEAR = 365
DAYS_IN_LEAP_YEAR = 366

# A trailing partial period counts as a whole one once it is this many days
# into the new month.
ROI_ROUNDING_DAYS = 20

# Tolerated distance between the requested warm-up start and the first bar
# (weekends and market holidays).
WARM_UP_GAP_TOLERANCE_DAYS = int(os.getenv("WARM_UP_GAP_TOLERANCE_DAYS", "5"))

# ============================================================================
# REPORTING
# ============================================================================

TRADING_DAYS = 252
ANNUALIZATION_FACTOR = TRADING_DAYS**0.5
