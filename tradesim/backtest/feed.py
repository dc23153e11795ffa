import bisect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Optional, Sequence

import pandas as pd

from tradesim.core.constants import WARM_UP_GAP_TOLERANCE_DAYS
from tradesim.core.exceptions import DataGapError

logger = logging.getLogger(__name__)

PRICE_COLUMNS = ("open", "high", "low", "close")


@dataclass(frozen=True)
class PriceBar:
    """One trading day's OHLC record."""

    date: date
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal


def bars_to_dataframe(bars: Sequence[PriceBar]) -> pd.DataFrame:
    """Float OHLC DataFrame indexed by date."""
    return pd.DataFrame(
        {column: [float(getattr(b, column)) for b in bars] for column in PRICE_COLUMNS},
        index=pd.DatetimeIndex([pd.Timestamp(b.date) for b in bars], name="date"),
    )


def _to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _to_date(value) -> date:
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, date):
        return value
    return pd.Timestamp(value).date()


class PriceSeries:
    """
    Ordered, gap-tolerant sequence of daily price bars.

    Dates must be strictly increasing. Non-trading days are simply absent;
    they are never represented as zero-price bars. Read-only after
    construction.
    """

    def __init__(self, bars: Sequence[PriceBar], symbol: str = ""):
        bars = tuple(bars)
        for previous, current in zip(bars, bars[1:]):
            if current.date <= previous.date:
                raise ValueError(
                    f"Price bars must be strictly increasing in date: "
                    f"{previous.date} followed by {current.date}"
                )
        self.symbol = symbol
        self._bars = bars
        self._dates = [bar.date for bar in bars]

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame, symbol: str = "") -> "PriceSeries":
        """
        df: DataFrame(index=DatetimeIndex, columns=['open','high','low','close', ...])
        A 'date' column is used instead of the index when present.
        """
        missing = [c for c in PRICE_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"Price data is missing columns: {missing}")

        frame = df.set_index("date") if "date" in df.columns else df
        bars = [
            PriceBar(
                date=_to_date(index),
                open=_to_decimal(row["open"]),
                high=_to_decimal(row["high"]),
                low=_to_decimal(row["low"]),
                close=_to_decimal(row["close"]),
            )
            for index, row in frame.iterrows()
        ]
        return cls(bars, symbol=symbol)

    def to_dataframe(self) -> pd.DataFrame:
        """Float view of the series, indexed by date, for signal providers."""
        return bars_to_dataframe(self._bars)

    def __len__(self) -> int:
        return len(self._bars)

    def __bool__(self) -> bool:
        return bool(self._bars)

    def at_or_none(self, day: date) -> Optional[PriceBar]:
        i = bisect.bisect_left(self._dates, day)
        if i < len(self._dates) and self._dates[i] == day:
            return self._bars[i]
        return None

    def earliest_date(self) -> date:
        if not self._bars:
            raise DataGapError("Price series is empty", symbol=self.symbol)
        return self._dates[0]

    def latest_date(self) -> date:
        if not self._bars:
            raise DataGapError("Price series is empty", symbol=self.symbol)
        return self._dates[-1]

    def in_order(self) -> Iterator[PriceBar]:
        """Fresh chronological iterator on every call."""
        return iter(self._bars)

    def window(self, start: date, end: date) -> "PriceSeries":
        """Bars with start <= date <= end."""
        lo = bisect.bisect_left(self._dates, start)
        hi = bisect.bisect_right(self._dates, end)
        return PriceSeries(self._bars[lo:hi], symbol=self.symbol)

    def split_warm_up(
        self,
        start: date,
        end: date,
        warm_up_days: int = 0,
        gap_tolerance_days: int = WARM_UP_GAP_TOLERANCE_DAYS,
    ) -> tuple["PriceSeries", "PriceSeries"]:
        """
        Split into (warm_up, simulation) series for the analysis window.

        Raises:
            DataGapError: history does not reach back to start - warm_up_days
                (within the gap tolerance), or the window holds no bars.
        """
        warm_up_start = start - timedelta(days=warm_up_days)
        tolerance = timedelta(days=gap_tolerance_days)

        if not self._bars or self._dates[0] > warm_up_start + tolerance:
            raise DataGapError(
                "Insufficient history for the warm-up period",
                symbol=self.symbol,
                details={
                    "required_from": str(warm_up_start),
                    "available_from": str(self._dates[0]) if self._bars else None,
                },
            )

        simulation = self.window(start, end)
        if not simulation or simulation.earliest_date() > start + tolerance:
            raise DataGapError(
                "No price data at the start of the analysis window",
                symbol=self.symbol,
                details={"start": str(start), "end": str(end)},
            )

        warm_up = self.window(warm_up_start, start - timedelta(days=1))
        logger.debug(
            f"{self.symbol}: {len(warm_up)} warm-up bars, {len(simulation)} simulation bars"
        )
        return warm_up, simulation


class PriceDataProvider(ABC):
    """
    Abstract Base Class for historical price sources.
    """

    @abstractmethod
    def fetch(self, symbol: str, start: date, end: date) -> PriceSeries:
        """Ordered, deduplicated bars with start <= date <= end (inclusive)."""
        pass


class DataFrameProvider(PriceDataProvider):
    """
    Serves price series from in-memory DataFrames.
    """

    def __init__(self, data_dict: dict[str, pd.DataFrame]):
        """
        data_dict: { 'VGS': pd.DataFrame(index=datetime, columns=['open','high','low','close']) }
        """
        self.data = data_dict

    def fetch(self, symbol: str, start: date, end: date) -> PriceSeries:
        if symbol not in self.data:
            raise DataGapError("No price data for symbol", symbol=symbol)
        frame = _normalize(self.data[symbol])
        mask = (frame.index >= pd.Timestamp(start)) & (frame.index <= pd.Timestamp(end))
        return PriceSeries.from_dataframe(frame.loc[mask], symbol=symbol)


class CSVPriceDataProvider(DataFrameProvider):
    """
    Loads `<SYMBOL>.csv` files (date,open,high,low,close[,volume]) from a directory.
    """

    def __init__(self, data_dir: str | Path):
        self.data_dir = Path(data_dir)
        super().__init__({})

    def fetch(self, symbol: str, start: date, end: date) -> PriceSeries:
        if symbol not in self.data:
            path = self.data_dir / f"{symbol}.csv"
            if not path.exists():
                raise DataGapError("No price file for symbol", symbol=symbol, details={"path": str(path)})
            df = pd.read_csv(path, parse_dates=["date"], dtype={c: str for c in PRICE_COLUMNS})
            self.data[symbol] = df.set_index("date")
            logger.info(f"Loaded {len(df)} bars for {symbol} from {path}")
        return super().fetch(symbol, start, end)


def _normalize(df: pd.DataFrame) -> pd.DataFrame:
    """Sorted DatetimeIndex with duplicate dates dropped (first occurrence wins)."""
    frame = df.set_index("date") if "date" in df.columns else df
    frame = frame.copy()
    frame.index = pd.DatetimeIndex(frame.index).normalize()
    frame = frame[~frame.index.duplicated(keep="first")]
    return frame.sort_index()
