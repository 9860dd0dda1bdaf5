# stockcast/data.py

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date as date_type
from typing import Iterable, List, Tuple, Union

import numpy as np
import pandas as pd
import yfinance as yf

from stockcast.errors import (
    EmptySeriesError,
    EmptySplitError,
    InsufficientDataError,
    NoDataError,
)

logger = logging.getLogger(__name__)

DateLike = Union[str, date_type, pd.Timestamp]


# ---------- Observations & series store ----------

@dataclass(frozen=True)
class Observation:
    date: DateLike
    price: float

    def __post_init__(self):
        price = float(self.price)
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"price must be a positive finite number, got {self.price!r} on {self.date}")
        object.__setattr__(self, "price", price)


class SeriesStore:
    """
    Ordered (date, price) observations for one instrument; index 0 is the oldest.
    """

    def __init__(self):
        self._prices = pd.Series(dtype=float)

    def load(self, observations: Iterable[Union[Observation, Tuple[DateLike, float]]]) -> None:
        obs = [o if isinstance(o, Observation) else Observation(*o) for o in observations]
        if len(obs) < 2:
            raise EmptySeriesError(f"need at least 2 observations to derive returns, got {len(obs)}")

        index = pd.DatetimeIndex([pd.Timestamp(o.date) for o in obs], name="date")
        prices = pd.Series([o.price for o in obs], index=index, name="price", dtype=float)
        prices = prices.sort_index(kind="stable")

        # swap only once everything validated
        self._prices = prices
        logger.info(
            "Loaded %d observations (%s to %s)",
            len(prices),
            prices.index[0].date(),
            prices.index[-1].date(),
        )

    @property
    def prices(self) -> pd.Series:
        return self._prices.copy()

    @property
    def dates(self) -> pd.DatetimeIndex:
        return self._prices.index

    def __len__(self) -> int:
        return len(self._prices)

    def returns(self) -> pd.Series:
        """
        Daily simple returns, return[i] = price[i+1] / price[i] - 1.
        Recomputed from the current observations on every call.
        """
        values = self._prices.to_numpy()
        rets = values[1:] / values[:-1] - 1.0
        return pd.Series(rets, index=self._prices.index[1:], name="return")

    def latest_price(self) -> float:
        if self._prices.empty:
            raise NoDataError("no observations loaded")
        return float(self._prices.iloc[-1])

    def latest_date(self) -> pd.Timestamp:
        if self._prices.empty:
            raise NoDataError("no observations loaded")
        return self._prices.index[-1]


# ---------- Ingestion adapters ----------

def load_data(stock_symbol: str, start_date: str, end_date: str) -> pd.DataFrame:
    """
    Download daily closes for the given symbol and date range.
    """
    df = yf.download(stock_symbol, start=start_date, end=end_date, auto_adjust=False, progress=False)
    if df is None or len(df) == 0:
        raise NoDataError(f"No data found for ticker {stock_symbol}.")

    # Normalize MultiIndex columns if present
    if isinstance(df.columns, pd.MultiIndex):
        df.columns = df.columns.get_level_values(0)

    df = df[["Close"]].dropna()
    df.sort_index(inplace=True)
    return df


def observations_from_frame(df: pd.DataFrame, price_column: str = "Close") -> List[Observation]:
    if price_column not in df.columns:
        raise ValueError(f"column {price_column!r} not found, have {list(df.columns)}")
    prices = df[price_column].dropna()
    return [Observation(date=ts, price=float(p)) for ts, p in prices.items()]


_DATE_COLUMNS = ("Date", "date", "Datetime", "timestamp")
_PRICE_COLUMNS = ("Close", "close", "Adj Close", "price", "Price")


def read_price_csv(path) -> List[Observation]:
    """
    Read a CSV of daily prices. The first matching date column and price column win.
    """
    df = pd.read_csv(path)
    date_col = next((c for c in _DATE_COLUMNS if c in df.columns), None)
    price_col = next((c for c in _PRICE_COLUMNS if c in df.columns), None)
    if date_col is None or price_col is None:
        raise ValueError(f"{path}: expected a date column and a price column, got {list(df.columns)}")

    df[date_col] = pd.to_datetime(df[date_col])
    df = df.set_index(date_col).sort_index()
    return observations_from_frame(df, price_column=price_col)


# ---------- Windowing (normalized returns -> model inputs) ----------

@dataclass
class Dataset:
    x_train: np.ndarray
    y_train: np.ndarray
    x_test: np.ndarray
    y_test: np.ndarray
    window_size: int
    horizon: int

    @property
    def n_train(self) -> int:
        return len(self.x_train)

    @property
    def n_test(self) -> int:
        return len(self.x_test)


def create_windows(series, window_size: int, horizon: int):
    """
    Window i: input = series[i : i + window_size], label = next `horizon` values.
    Returns X shaped (count, window_size, 1) and y shaped (count, horizon).
    """
    if window_size < 1 or horizon < 1:
        raise ValueError(f"window_size and horizon must be >= 1, got {window_size} and {horizon}")

    data = np.asarray(series, dtype=float).ravel()
    count = len(data) - window_size - horizon + 1
    if count <= 0:
        raise InsufficientDataError(
            f"series of length {len(data)} is too short for window_size={window_size} "
            f"and horizon={horizon} (need at least {window_size + horizon} values)"
        )

    X, y = [], []
    for i in range(count):
        X.append(data[i:i + window_size])
        y.append(data[i + window_size:i + window_size + horizon])
    X = np.array(X).reshape((count, window_size, 1))
    y = np.array(y).reshape((count, horizon))
    return X, y


def split_windows(X, y, ratio: float):
    """
    Order-preserving split: the first floor(n * ratio) windows train, the rest test.
    """
    if not 0.0 < ratio < 1.0:
        raise ValueError(f"split ratio must be strictly between 0 and 1, got {ratio}")

    n = len(X)
    split_idx = math.floor(n * ratio)
    if split_idx == 0 or split_idx == n:
        raise EmptySplitError(
            f"splitting {n} windows at ratio {ratio} leaves "
            f"{split_idx} train / {n - split_idx} test; both sides must be non-empty"
        )

    X_train, X_test = X[:split_idx], X[split_idx:]
    y_train, y_test = y[:split_idx], y[split_idx:]
    return X_train, X_test, y_train, y_test


def get_last_window(series, window_size: int) -> np.ndarray:
    """
    Return the final `window_size` values for live prediction.
    """
    data = np.asarray(series, dtype=float).ravel()
    if len(data) < window_size:
        raise InsufficientDataError(
            f"need {window_size} values for the prediction window, have {len(data)}"
        )
    return data[-window_size:].copy()


def prepare_dataset(normalized_returns, window_size: int, horizon: int, split_ratio: float) -> Dataset:
    X, y = create_windows(normalized_returns, window_size, horizon)
    X_train, X_test, y_train, y_test = split_windows(X, y, split_ratio)
    logger.info(
        "Prepared %d train / %d test windows (window_size=%d, horizon=%d)",
        len(X_train),
        len(X_test),
        window_size,
        horizon,
    )
    return Dataset(
        x_train=X_train,
        y_train=y_train,
        x_test=X_test,
        y_test=y_test,
        window_size=window_size,
        horizon=horizon,
    )
