# stockcast/analytics.py

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import List, Optional

import numpy as np
import pandas as pd

from config import ROLLING_VOL_WINDOW, TRADING_DAYS
from stockcast.data import SeriesStore
from stockcast.errors import EmptySeriesError

# below this a return std is treated as zero
_STD_EPS = 1e-12


@dataclass(frozen=True)
class BasicStats:
    total_return: float
    max_drawdown: float


@dataclass(frozen=True)
class ReturnStats:
    annualized_volatility: float
    sharpe_ratio: float
    positive_days: float


@dataclass(frozen=True)
class TrendStats:
    current_trend: str
    sma50: Optional[float]
    sma200: Optional[float]


@dataclass(frozen=True)
class VolatilityStats:
    current_rolling_vol: Optional[float]
    avg_rolling_vol: Optional[float]


@dataclass(frozen=True)
class Insights:
    basic: BasicStats
    returns: ReturnStats
    trends: TrendStats
    volatility: VolatilityStats
    rolling_volatilities: List[float]
    sma50_series: List[float]
    sma200_series: List[float]

    def to_dict(self) -> dict:
        return asdict(self)


def simple_moving_average(prices: pd.Series, window: int) -> pd.Series:
    """
    Trailing SMA; the first window-1 entries are dropped, not zero-filled.
    """
    return prices.rolling(window=window).mean().dropna()


def rolling_volatility(returns: pd.Series, window: int = ROLLING_VOL_WINDOW) -> pd.Series:
    return returns.rolling(window=window).std().dropna()


def max_drawdown(prices: pd.Series) -> float:
    running_max = prices.cummax()
    drawdowns = (prices - running_max) / running_max
    return float(min(drawdowns.min(), 0.0))


def sharpe_ratio(returns: pd.Series, periods: int = TRADING_DAYS) -> float:
    std = returns.std()
    if not np.isfinite(std) or std < _STD_EPS:
        return 0.0
    return float(returns.mean() / std * np.sqrt(periods))


def classify_trend(sma50: Optional[float], sma200: Optional[float]) -> str:
    if sma50 is None or sma200 is None:
        return "neutral"
    if sma50 > sma200:
        return "bullish"
    if sma50 < sma200:
        return "bearish"
    return "neutral"


def _last_or_none(series: pd.Series) -> Optional[float]:
    return float(series.iloc[-1]) if len(series) else None


def compute_insights(store: SeriesStore) -> Insights:
    """
    Full analytics snapshot for the series currently held by `store`.
    """
    prices = store.prices
    if len(prices) < 2:
        raise EmptySeriesError(f"need at least 2 prices for analytics, got {len(prices)}")
    returns = store.returns()

    total_return = float(prices.iloc[-1] / prices.iloc[0] - 1.0)

    std = returns.std()
    annualized_vol = float(std * np.sqrt(TRADING_DAYS)) if np.isfinite(std) else 0.0
    positive_days = float((returns > 0).sum() / len(returns))

    sma50 = simple_moving_average(prices, 50)
    sma200 = simple_moving_average(prices, 200)
    sma50_last = _last_or_none(sma50)
    sma200_last = _last_or_none(sma200)

    rolling_vols = rolling_volatility(returns)

    return Insights(
        basic=BasicStats(total_return=total_return, max_drawdown=max_drawdown(prices)),
        returns=ReturnStats(
            annualized_volatility=annualized_vol,
            sharpe_ratio=sharpe_ratio(returns),
            positive_days=positive_days,
        ),
        trends=TrendStats(
            current_trend=classify_trend(sma50_last, sma200_last),
            sma50=sma50_last,
            sma200=sma200_last,
        ),
        volatility=VolatilityStats(
            current_rolling_vol=_last_or_none(rolling_vols),
            avg_rolling_vol=float(rolling_vols.mean()) if len(rolling_vols) else None,
        ),
        rolling_volatilities=rolling_vols.tolist(),
        sma50_series=sma50.tolist(),
        sma200_series=sma200.tolist(),
    )
