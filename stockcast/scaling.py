# stockcast/scaling.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import joblib
import numpy as np
from sklearn.exceptions import NotFittedError
from sklearn.preprocessing import MinMaxScaler

from stockcast.errors import DegenerateSeriesError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizationParams:
    min: float
    max: float


class Normalizer:
    """
    Min/max scaling of a 1-D series into [0, 1].

    Values outside the fitted range are extrapolated, never clipped, so
    denormalize(normalize(x)) == x for any finite x.
    """

    def __init__(self):
        self._scaler: Optional[MinMaxScaler] = None
        self._params: Optional[NormalizationParams] = None

    @property
    def is_fitted(self) -> bool:
        return self._scaler is not None

    @property
    def params(self) -> NormalizationParams:
        self._check_fitted()
        return self._params

    def fit(self, series) -> NormalizationParams:
        data = np.asarray(series, dtype=float).reshape(-1, 1)
        if data.size == 0:
            raise DegenerateSeriesError("cannot fit normalization parameters on an empty series")

        lo, hi = float(data.min()), float(data.max())
        if hi == lo:
            raise DegenerateSeriesError(
                f"series is constant ({lo}); min/max normalization needs max > min"
            )

        scaler = MinMaxScaler(feature_range=(0, 1), clip=False)
        scaler.fit(data)

        # replace wholesale, never mutate the previous fit
        self._scaler = scaler
        self._params = NormalizationParams(min=lo, max=hi)
        logger.debug("Fitted normalizer min=%.6g max=%.6g", lo, hi)
        return self._params

    def normalize(self, value):
        self._check_fitted()
        return self._apply(self._scaler.transform, value)

    def denormalize(self, value):
        self._check_fitted()
        return self._apply(self._scaler.inverse_transform, value)

    def _check_fitted(self):
        if self._scaler is None:
            raise NotFittedError("Normalizer is not fitted yet; call fit() with a reference series first.")

    @staticmethod
    def _apply(fn, value):
        arr = np.asarray(value, dtype=float)
        out = fn(arr.reshape(-1, 1)).reshape(arr.shape)
        if out.ndim == 0:
            return float(out)
        return out


def save_normalizer(normalizer: Normalizer, path) -> Path:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    joblib.dump(normalizer, p)
    return p


def load_normalizer(path) -> Normalizer:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Normalizer not found at {p}. Train first (python main.py --save-dir ...).")
    normalizer = joblib.load(p)
    if not isinstance(normalizer, Normalizer):
        raise TypeError(f"{p} does not contain a Normalizer (got {type(normalizer).__name__})")
    return normalizer
