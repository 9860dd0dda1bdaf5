# stockcast/session.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from config import BATCH_SIZE, EPOCHS, HIDDEN_UNITS, PREDICTION_HORIZON, RECURRENT_CELL, SPLIT_RATIO, WINDOW_SIZE
from stockcast.analytics import Insights, compute_insights
from stockcast.data import Dataset, SeriesStore, get_last_window, prepare_dataset
from stockcast.errors import MissingDataError, ModelStateError, NoDataError, TrainingInProgressError
from stockcast.models import PLACEHOLDER_METRICS, EvaluationMetrics, ModelState, SequenceRegressor
from stockcast.scaling import Normalizer, load_normalizer, save_normalizer
from stockcast.training import TrainingObserver, TrainingOrchestrator, TrainingReport

logger = logging.getLogger(__name__)

MODEL_FILENAME = "regressor.keras"
NORMALIZER_FILENAME = "normalizer.pkl"


@dataclass(frozen=True)
class Forecast:
    returns: List[float]
    is_degraded: bool
    dates: List[date]
    prices: List[float]


def business_day_dates_after(last_timestamp: pd.Timestamp, n: int) -> List[date]:
    start = last_timestamp + pd.Timedelta(days=1)
    return list(pd.bdate_range(start=start, periods=n).date)


def project_prices(last_price: float, returns: Iterable[float]) -> List[float]:
    prices = []
    price = last_price
    for r in returns:
        price = price * (1.0 + r)
        prices.append(price)
    return prices


class ForecastSession:
    """
    Everything one user session works on: the price series, its analytics,
    the normalizer, the prepared dataset and the single live model.

    Use as a context manager so the model's backend resources are released
    on every exit path.
    """

    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        horizon: int = PREDICTION_HORIZON,
        split_ratio: float = SPLIT_RATIO,
        batch_size: int = BATCH_SIZE,
        hidden_units: int = HIDDEN_UNITS,
        cell: str = RECURRENT_CELL,
        orchestrator: Optional[TrainingOrchestrator] = None,
    ):
        self.window_size = window_size
        self.horizon = horizon
        self.split_ratio = split_ratio
        self.store = SeriesStore()
        self.normalizer = Normalizer()
        self.regressor = SequenceRegressor(
            window_size=window_size,
            horizon=horizon,
            batch_size=batch_size,
            hidden_units=hidden_units,
            cell=cell,
        )
        self.orchestrator = orchestrator or TrainingOrchestrator()
        self.dataset: Optional[Dataset] = None
        self.insights: Optional[Insights] = None
        self._normalized_returns: Optional[np.ndarray] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()
        return False

    @property
    def is_training(self) -> bool:
        return self.orchestrator.is_training

    def _reject_while_training(self, action: str) -> None:
        if self.is_training:
            raise TrainingInProgressError(f"cannot {action} while training is in progress")

    # ---------- data ----------

    def load_series(self, observations) -> Insights:
        self._reject_while_training("load a new series")

        store = SeriesStore()
        store.load(observations)
        insights = compute_insights(store)

        # new data invalidates the old model and windows
        self.regressor.dispose()
        self.store = store
        self.insights = insights
        self.dataset = None
        self.normalizer = Normalizer()
        self._normalized_returns = None
        return insights

    def prepare_dataset(
        self,
        window_size: Optional[int] = None,
        horizon: Optional[int] = None,
        split_ratio: Optional[float] = None,
    ) -> Dataset:
        self._reject_while_training("prepare a dataset")
        if len(self.store) == 0:
            raise NoDataError("load a price series before preparing a dataset")

        window_size = self.window_size if window_size is None else window_size
        horizon = self.horizon if horizon is None else horizon
        split_ratio = self.split_ratio if split_ratio is None else split_ratio

        returns = self.store.returns().to_numpy()
        normalizer = Normalizer()
        normalizer.fit(returns)
        normalized = normalizer.normalize(returns)
        dataset = prepare_dataset(normalized, window_size, horizon, split_ratio)

        self.normalizer = normalizer
        self._normalized_returns = normalized
        self.dataset = dataset
        self.window_size, self.horizon, self.split_ratio = window_size, horizon, split_ratio
        return dataset

    # ---------- model ----------

    def _ensure_model(self) -> None:
        reg = self.regressor
        stale = reg.state in (ModelState.UNBUILT, ModelState.DISPOSED)
        reshaped = reg.window_size != self.dataset.window_size or reg.horizon != self.dataset.horizon
        if stale or reshaped:
            reg.build(window_size=self.dataset.window_size, horizon=self.dataset.horizon)

    def _model_matches_dataset(self) -> bool:
        reg = self.regressor
        return reg.window_size == self.dataset.window_size and reg.horizon == self.dataset.horizon

    async def train(self, epochs=EPOCHS, observer: Optional[TrainingObserver] = None) -> TrainingReport:
        if self.dataset is None:
            raise MissingDataError("prepare a dataset before training")
        self._reject_while_training("start another training run")
        self._ensure_model()
        return await self.orchestrator.run(self.regressor, self.dataset, epochs, observer)

    def predict(self) -> Forecast:
        if self._normalized_returns is None:
            raise MissingDataError("prepare a dataset before predicting")
        if self.dataset is not None and not self._model_matches_dataset():
            raise ModelStateError(
                f"model expects window_size={self.regressor.window_size}, horizon={self.regressor.horizon} "
                f"but the dataset uses window_size={self.dataset.window_size}, horizon={self.dataset.horizon}; "
                "train again first"
            )

        window = get_last_window(self._normalized_returns, self.regressor.window_size)
        prediction = self.regressor.predict(window)
        if prediction.is_degraded:
            # zero returns, i.e. flat prices
            returns = [0.0] * len(prediction.values)
        else:
            returns = [float(r) for r in self.normalizer.denormalize(np.array(prediction.values))]

        return Forecast(
            returns=returns,
            is_degraded=prediction.is_degraded,
            dates=business_day_dates_after(self.store.latest_date(), len(returns)),
            prices=project_prices(self.store.latest_price(), returns),
        )

    def evaluate(self) -> EvaluationMetrics:
        if self.regressor.state is not ModelState.TRAINED:
            logger.warning("No trained model in this session, returning placeholder metrics")
            return PLACEHOLDER_METRICS
        if self.dataset is None:
            raise MissingDataError("prepare a dataset before evaluating")
        if not self._model_matches_dataset():
            logger.warning("Model was trained on a different window/horizon, returning placeholder metrics")
            return PLACEHOLDER_METRICS
        return self.regressor.evaluate(self.dataset.x_test, self.dataset.y_test)

    # ---------- artifacts ----------

    def save_artifacts(self, directory) -> Path:
        d = Path(directory)
        d.mkdir(parents=True, exist_ok=True)
        self.regressor.save(d / MODEL_FILENAME)
        save_normalizer(self.normalizer, d / NORMALIZER_FILENAME)
        logger.info("Saved model and normalizer to %s", d)
        return d

    def load_artifacts(self, directory) -> None:
        """
        Swap in a previously trained model and its normalizer. The loaded
        model's window size and horizon become the session's.
        """
        self._reject_while_training("load artifacts")
        d = Path(directory)
        model_path = d / MODEL_FILENAME
        normalizer = load_normalizer(d / NORMALIZER_FILENAME)
        if not model_path.exists():
            raise FileNotFoundError(f"Model not found: {model_path}. Train first (python main.py --save-dir ...).")

        # the old model stays live until the new one has loaded
        regressor = SequenceRegressor.load(model_path, batch_size=self.regressor.batch_size)
        self.regressor.dispose(clear_backend=False)
        self.regressor = regressor
        self.normalizer = normalizer
        self.window_size, self.horizon = regressor.window_size, regressor.horizon
        # prepared windows were scaled with the replaced normalizer
        self.dataset = None
        if len(self.store):
            self._normalized_returns = normalizer.normalize(self.store.returns().to_numpy())
        logger.info("Loaded model and normalizer from %s", d)

    def dispose(self) -> None:
        self.regressor.dispose()
