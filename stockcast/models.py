# stockcast/models.py
"""
Recurrent return regressor (Keras 3).

One recurrent layer over a single-channel window of normalized returns,
followed by a dense projection to `horizon` outputs. The wrapper owns the
Keras model exclusively and tracks an explicit lifecycle:

    UNBUILT -> BUILT -> TRAINED   (build() again resets to BUILT)
    any state -> DISPOSED         (build() again is the only way back)
"""

from __future__ import annotations

import enum
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

import keras
import numpy as np
from keras.layers import GRU, LSTM, Dense, Input
from keras.models import Sequential
from keras.models import load_model as keras_load_model
from sklearn.metrics import mean_squared_error

from config import BATCH_SIZE, HIDDEN_UNITS, PREDICTION_HORIZON, RANDOM_SEED, RECURRENT_CELL, WINDOW_SIZE
from stockcast.errors import MissingDataError, ModelStateError

logger = logging.getLogger(__name__)

_CELLS = {"gru": GRU, "lstm": LSTM}


class ModelState(enum.Enum):
    UNBUILT = "unbuilt"
    BUILT = "built"
    TRAINED = "trained"
    DISPOSED = "disposed"


@dataclass(frozen=True)
class Prediction:
    values: List[float]
    is_degraded: bool = False


@dataclass(frozen=True)
class EvaluationMetrics:
    loss: float
    mse: float
    rmse: float
    is_placeholder: bool = False


# Returned by evaluate() on a model that has not been trained yet.
PLACEHOLDER_METRICS = EvaluationMetrics(loss=0.001, mse=0.001, rmse=0.032, is_placeholder=True)


def clamp_epochs(epochs) -> int:
    if not math.isfinite(epochs):
        raise ValueError(f"epochs must be a finite number, got {epochs}")
    return max(1, int(math.floor(epochs)))


def build_recurrent(
    window_size: int,
    horizon: int,
    units: int = HIDDEN_UNITS,
    cell: str = RECURRENT_CELL,
) -> Sequential:
    try:
        layer_cls = _CELLS[cell.lower()]
    except KeyError:
        raise ValueError(f"unknown recurrent cell {cell!r}, expected one of {sorted(_CELLS)}") from None

    model = Sequential()
    model.add(Input(shape=(window_size, 1)))
    model.add(layer_cls(units))
    model.add(Dense(horizon))
    model.compile(optimizer="adam", loss="mse")
    return model


class SequenceRegressor:
    def __init__(
        self,
        window_size: int = WINDOW_SIZE,
        horizon: int = PREDICTION_HORIZON,
        batch_size: int = BATCH_SIZE,
        hidden_units: int = HIDDEN_UNITS,
        cell: str = RECURRENT_CELL,
        seed: Optional[int] = RANDOM_SEED,
    ):
        self.window_size = window_size
        self.horizon = horizon
        self.batch_size = batch_size
        self.hidden_units = hidden_units
        self.cell = cell
        self.seed = seed
        self.state = ModelState.UNBUILT
        self._model: Optional[Sequential] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()
        return False

    def __repr__(self):
        return (
            f"SequenceRegressor(window_size={self.window_size}, horizon={self.horizon}, "
            f"cell={self.cell!r}, state={self.state.value})"
        )

    # ---------- lifecycle ----------

    def build(self, window_size: Optional[int] = None, horizon: Optional[int] = None) -> "SequenceRegressor":
        window_size = self.window_size if window_size is None else window_size
        horizon = self.horizon if horizon is None else horizon

        # release the old backend model before allocating a new one
        if self._model is not None:
            self._release()

        if self.seed is not None:
            keras.utils.set_random_seed(self.seed)
        self._model = build_recurrent(window_size, horizon, units=self.hidden_units, cell=self.cell)
        self.window_size = window_size
        self.horizon = horizon
        self.state = ModelState.BUILT
        logger.info(
            "Built %s(%d) regressor: window_size=%d -> horizon=%d",
            self.cell.upper(),
            self.hidden_units,
            window_size,
            horizon,
        )
        return self

    def dispose(self, clear_backend: bool = True) -> None:
        """Drop the model. Pass clear_backend=False while another model is still live."""
        if self.state is ModelState.DISPOSED:
            return
        if self._model is not None:
            self._release(clear_backend)
        self.state = ModelState.DISPOSED
        logger.info("Disposed regressor")

    def _release(self, clear_backend: bool = True) -> None:
        self._model = None
        if clear_backend:
            keras.backend.clear_session()

    def _require(self, *states: ModelState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise ModelStateError(f"model is {self.state.value}; this operation needs one of: {allowed}")

    # ---------- data checks ----------

    def _as_inputs(self, inputs) -> np.ndarray:
        x = np.asarray(inputs, dtype="float32")
        if x.ndim == 2:
            x = x[..., np.newaxis]
        if x.ndim != 3 or x.shape[1:] != (self.window_size, 1):
            raise ValueError(
                f"inputs must be shaped (samples, {self.window_size}, 1), got {np.shape(inputs)}"
            )
        return x

    def _check_data(self, inputs, labels) -> Tuple[np.ndarray, np.ndarray]:
        if inputs is None or labels is None:
            raise MissingDataError("training/evaluation needs both inputs and labels")
        if len(inputs) == 0:
            raise MissingDataError("inputs are empty")
        if len(inputs) != len(labels):
            raise MissingDataError(f"got {len(inputs)} inputs but {len(labels)} labels")

        x = self._as_inputs(inputs)
        y = np.asarray(labels, dtype="float32").reshape(len(labels), -1)
        if y.shape[1] != self.horizon:
            raise ValueError(f"labels must have {self.horizon} values each, got {y.shape[1]}")
        return x, y

    # ---------- training ----------

    def iter_epochs(self, inputs, labels, epochs) -> Iterator[Tuple[int, float]]:
        """
        Train one epoch per step, yielding (epoch_index, loss).

        The model only becomes TRAINED once every epoch ran. If the backend
        raises, or the generator is closed early, the pre-call weights are put
        back and the state is left as it was.
        """
        self._require(ModelState.BUILT, ModelState.TRAINED)
        x, y = self._check_data(inputs, labels)
        n_epochs = clamp_epochs(epochs)
        batch_size = min(self.batch_size, len(x))

        model = self._model
        snapshot = model.get_weights()
        completed = False
        try:
            for epoch in range(n_epochs):
                if self._model is not model:
                    raise ModelStateError("model was disposed or rebuilt during training")
                history = model.fit(
                    x,
                    y,
                    epochs=epoch + 1,
                    initial_epoch=epoch,
                    batch_size=batch_size,
                    verbose=0,
                )
                yield epoch, float(history.history["loss"][-1])
            completed = True
        finally:
            if not completed and self._model is model:
                model.set_weights(snapshot)

        self.state = ModelState.TRAINED

    def train(
        self,
        inputs,
        labels,
        epochs,
        progress_callback: Optional[Callable[[int, float], None]] = None,
    ) -> List[float]:
        losses = []
        for epoch, loss in self.iter_epochs(inputs, labels, epochs):
            losses.append(loss)
            if progress_callback is not None:
                progress_callback(epoch, loss)
        return losses

    # ---------- inference ----------

    def predict(self, window) -> Prediction:
        """
        Predict the next `horizon` normalized returns for one window.

        Backend failures do not raise: a zero-filled, degraded prediction is
        returned instead so live callers always get an answer.
        """
        self._require(ModelState.BUILT, ModelState.TRAINED)
        arr = np.asarray(window, dtype="float32")
        if arr.size != self.window_size:
            raise ValueError(f"window must hold {self.window_size} values, got {arr.size}")
        x = arr.reshape(1, self.window_size, 1)

        try:
            y_hat = self._model.predict(x, verbose=0)
            values = [float(v) for v in np.ravel(y_hat)[: self.horizon]]
        except Exception as exc:
            logger.warning("Prediction failed, returning degraded zero forecast: %s", exc)
            return Prediction(values=[0.0] * self.horizon, is_degraded=True)
        return Prediction(values=values)

    def evaluate(self, inputs, labels) -> EvaluationMetrics:
        if self.state is ModelState.DISPOSED:
            raise ModelStateError("model is disposed; rebuild before evaluating")
        if self.state is not ModelState.TRAINED:
            logger.warning("Model not trained yet, returning placeholder metrics")
            return PLACEHOLDER_METRICS

        x, y = self._check_data(inputs, labels)
        loss = self._model.evaluate(x, y, batch_size=min(self.batch_size, len(x)), verbose=0)
        y_pred = self._model.predict(x, batch_size=min(self.batch_size, len(x)), verbose=0)
        mse = float(mean_squared_error(y, y_pred))
        return EvaluationMetrics(loss=float(np.ravel(loss)[0]), mse=mse, rmse=math.sqrt(mse))

    # ---------- persistence ----------

    def save(self, path) -> Path:
        self._require(ModelState.TRAINED)
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self._model.save(p)
        return p

    @classmethod
    def load(cls, path, batch_size: int = BATCH_SIZE) -> "SequenceRegressor":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Model not found: {p}. Train first (python main.py --save-dir ...).")
        # compile=False avoids metric warnings & reduces load issues
        model = keras_load_model(p, compile=False)
        model.compile(optimizer="adam", loss="mse")

        _, window_size, _ = model.input_shape
        horizon = model.output_shape[-1]
        recurrent = model.layers[0]
        cell = "lstm" if isinstance(recurrent, LSTM) else "gru"
        regressor = cls(window_size=window_size, horizon=horizon, batch_size=batch_size, cell=cell)
        regressor.hidden_units = recurrent.units
        regressor._model = model
        regressor.state = ModelState.TRAINED
        return regressor
