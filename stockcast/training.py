# stockcast/training.py

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import closing
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from config import PROGRESS_INTERVAL_S, YIELD_EVERY_EPOCHS
from stockcast.data import Dataset
from stockcast.errors import TrainingInProgressError
from stockcast.models import EvaluationMetrics, SequenceRegressor, clamp_epochs

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass(frozen=True)
class TrainingSession:
    epochs: int
    batch_size: int
    start_time: float


@dataclass(frozen=True)
class ProgressEvent:
    epoch: int  # 1-based
    loss: float
    elapsed_seconds: float
    progress_percent: float


@dataclass(frozen=True)
class TrainingReport:
    session: TrainingSession
    elapsed_seconds: float
    losses: List[float]
    metrics: EvaluationMetrics

    @property
    def final_loss(self) -> float:
        return self.losses[-1]


class TrainingObserver:
    """
    Receives training progress. Subclass and override what you need.
    """

    def on_progress(self, event: ProgressEvent) -> None:
        pass

    def on_complete(self, report: TrainingReport) -> None:
        pass


@dataclass
class RecordingObserver(TrainingObserver):
    """Keeps every delivered event; handy for HTTP responses and tests."""

    events: List[ProgressEvent] = field(default_factory=list)
    report: Optional[TrainingReport] = None

    def on_progress(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def on_complete(self, report: TrainingReport) -> None:
        self.report = report


class ProgressThrottle:
    """
    Lets through at most one report per `interval` seconds. A final report
    always goes through.
    """

    def __init__(self, interval: float = PROGRESS_INTERVAL_S, clock: Clock = time.monotonic):
        self.interval = interval
        self._clock = clock
        self._last: Optional[float] = None

    def ready(self, final: bool = False) -> bool:
        now = self._clock()
        if final or self._last is None or now - self._last >= self.interval:
            self._last = now
            return True
        return False


class TrainingOrchestrator:
    """
    Drives one training run epoch by epoch on the running event loop.

    Only one run may be in flight; a second call is rejected, not queued.
    """

    def __init__(
        self,
        progress_interval: float = PROGRESS_INTERVAL_S,
        yield_every: int = YIELD_EVERY_EPOCHS,
        clock: Clock = time.monotonic,
    ):
        if yield_every < 1:
            raise ValueError(f"yield_every must be >= 1, got {yield_every}")
        self.progress_interval = progress_interval
        self.yield_every = yield_every
        self._clock = clock
        self.is_training = False

    async def run(
        self,
        regressor: SequenceRegressor,
        dataset: Dataset,
        epochs,
        observer: Optional[TrainingObserver] = None,
    ) -> TrainingReport:
        if self.is_training:
            raise TrainingInProgressError("a training run is already in progress")
        self.is_training = True
        observer = observer or TrainingObserver()

        try:
            session = TrainingSession(
                epochs=clamp_epochs(epochs),
                batch_size=min(regressor.batch_size, dataset.n_train),
                start_time=self._clock(),
            )
            logger.info(
                "Training started: %d epochs, batch_size=%d, %d train windows",
                session.epochs,
                session.batch_size,
                dataset.n_train,
            )

            throttle = ProgressThrottle(self.progress_interval, self._clock)
            losses: List[float] = []
            epochs_iter = regressor.iter_epochs(dataset.x_train, dataset.y_train, session.epochs)
            with closing(epochs_iter):
                for epoch, loss in epochs_iter:
                    losses.append(loss)
                    done = epoch + 1
                    final = done == session.epochs
                    if throttle.ready(final=final):
                        observer.on_progress(
                            ProgressEvent(
                                epoch=done,
                                loss=loss,
                                elapsed_seconds=self._clock() - session.start_time,
                                progress_percent=done / session.epochs * 100.0,
                            )
                        )
                    if done % self.yield_every == 0 and not final:
                        await asyncio.sleep(0)

            elapsed = self._clock() - session.start_time
            metrics = regressor.evaluate(dataset.x_test, dataset.y_test)
            report = TrainingReport(session=session, elapsed_seconds=elapsed, losses=losses, metrics=metrics)
            logger.info(
                "Training completed in %.1fs: final loss %.6f, test RMSE %.6f",
                elapsed,
                report.final_loss,
                metrics.rmse,
            )
            observer.on_complete(report)
            return report
        finally:
            self.is_training = False
