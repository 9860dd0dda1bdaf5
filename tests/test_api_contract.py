from datetime import date

import numpy as np
import pandas as pd
import pytest
from fastapi.testclient import TestClient

import app as app_module
from stockcast.errors import TrainingInProgressError
from stockcast.models import EvaluationMetrics
from stockcast.session import Forecast
from stockcast.training import ProgressEvent, TrainingReport, TrainingSession


def _fake_observations(n=80):
    idx = pd.date_range("2024-01-01", periods=n, freq="B")
    prices = np.linspace(100, 120, n) + np.sin(np.arange(n))
    return [{"date": d.strftime("%Y-%m-%d"), "price": float(p)} for d, p in zip(idx, prices)]


class FakeSession:
    """Stands in for ForecastSession so routes can be tested without Keras."""

    def __init__(self, busy=False):
        self.busy = busy
        self.store = type("Store", (), {"latest_price": staticmethod(lambda: 120.0)})()

    async def train(self, epochs, observer=None):
        if self.busy:
            raise TrainingInProgressError("a training run is already in progress")
        session = TrainingSession(epochs=int(epochs), batch_size=32, start_time=0.0)
        report = TrainingReport(
            session=session,
            elapsed_seconds=1.5,
            losses=[0.3, 0.2],
            metrics=EvaluationMetrics(loss=0.2, mse=0.04, rmse=0.2),
        )
        observer.on_progress(ProgressEvent(epoch=2, loss=0.2, elapsed_seconds=1.5, progress_percent=100.0))
        observer.on_complete(report)
        return report

    def predict(self):
        return Forecast(
            returns=[0.01, -0.02],
            is_degraded=False,
            dates=[date(2024, 5, 1), date(2024, 5, 2)],
            prices=[121.2, 118.776],
        )

    def dispose(self):
        pass


def test_health():
    with TestClient(app_module.app) as client:
        r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_series_returns_insights():
    with TestClient(app_module.app) as client:
        r = client.post("/series", json={"observations": _fake_observations()})
    assert r.status_code == 200
    body = r.json()
    assert set(body) >= {"basic", "returns", "trends", "volatility", "rolling_volatilities"}
    assert body["basic"]["max_drawdown"] <= 0
    assert len(body["rolling_volatilities"]) == 79 - 19


def test_series_needs_two_observations():
    with TestClient(app_module.app) as client:
        r = client.post("/series", json={"observations": _fake_observations(1)})
    assert r.status_code == 400
    assert "at least 2" in r.json()["detail"]


def test_series_rejects_non_positive_price():
    with TestClient(app_module.app) as client:
        r = client.post("/series", json={"observations": [{"date": "2024-01-01", "price": 0}]})
    assert r.status_code == 422


def test_dataset_contract():
    with TestClient(app_module.app) as client:
        assert client.post("/dataset", json={}).status_code == 400

        client.post("/series", json={"observations": _fake_observations(80)})
        r = client.post("/dataset", json={"window_size": 10, "horizon": 3, "split_ratio": 0.75})
    assert r.status_code == 200
    body = r.json()
    # 79 returns -> 79 - 10 - 3 + 1 = 67 windows
    assert body["n_train"] + body["n_test"] == 67
    assert body["n_train"] == 50


def test_evaluate_before_training_is_placeholder():
    with TestClient(app_module.app) as client:
        r = client.get("/evaluate")
    assert r.status_code == 200
    assert r.json() == {"loss": 0.001, "mse": 0.001, "rmse": 0.032, "is_placeholder": True}


def test_predict_before_dataset():
    with TestClient(app_module.app) as client:
        r = client.post("/predict")
    assert r.status_code == 400


def test_train_contract(monkeypatch):
    monkeypatch.setattr(app_module, "ForecastSession", FakeSession)
    with TestClient(app_module.app) as client:
        r = client.post("/train", json={"epochs": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["epochs"] == 2
    assert body["final_loss"] == 0.2
    assert body["metrics"]["rmse"] == 0.2
    assert [p["epoch"] for p in body["progress"]] == [2]


def test_train_while_training_conflicts(monkeypatch):
    monkeypatch.setattr(app_module, "ForecastSession", lambda: FakeSession(busy=True))
    with TestClient(app_module.app) as client:
        r = client.post("/train", json={"epochs": 2})
    assert r.status_code == 409


def test_predict_contract(monkeypatch):
    monkeypatch.setattr(app_module, "ForecastSession", FakeSession)
    with TestClient(app_module.app) as client:
        r = client.post("/predict")
    assert r.status_code == 200
    body = r.json()
    assert body["is_degraded"] is False
    assert body["last_price"] == 120.0
    assert [p["horizon"] for p in body["points"]] == [1, 2]
    assert body["points"][0] == {"horizon": 1, "date": "2024-05-01", "forecast_return": 0.01, "price": 121.2}


def test_evaluate_after_reshaping_dataset():
    with TestClient(app_module.app) as client:
        client.post("/series", json={"observations": _fake_observations(80)})
        client.post("/dataset", json={"window_size": 5, "horizon": 2, "split_ratio": 0.75})
        assert client.post("/train", json={"epochs": 1}).status_code == 200

        client.post("/dataset", json={"window_size": 6, "horizon": 2, "split_ratio": 0.75})
        r = client.get("/evaluate")
        stale = client.post("/predict")
    assert r.status_code == 200
    assert r.json()["is_placeholder"] is True
    assert stale.status_code == 400
    assert "train again" in stale.json()["detail"]


@pytest.mark.parametrize("epochs", ["Infinity", "NaN"])
def test_train_rejects_non_finite_epochs(epochs):
    with TestClient(app_module.app) as client:
        r = client.post(
            "/train",
            content='{"epochs": %s}' % epochs,
            headers={"Content-Type": "application/json"},
        )
    assert r.status_code == 422
