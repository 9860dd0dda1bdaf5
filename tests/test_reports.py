from datetime import date

import pandas as pd

from stockcast.analytics import compute_insights
from stockcast.data import SeriesStore
from stockcast.models import PLACEHOLDER_METRICS
from stockcast.reports import write_forecast_report
from stockcast.session import Forecast
from stockcast.training import TrainingReport, TrainingSession


def _insights():
    store = SeriesStore()
    dates = pd.bdate_range("2024-01-01", periods=4)
    store.load(list(zip(dates, [100, 102, 101, 105])))
    return compute_insights(store)


def test_report_sections(tmp_path):
    out = tmp_path / "reports" / "forecast.md"
    training = TrainingReport(
        session=TrainingSession(epochs=3, batch_size=64, start_time=0.0),
        elapsed_seconds=2.0,
        losses=[0.3, 0.2, 0.1],
        metrics=PLACEHOLDER_METRICS,
    )
    forecast = Forecast(
        returns=[0.0, 0.0],
        is_degraded=True,
        dates=[date(2024, 1, 8), date(2024, 1, 9)],
        prices=[105.0, 105.0],
    )

    write_forecast_report(str(out), "SPX", _insights(), training, forecast)

    text = out.read_text()
    assert text.startswith("# SPX Return Forecast Report")
    assert "| Total return" in text and "5.00%" in text
    assert "Final training loss: 0.100000" in text
    assert "placeholders" in text
    assert "flat (zero-return) fallback" in text
    assert "2024-01-09" in text


def test_report_without_training(tmp_path):
    out = tmp_path / "insights.md"
    write_forecast_report(str(out), "SPX", _insights())
    text = out.read_text()
    assert "## Training" not in text
    assert "## Forecast" not in text
