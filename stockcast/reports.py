# stockcast/reports.py

import os
from typing import Optional

import pandas as pd

from stockcast.analytics import Insights
from stockcast.session import Forecast
from stockcast.training import TrainingReport


def _fmt_pct(value: Optional[float]) -> str:
    return "n/a" if value is None else f"{value * 100:.2f}%"


def _fmt_num(value: Optional[float], digits: int = 2) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}"


def insights_frame(insights: Insights) -> pd.DataFrame:
    rows = [
        ("Total return", _fmt_pct(insights.basic.total_return)),
        ("Max drawdown", _fmt_pct(insights.basic.max_drawdown)),
        ("Annualized volatility", _fmt_pct(insights.returns.annualized_volatility)),
        ("Sharpe ratio", _fmt_num(insights.returns.sharpe_ratio, 3)),
        ("Positive days", _fmt_pct(insights.returns.positive_days)),
        ("Current trend", insights.trends.current_trend),
        ("SMA 50", _fmt_num(insights.trends.sma50)),
        ("SMA 200", _fmt_num(insights.trends.sma200)),
        ("Current 20d volatility", _fmt_pct(insights.volatility.current_rolling_vol)),
        ("Average 20d volatility", _fmt_pct(insights.volatility.avg_rolling_vol)),
    ]
    return pd.DataFrame(rows, columns=["metric", "value"])


def forecast_frame(forecast: Forecast) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "day": [f"+{i}" for i in range(1, len(forecast.returns) + 1)],
            "date": forecast.dates,
            "forecast_return": [f"{r * 100:.3f}%" for r in forecast.returns],
            "price": [round(p, 2) for p in forecast.prices],
        }
    )


def write_forecast_report(
    out_path: str,
    symbol: str,
    insights: Insights,
    training: Optional[TrainingReport] = None,
    forecast: Optional[Forecast] = None,
):
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)

    with open(out_path, "w") as f:
        f.write(f"# {symbol} Return Forecast Report\n\n")

        f.write("## Series analytics\n\n")
        f.write(insights_frame(insights).to_markdown(index=False))
        f.write("\n\n")

        if training is not None:
            metrics = training.metrics
            f.write("## Training\n\n")
            f.write(
                f"- {training.session.epochs} epochs, batch size {training.session.batch_size}, "
                f"{training.elapsed_seconds:.1f}s\n"
            )
            f.write(f"- Final training loss: {training.final_loss:.6f}\n")
            f.write(f"- Test MSE: {metrics.mse:.6f}, RMSE: {metrics.rmse:.6f}\n")
            if metrics.is_placeholder:
                f.write("- Metrics are placeholders: the model was not trained.\n")
            f.write("\n")

        if forecast is not None:
            f.write("## Forecast\n\n")
            if forecast.is_degraded:
                f.write("**Prediction failed; showing a flat (zero-return) fallback.**\n\n")
            f.write(forecast_frame(forecast).to_markdown(index=False))
            f.write("\n")
