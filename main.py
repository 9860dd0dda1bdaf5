# main.py

import argparse
import asyncio
import logging
import os

import config
from stockcast.data import load_data, observations_from_frame, read_price_csv
from stockcast.reports import write_forecast_report
from stockcast.session import ForecastSession
from stockcast.training import ProgressEvent, TrainingObserver, TrainingReport

logger = logging.getLogger("stockcast.cli")


class LoggingObserver(TrainingObserver):
    def on_progress(self, event: ProgressEvent) -> None:
        logger.info(
            "Epoch %d (%.0f%%) | loss %.6f | %.1fs",
            event.epoch,
            event.progress_percent,
            event.loss,
            event.elapsed_seconds,
        )

    def on_complete(self, report: TrainingReport) -> None:
        logger.info(
            "Training done in %.1fs | test RMSE %.6f (%.3f%% return error)",
            report.elapsed_seconds,
            report.metrics.rmse,
            report.metrics.rmse * 100,
        )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Train a recurrent return forecaster on one price series.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--csv", help="CSV file with a date column and a Close/price column")
    source.add_argument("--ticker", default=config.STOCK_SYMBOL, help="symbol to download with yfinance")
    parser.add_argument("--start", default=config.START_DATE)
    parser.add_argument("--end", default=config.END_DATE)
    parser.add_argument("--epochs", type=int, default=config.EPOCHS)
    parser.add_argument("--window-size", type=int, default=config.WINDOW_SIZE)
    parser.add_argument("--horizon", type=int, default=config.PREDICTION_HORIZON)
    parser.add_argument("--split-ratio", type=float, default=config.SPLIT_RATIO)
    parser.add_argument("--report", default=os.path.join(config.OUTPUTS_DIR, "forecast_report.md"))
    parser.add_argument("--save-dir", default=None, help="directory for the trained model and normalizer")
    return parser.parse_args(argv)


def load_observations(args):
    if args.csv:
        return read_price_csv(args.csv)
    df = load_data(args.ticker, args.start, args.end)
    return observations_from_frame(df, price_column="Close")


async def run(args):
    symbol = os.path.basename(args.csv) if args.csv else args.ticker
    observations = load_observations(args)

    with ForecastSession(window_size=args.window_size, horizon=args.horizon, split_ratio=args.split_ratio) as session:
        insights = session.load_series(observations)
        logger.info(
            "%s: total return %.2f%%, max drawdown %.2f%%, Sharpe %.3f, trend %s",
            symbol,
            insights.basic.total_return * 100,
            insights.basic.max_drawdown * 100,
            insights.returns.sharpe_ratio,
            insights.trends.current_trend,
        )

        session.prepare_dataset()
        training = await session.train(args.epochs, LoggingObserver())
        forecast = session.predict()
        for day, (r, p) in enumerate(zip(forecast.returns, forecast.prices), start=1):
            logger.info("Day +%d: %.3f%% -> %.2f", day, r * 100, p)

        if args.save_dir:
            session.save_artifacts(args.save_dir)

        write_forecast_report(args.report, symbol, insights, training, forecast)
        logger.info("Saved report to %s", args.report)


def main(argv=None):
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
    args = parse_args(argv)
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
