# app.py

import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, confloat, conint

from config import EPOCHS, LOG_FORMAT, LOG_LEVEL, PREDICTION_HORIZON, SPLIT_RATIO, WINDOW_SIZE
from stockcast.errors import StockcastError, TrainingInProgressError
from stockcast.session import ForecastSession
from stockcast.training import RecordingObserver

logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    session = ForecastSession()
    app.state.session = session
    try:
        yield
    finally:
        session.dispose()


app = FastAPI(
    title="Stock Return Forecast API",
    description="Series analytics and short-horizon recurrent return forecasts for one instrument.",
    version="0.1.0",
    lifespan=lifespan,
)


def get_session(request: Request) -> ForecastSession:
    return request.app.state.session


def _to_http(exc: StockcastError) -> HTTPException:
    if isinstance(exc, TrainingInProgressError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


# ---------------------------
# Schemas
# ---------------------------

class ObservationIn(BaseModel):
    date: date
    price: confloat(gt=0)


class SeriesRequest(BaseModel):
    observations: List[ObservationIn] = Field(..., json_schema_extra={"example": [
        {"date": "2024-01-02", "price": 4742.83},
        {"date": "2024-01-03", "price": 4704.81},
    ]})


class DatasetRequest(BaseModel):
    window_size: conint(ge=1) = Field(default=WINDOW_SIZE, json_schema_extra={"example": WINDOW_SIZE})
    horizon: conint(ge=1) = Field(default=PREDICTION_HORIZON, json_schema_extra={"example": PREDICTION_HORIZON})
    split_ratio: confloat(gt=0, lt=1) = Field(default=SPLIT_RATIO, json_schema_extra={"example": SPLIT_RATIO})


class DatasetResponse(BaseModel):
    window_size: int
    horizon: int
    n_train: int
    n_test: int


class TrainRequest(BaseModel):
    epochs: confloat(allow_inf_nan=False) = Field(default=EPOCHS, json_schema_extra={"example": EPOCHS})


class MetricsResponse(BaseModel):
    loss: float
    mse: float
    rmse: float
    is_placeholder: bool


class ProgressOut(BaseModel):
    epoch: int
    loss: float
    elapsed_seconds: float
    progress_percent: float


class TrainResponse(BaseModel):
    epochs: int
    batch_size: int
    elapsed_seconds: float
    final_loss: float
    metrics: MetricsResponse
    progress: List[ProgressOut]


class ForecastPoint(BaseModel):
    horizon: int
    date: date
    forecast_return: float
    price: float


class ForecastResponse(BaseModel):
    is_degraded: bool
    last_price: float
    points: List[ForecastPoint]


# ---------------------------
# Routes
# ---------------------------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/series")
def load_series(req: SeriesRequest, session: ForecastSession = Depends(get_session)):
    try:
        insights = session.load_series([(o.date, o.price) for o in req.observations])
    except StockcastError as e:
        raise _to_http(e)
    return insights.to_dict()


@app.post("/dataset", response_model=DatasetResponse)
def prepare_dataset(req: DatasetRequest, session: ForecastSession = Depends(get_session)):
    try:
        ds = session.prepare_dataset(req.window_size, req.horizon, req.split_ratio)
    except StockcastError as e:
        raise _to_http(e)
    return DatasetResponse(window_size=ds.window_size, horizon=ds.horizon, n_train=ds.n_train, n_test=ds.n_test)


@app.post("/train", response_model=TrainResponse)
async def train(req: TrainRequest, session: ForecastSession = Depends(get_session)):
    observer = RecordingObserver()
    try:
        report = await session.train(req.epochs, observer)
    except StockcastError as e:
        raise _to_http(e)
    except Exception as e:
        logger.exception("Training failed")
        raise HTTPException(status_code=500, detail=f"Training failed: {e}")

    return TrainResponse(
        epochs=report.session.epochs,
        batch_size=report.session.batch_size,
        elapsed_seconds=report.elapsed_seconds,
        final_loss=report.final_loss,
        metrics=MetricsResponse(**vars(report.metrics)),
        progress=[ProgressOut(**vars(ev)) for ev in observer.events],
    )


@app.post("/predict", response_model=ForecastResponse)
def predict(session: ForecastSession = Depends(get_session)):
    try:
        forecast = session.predict()
        last_price = session.store.latest_price()
    except StockcastError as e:
        raise _to_http(e)

    points = [
        ForecastPoint(horizon=i + 1, date=d, forecast_return=r, price=p)
        for i, (d, r, p) in enumerate(zip(forecast.dates, forecast.returns, forecast.prices))
    ]
    return ForecastResponse(is_degraded=forecast.is_degraded, last_price=last_price, points=points)


@app.get("/evaluate", response_model=MetricsResponse)
def evaluate(session: ForecastSession = Depends(get_session)):
    try:
        metrics = session.evaluate()
    except StockcastError as e:
        raise _to_http(e)
    return MetricsResponse(**vars(metrics))


@app.get("/")
def root():
    return {
        "message": "Stock Return Forecast API is running.",
        "endpoints": ["/health", "/series", "/dataset", "/train", "/predict", "/evaluate"],
    }
