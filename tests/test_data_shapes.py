import numpy as np
import pandas as pd
import pytest

import stockcast.data as data_module
from stockcast.data import (
    Observation,
    SeriesStore,
    create_windows,
    get_last_window,
    load_data,
    observations_from_frame,
    read_price_csv,
)
from stockcast.errors import EmptySeriesError, InsufficientDataError, NoDataError


def _observations(prices, start="2024-01-01"):
    dates = pd.bdate_range(start, periods=len(prices))
    return [Observation(d, p) for d, p in zip(dates, prices)]


def test_returns_scenario():
    store = SeriesStore()
    store.load(_observations([100, 102, 101, 105]))

    rets = store.returns()
    assert len(rets) == 3
    np.testing.assert_allclose(rets.values, [0.02, -0.00980392, 0.03960396], atol=1e-8)
    assert store.latest_price() == 105.0


def test_load_needs_two_observations():
    store = SeriesStore()
    with pytest.raises(EmptySeriesError):
        store.load(_observations([100]))
    with pytest.raises(EmptySeriesError):
        store.load([])


def test_latest_price_on_empty_store():
    with pytest.raises(NoDataError):
        SeriesStore().latest_price()


def test_load_accepts_pairs_and_sorts_by_date():
    store = SeriesStore()
    store.load([("2024-01-03", 110.0), ("2024-01-01", 100.0), ("2024-01-02", 105.0)])
    assert list(store.prices.values) == [100.0, 105.0, 110.0]
    assert store.latest_date() == pd.Timestamp("2024-01-03")


def test_failed_reload_keeps_previous_series():
    store = SeriesStore()
    store.load(_observations([100, 101, 102]))
    with pytest.raises(EmptySeriesError):
        store.load(_observations([50]))
    assert len(store) == 3
    assert store.latest_price() == 102.0


def test_reload_recomputes_returns():
    store = SeriesStore()
    store.load(_observations([100, 110]))
    assert store.returns().iloc[0] == pytest.approx(0.1)
    store.load(_observations([100, 90, 99]))
    np.testing.assert_allclose(store.returns().values, [-0.1, 0.1])


@pytest.mark.parametrize("price", [0, -1.5, float("nan")])
def test_observation_rejects_bad_prices(price):
    with pytest.raises(ValueError):
        Observation("2024-01-01", price)


def test_window_count_and_shapes():
    series = np.arange(100, dtype=float)
    X, y = create_windows(series, window_size=10, horizon=5)
    assert X.shape == (86, 10, 1)
    assert y.shape == (86, 5)
    # window i covers [i, i+10), label the next 5 values
    np.testing.assert_array_equal(X[3, :, 0], np.arange(3, 13))
    np.testing.assert_array_equal(y[3], np.arange(13, 18))
    np.testing.assert_array_equal(y[-1], np.arange(95, 100))


def test_single_window_when_exactly_long_enough():
    X, y = create_windows(np.arange(7, dtype=float), window_size=5, horizon=2)
    assert len(X) == 1


def test_too_short_series_raises():
    with pytest.raises(InsufficientDataError):
        create_windows(np.arange(6, dtype=float), window_size=5, horizon=2)


def test_last_window():
    series = np.arange(20, dtype=float)
    np.testing.assert_array_equal(get_last_window(series, 4), [16, 17, 18, 19])
    with pytest.raises(InsufficientDataError):
        get_last_window(series, 21)


def test_read_price_csv(tmp_path):
    path = tmp_path / "prices.csv"
    path.write_text("Date,Open,Close\n2024-01-03,1,103\n2024-01-02,1,101\n2024-01-04,1,104\n")
    obs = read_price_csv(path)
    assert [o.price for o in obs] == [101.0, 103.0, 104.0]


def test_read_price_csv_without_price_column(tmp_path):
    path = tmp_path / "bad.csv"
    path.write_text("Date,Volume\n2024-01-02,10\n")
    with pytest.raises(ValueError):
        read_price_csv(path)


def test_load_data_flattens_multiindex(monkeypatch):
    idx = pd.date_range("2024-01-01", periods=5, freq="B")
    cols = pd.MultiIndex.from_tuples([("Close", "SPY"), ("Volume", "SPY")])
    df = pd.DataFrame(np.column_stack([np.linspace(100, 104, 5), np.ones(5)]), index=idx, columns=cols)
    monkeypatch.setattr(data_module.yf, "download", lambda *a, **k: df)

    out = load_data("SPY", "2024-01-01", "2024-02-01")
    assert list(out.columns) == ["Close"]
    obs = observations_from_frame(out)
    assert len(obs) == 5
    assert obs[-1].price == pytest.approx(104.0)


def test_load_data_empty_download(monkeypatch):
    monkeypatch.setattr(data_module.yf, "download", lambda *a, **k: pd.DataFrame())
    with pytest.raises(NoDataError):
        load_data("NOPE", "2024-01-01", "2024-02-01")
