from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from data_interface import (
    companion_form,
    demean,
    ext_companion_form,
    interpolate,
    lag,
    load_panel,
    mean_skipmissing,
    standardize,
    standardize_verbose,
    std_skipmissing,
    sum_skipmissing,
)

pytestmark = pytest.mark.unit


def test_skipmissing_statistics_on_vectors() -> None:
    x = np.array([1.0, np.nan, 3.0])
    assert sum_skipmissing(x) == 4.0
    assert mean_skipmissing(x) == 2.0
    assert np.isclose(std_skipmissing(x), np.sqrt(2.0))


def test_skipmissing_statistics_are_per_series() -> None:
    X = np.array([
        [1.0, 2.0, np.nan],
        [np.nan, 3.0, np.nan],
        [3.0, 5.0, 7.0],
    ])
    assert np.allclose(sum_skipmissing(X), [3.0, 3.0, 15.0])
    assert np.allclose(mean_skipmissing(X), [1.5, 3.0, 5.0])

    sd = std_skipmissing(X)
    assert np.isclose(sd[0], np.sqrt(0.5))
    assert np.isnan(sd[1])
    assert np.isclose(sd[2], 2.0)


def test_standardize_keeps_missing_entries() -> None:
    X = np.array([
        [1.0, 3.5, np.nan, 4.0, 2.0],
        [4.5, 2.5, 5.0, 3.0, 5.5],
    ])
    mu, sd, Z = standardize_verbose(X)

    assert np.isnan(Z[0, 2])
    assert np.allclose(mean_skipmissing(Z), 0.0)
    assert np.allclose(std_skipmissing(Z), 1.0)
    assert np.allclose(Z, standardize(X), equal_nan=True)
    assert np.allclose(mu, [2.625, 4.1])
    assert np.allclose(demean(X)[1], X[1] - 4.1)


def test_interpolate_uses_series_means() -> None:
    Y = np.array([
        [1.0, np.nan, 3.0, np.nan],
        [np.nan, 4.0, 6.0, 8.0],
    ])
    out = interpolate(Y)

    assert not np.isnan(out).any()
    assert out[0, 1] == 2.0 and out[0, 3] == 2.0
    assert out[1, 0] == 6.0
    assert np.isnan(Y[0, 1])  # input untouched


def test_lag_stacks_shifted_copies() -> None:
    X = np.arange(12, dtype=float).reshape(2, 6)
    X_t, X_lagged = lag(X, 2)

    assert X_t.shape == (2, 4)
    assert X_lagged.shape == (4, 4)
    assert np.array_equal(X_t, X[:, 2:])
    assert np.array_equal(X_lagged[:2], X[:, 1:5])  # first lag
    assert np.array_equal(X_lagged[2:], X[:, 0:4])  # second lag


def test_lag_rejects_short_series() -> None:
    with pytest.raises(ValueError):
        lag(np.zeros((2, 2)), 2)
    with pytest.raises(ValueError):
        lag(np.zeros((2, 5)), 0)


def test_companion_forms() -> None:
    Psi = np.array([
        [0.5, 0.1, 0.2, 0.0],
        [0.0, 0.4, 0.0, 0.1],
    ])
    Sigma = np.array([[1.0, 0.3], [0.3, 2.0]])

    C, V = companion_form(Psi, Sigma)
    assert C.shape == (4, 4)
    assert np.array_equal(C[:2], Psi)
    assert np.array_equal(C[2:, :2], np.eye(2))
    assert np.array_equal(C[2:, 2:], np.zeros((2, 2)))
    assert np.array_equal(V[:2, :2], Sigma)
    assert np.count_nonzero(V) == 4

    C_ext, V_ext = ext_companion_form(Psi, Sigma)
    assert C_ext.shape == (6, 6)
    assert np.array_equal(C_ext[:2, :4], Psi)
    assert np.array_equal(C_ext[2:, :4], np.eye(4))
    assert np.array_equal(C_ext[:, 4:], np.zeros((6, 2)))
    assert np.array_equal(V_ext[:2, :2], Sigma)
    assert np.count_nonzero(V_ext) == 4


def test_companion_form_rejects_bad_shapes() -> None:
    with pytest.raises(ValueError):
        ext_companion_form(np.zeros((2, 3)), np.eye(2))


def test_load_panel_from_csv(tmp_path) -> None:
    dates = pd.date_range("2000-01-01", periods=4, freq="MS")
    wide = pd.DataFrame(
        {"gdp": [1.0, np.nan, 3.0, 4.0], "cpi": [0.5, 0.6, np.nan, 0.8]},
        index=dates[::-1],
    )
    wide.index.name = "date"
    path = tmp_path / "panel.csv"
    wide.to_csv(path)

    Y, m, meta = load_panel(path)

    assert Y.shape == (2, 4)
    assert list(meta["series"]) == ["gdp", "cpi"]
    # rows are sorted by date, so the reversed input comes back in order
    assert np.allclose(Y[0], [4.0, 3.0, np.nan, 1.0], equal_nan=True)
    assert np.array_equal(m, np.isnan(Y).astype(np.uint8))


def test_load_panel_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_panel(tmp_path / "missing.csv")

    path = tmp_path / "panel.txt"
    path.write_text("a,b\n1,2\n")
    with pytest.raises(ValueError):
        load_panel(path)
